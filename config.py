import os
import tempfile
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Depo Ayarları: 'sqlite' (yerel dosya) veya 'supabase' (barındırılan PostgREST)
    store_backend: str = os.getenv("STORE_BACKEND", "sqlite").lower()
    supabase_url: str = os.getenv("SUPABASE_URL", "http://localhost:54321")
    supabase_key: Optional[str] = os.getenv("SUPABASE_KEY")
    supabase_timeout: float = float(os.getenv("SUPABASE_TIMEOUT", "10"))
    database_file: str = os.getenv(
        "LIBRARY_DB_FILE",
        os.path.join(tempfile.gettempdir(), "library_store.db"),
    )

    # Yenileme Ayarları (saniye)
    refresh_interval: float = float(os.getenv("REFRESH_INTERVAL", "10"))
    background_refresh_interval: float = float(os.getenv("BACKGROUND_REFRESH_INTERVAL", "10"))

    # Okunmamış duyuru takibi
    seen_announcements_file: str = os.getenv(
        "SEEN_ANNOUNCEMENTS_FILE",
        os.path.join(os.path.expanduser("~"), ".library-cli", "seen_announcements.json"),
    )

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Kütüphane Yönetim Sistemi")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_bool("DEBUG")


settings = Settings()
