"""Kütüphane deposu ve yenileme denetleyicisi için hata sınıfları."""

from __future__ import annotations

from typing import Dict


class LibraryError(Exception):
    """Bu paketteki tüm hataların temel sınıfı."""
    pass


class ConnectivityError(LibraryError):
    """Uzak depoya ulaşılamadı (bağlantı testi başarısız)."""
    pass


class RemoteStoreError(LibraryError):
    """Uzak depo isteği reddetti veya bozuk veri döndürdü."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WriteError(RemoteStoreError):
    """Ekleme/güncelleme/silme uzak depo tarafından reddedildi."""
    pass


class ValidationError(LibraryError):
    """Aday kayıt hatalı (ör. ISBN eksik, geçersiz kopya sayısı)."""
    pass


class PartialFetchError(LibraryError):
    """Bir veya daha fazla bölüm yüklenemedi; anlık görüntü değiştirilmedi."""

    def __init__(self, failures: Dict[str, BaseException]) -> None:
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures))
        super().__init__(f"Bölümler yüklenemedi: {names}")
