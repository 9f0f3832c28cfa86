import sqlite3
import os
from typing import Optional

from dotenv import load_dotenv

# .env'den ortam değişkenlerinin okunmadan önce yüklendiğinden emin olun.
load_dotenv()

from config import settings  # noqa: E402

# Varsayılan veritabanı dosyası (LIBRARY_DB_FILE ile geçersiz kılınabilir)
DATABASE_FILE = settings.database_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """SQLite veritabanına bir bağlantı kurar."""
    path = db_file or DATABASE_FILE
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, timeout=5.0)
    conn.row_factory = sqlite3.Row
    # Daha iyi eşzamanlı erişim için WAL modunu etkinleştir
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Veritabanında mevcut değilse gerekli tabloları oluşturur.

    Sütun adları barındırılan depodaki `Books`, `announcements` ve
    `BookDeletionRequests` tablolarıyla
    aynıdır, böylece satırlar iki arka uç arasında aynı şekilde çözülür.
    """
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                ISBN TEXT NOT NULL,
                title TEXT NOT NULL,
                author TEXT NOT NULL DEFAULT '[]',
                genre TEXT NOT NULL DEFAULT 'Uncategorized',
                publicationDate TEXT NOT NULL DEFAULT '',
                totalCopies INTEGER NOT NULL DEFAULT 0 CHECK(totalCopies >= 0),
                availableCopies INTEGER NOT NULL DEFAULT 0
                    CHECK(availableCopies >= 0 AND availableCopies <= totalCopies),
                Description TEXT,
                shelfLocation TEXT,
                dateAdded TEXT,
                publisher TEXT,
                imageLink TEXT,
                addID INTEGER
            )
        """)
        # ISBN benzersiz değildir: yinelenen kayıtlar mevcut verilerde olabilir
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_isbn ON books(ISBN)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS announcements (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('librarian', 'member', 'all')),
                start_date TEXT NOT NULL,
                expiry_date TEXT NOT NULL,
                created_at TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_archived INTEGER NOT NULL DEFAULT 0,
                last_modified TEXT NOT NULL
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_announcements_state ON announcements(is_archived, is_active)"
        )
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_deletion_requests (
                id TEXT PRIMARY KEY,
                bookIDs TEXT NOT NULL DEFAULT '[]',
                requestedBy TEXT NOT NULL DEFAULT '',
                reason TEXT NOT NULL DEFAULT '',
                requestDate TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK(status IN ('pending', 'approved', 'rejected')),
                adminResponse TEXT
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_deletion_requests_status ON book_deletion_requests(status)"
        )
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Veritabanını başlatır: tabloları oluşturur."""
    create_tables(db_file)
