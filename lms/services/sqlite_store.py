"""Yerel SQLite dosyası üzerinde uzak depo sözleşmesi.

Geliştirme ve çevrimdışı kullanım içindir; engelleyen sqlite3 çağrıları
`asyncio.to_thread` ile olay döngüsünün dışına taşınır.
"""

import asyncio
import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import database
from lms.announcement import ANNOUNCEMENTS_TABLE, Announcement, format_timestamp, utcnow
from lms.book import BOOKS_TABLE, Book
from lms.deletion_request import DELETION_REQUESTS_TABLE, BookDeletionRequest, DeletionStatus
from lms.errors import ConnectivityError, RemoteStoreError, WriteError
from lms.loader import Partition

logger = logging.getLogger(__name__)

_TABLES = {
    BOOKS_TABLE: "books",
    ANNOUNCEMENTS_TABLE: "announcements",
    DELETION_REQUESTS_TABLE: "book_deletion_requests",
}


class SQLiteStore:
    """Kitap ve duyuru tablolarını yerel bir SQLite dosyasında tutar."""

    def __init__(self, db_file: Optional[str] = None, now: Optional[Callable[[], datetime]] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        self._now = now or utcnow
        database.initialize_database(self.db_file)

    # ------------------------- Okuma ------------------------- #
    async def test_connection(self) -> bool:
        return await asyncio.to_thread(self._test_connection)

    def _test_connection(self) -> bool:
        try:
            conn = database.get_db_connection(self.db_file)
        except sqlite3.Error as e:
            raise ConnectivityError(f"Veritabanı açılamadı: {e}") from e
        try:
            conn.execute("SELECT 1 FROM books LIMIT 1").fetchall()
            return True
        except sqlite3.Error as e:
            logger.warning(f"SQLite bağlantı testi başarısız: {e}")
            return False
        finally:
            conn.close()

    async def fetch_partition(self, kind: Partition) -> List[Any]:
        return await asyncio.to_thread(self._fetch_partition, Partition(kind))

    def _fetch_partition(self, kind: Partition) -> List[Any]:
        if kind is Partition.BOOKS:
            sql, params, decode = "SELECT * FROM books ORDER BY title", (), Book.from_row
        else:
            now = format_timestamp(self._now())
            if kind is Partition.ACTIVE:
                sql = """
                    SELECT * FROM announcements
                    WHERE is_active = 1 AND is_archived = 0 AND start_date <= ? AND expiry_date > ?
                    ORDER BY created_at DESC
                """
                params = (now, now)
            elif kind is Partition.SCHEDULED:
                sql = """
                    SELECT * FROM announcements
                    WHERE is_active = 1 AND is_archived = 0 AND start_date > ?
                    ORDER BY start_date ASC
                """
                params = (now,)
            else:
                sql = "SELECT * FROM announcements WHERE is_archived = 1 ORDER BY last_modified DESC"
                params = ()
            decode = Announcement.from_row

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [decode(dict(row)) for row in rows]
        except sqlite3.Error as e:
            raise RemoteStoreError(f"{kind.value} bölümü okunamadı: {e}") from e
        finally:
            conn.close()

    async def fetch_deletion_requests(self, status: Optional[DeletionStatus] = None) -> List[BookDeletionRequest]:
        return await asyncio.to_thread(self._fetch_deletion_requests, status)

    def _fetch_deletion_requests(self, status: Optional[DeletionStatus]) -> List[BookDeletionRequest]:
        sql = "SELECT * FROM book_deletion_requests"
        params: tuple = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (DeletionStatus(status).value,)
        sql += " ORDER BY requestDate DESC"

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [BookDeletionRequest.from_row(dict(row)) for row in rows]
        except sqlite3.Error as e:
            raise RemoteStoreError(f"Silme talepleri okunamadı: {e}") from e
        finally:
            conn.close()

    # ------------------------- Yazma ------------------------- #
    async def insert(self, record):
        return await asyncio.to_thread(self._insert, record)

    def _insert(self, record):
        table = _TABLES[record.TABLE]
        conn = self._connect()
        try:
            if isinstance(record, Book):
                if record.add_id is None:
                    record.add_id = conn.execute("SELECT COALESCE(MAX(addID), 0) + 1 FROM books").fetchone()[0]
                if record.date_added is None:
                    record.date_added = self._now().strftime("%Y-%m-%d")
            row = self._to_db_row(record)
            columns = ", ".join(row)
            placeholders = ", ".join("?" for _ in row)
            conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))
            conn.commit()
            return record
        except sqlite3.Error as e:
            raise WriteError(f"{record.TABLE} kaydı eklenemedi: {e}") from e
        finally:
            conn.close()

    async def update(self, record):
        return await asyncio.to_thread(self._update, record)

    def _update(self, record):
        table = _TABLES[record.TABLE]
        row = self._to_db_row(record)
        row.pop("id")
        set_clause = ", ".join(f"{column} = ?" for column in row)
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE {table} SET {set_clause} WHERE id = ?", (*row.values(), record.id)
            )
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"{record.TABLE} kaydı güncellenemedi: {e}") from e
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise WriteError(f"{record.TABLE} kaydı bulunamadı: {record.id}")
        return record

    async def delete(self, record) -> None:
        await asyncio.to_thread(self._delete, record)

    def _delete(self, record) -> None:
        conn = self._connect()
        try:
            conn.execute(f"DELETE FROM {_TABLES[record.TABLE]} WHERE id = ?", (record.id,))
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"{record.TABLE} kaydı silinemedi: {e}") from e
        finally:
            conn.close()

    # ------------------------- Yardımcılar ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        try:
            return database.get_db_connection(self.db_file)
        except sqlite3.Error as e:
            raise ConnectivityError(f"Veritabanı açılamadı: {e}") from e

    @staticmethod
    def _to_db_row(record) -> Dict[str, Any]:
        row = record.to_row()
        if isinstance(record, Book):
            row["author"] = json.dumps(row["author"], ensure_ascii=False)
        elif isinstance(record, BookDeletionRequest):
            row["bookIDs"] = json.dumps(row["bookIDs"])
        else:
            row["is_active"] = int(row["is_active"])
            row["is_archived"] = int(row["is_archived"])
        return row

    async def close(self) -> None:
        # Her işlem kendi bağlantısını açıp kapatır
        return None
