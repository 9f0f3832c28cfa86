"""Uzak depo sözleşmesi ve yapılandırmaya göre arka uç seçimi."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Union, runtime_checkable

from config import Settings, settings as default_settings
from lms.announcement import Announcement
from lms.book import Book
from lms.deletion_request import BookDeletionRequest, DeletionStatus
from lms.loader import Partition

Record = Union[Book, Announcement, BookDeletionRequest]


@runtime_checkable
class RemoteStore(Protocol):
    """Çekirdeğin kullandığı uzak depo işlemleri.

    Bağlantı hataları `ConnectivityError`, veri hataları okumada
    `RemoteStoreError`, yazmada `WriteError` olarak yükseltilir.
    """

    async def test_connection(self) -> bool: ...

    async def fetch_partition(self, kind: Partition) -> List[Any]: ...

    async def fetch_deletion_requests(self, status: Optional[DeletionStatus] = None) -> List[BookDeletionRequest]: ...

    async def insert(self, record: Record) -> Record: ...

    async def update(self, record: Record) -> Record: ...

    async def delete(self, record: Record) -> None: ...

    async def close(self) -> None: ...


def create_remote_store(config: Settings = default_settings) -> RemoteStore:
    """`STORE_BACKEND` ayarına göre depo örneği oluştur."""
    backend = config.store_backend
    if backend == "supabase":
        from lms.services.supabase_store import SupabaseStore

        return SupabaseStore(url=config.supabase_url, api_key=config.supabase_key, timeout=config.supabase_timeout)
    if backend == "sqlite":
        from lms.services.sqlite_store import SQLiteStore

        return SQLiteStore(db_file=config.database_file)
    raise ValueError(f"Bilinmeyen depo arka ucu: {backend!r}")
