import asyncio
import heapq
from typing import Dict, List, Optional

import pytest

from lms.book import Book
from lms.clock import Clock
from lms.deletion_request import BookDeletionRequest
from lms.errors import ConnectivityError, WriteError
from lms.loader import Partition
from lms.services.sqlite_store import SQLiteStore


async def settle(rounds: int = 25) -> None:
    """Olay döngüsündeki hazır görevlerin ilerlemesine izin ver."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock(Clock):
    """Zamanı yalnızca `advance()` ile ilerleyen test saati."""

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers = []
        self._seq = 0

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._sleepers, (self.now + seconds, self._seq, future))
        await future

    @property
    def pending_sleeps(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self.now = deadline
            if not future.done():
                future.set_result(None)
                await settle()
        self.now = target
        await settle()


class FakeRemoteStore:
    """Bellek içi uzak depo; çağrı sayaçları ve hata enjeksiyonu ile."""

    def __init__(self, rows: Optional[Dict[Partition, List]] = None, books: Optional[List[Book]] = None) -> None:
        self.rows: Dict[Partition, List] = {p: [] for p in Partition}
        for partition, records in (rows or {}).items():
            self.rows[partition] = list(records)
        if books is not None:
            self.rows[Partition.BOOKS] = list(books)
        self.connected = True
        self.connection_error: Optional[Exception] = None
        self.fail_partitions: Dict[Partition, Exception] = {}
        self.write_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.connection_checks = 0
        self.fetch_calls = 0
        self.inserted: List = []
        self.updated: List = []
        self.deleted: List = []
        self.deletion_requests: List[BookDeletionRequest] = []
        self.request_error: Optional[Exception] = None
        self.fail_deletes: set = set()
        self.closed = False

    def hold(self) -> asyncio.Event:
        """Bölüm çekmelerini `gate.set()` çağrılana kadar beklet."""
        self.gate = asyncio.Event()
        return self.gate

    async def test_connection(self) -> bool:
        self.connection_checks += 1
        if self.connection_error is not None:
            raise self.connection_error
        return self.connected

    async def fetch_partition(self, kind: Partition) -> List:
        self.fetch_calls += 1
        rows = list(self.rows[kind])
        if self.gate is not None:
            await self.gate.wait()
        if kind in self.fail_partitions:
            raise self.fail_partitions[kind]
        return rows

    async def fetch_deletion_requests(self, status=None) -> List:
        if self.request_error is not None:
            raise self.request_error
        return [r for r in self.deletion_requests if status is None or r.status is status]

    def _table(self, record) -> List:
        if isinstance(record, BookDeletionRequest):
            return self.deletion_requests
        return self.rows[Partition.BOOKS]

    async def insert(self, record):
        if self.write_error is not None:
            raise self.write_error
        self.inserted.append(record)
        self._table(record).append(record)
        return record

    async def update(self, record):
        if self.write_error is not None:
            raise self.write_error
        rows = self._table(record)
        for i, existing in enumerate(rows):
            if existing.id == record.id:
                rows[i] = record
                self.updated.append(record)
                return record
        raise WriteError(f"{record.TABLE} kaydı bulunamadı: {record.id}")

    async def delete(self, record) -> None:
        if self.write_error is not None or record.id in self.fail_deletes:
            raise self.write_error or WriteError(f"{record.TABLE} kaydı silinemedi: {record.id}")
        rows = self._table(record)
        rows[:] = [r for r in rows if r.id != record.id]
        self.deleted.append(record)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fake_store():
    return FakeRemoteStore()


@pytest.fixture
def unreachable_store():
    store = FakeRemoteStore()
    store.connection_error = ConnectivityError("ağ yok")
    return store


@pytest.fixture
def db_file(tmp_path, request):
    # Her test için benzersiz bir veritabanı dosyası
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def sqlite_store(db_file):
    return SQLiteStore(db_file=db_file)
