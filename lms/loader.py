"""Bölümlenmiş anlık görüntü yükleyicisi.

`Loader` uzak depodan bölümleri (ör. etkin/planlanmış/arşivlenmiş duyurular)
eşzamanlı olarak çeker ve hepsini tek seferde yayınlar. Herhangi bir adım
başarısız olursa önceki anlık görüntü olduğu gibi korunur ve hata
`RefreshState.last_error` içine kaydedilir.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from lms.clock import CancellationToken
from lms.errors import ConnectivityError, LibraryError, PartialFetchError

logger = logging.getLogger(__name__)


class Partition(str, Enum):
    """Uzak depodan ayrı ayrı çekilen kayıt alt kümeleri."""

    BOOKS = "books"
    ACTIVE = "active"
    SCHEDULED = "scheduled"
    ARCHIVED = "archived"


ANNOUNCEMENT_PARTITIONS: Tuple[Partition, ...] = (
    Partition.ACTIVE,
    Partition.SCHEDULED,
    Partition.ARCHIVED,
)


@dataclass(frozen=True)
class Snapshot:
    """Değişmez, bölümlere ayrılmış kayıt koleksiyonu."""

    partitions: Mapping[Partition, Tuple[Any, ...]]
    loaded_at: Optional[float] = None

    @classmethod
    def empty(cls, names: Iterable[Partition]) -> "Snapshot":
        return cls(partitions=MappingProxyType({name: () for name in names}))

    def __getitem__(self, name: Partition) -> Tuple[Any, ...]:
        return self.partitions[name]

    def get(self, name: Partition) -> Tuple[Any, ...]:
        return self.partitions.get(name, ())


@dataclass
class RefreshState:
    is_refreshing: bool = False
    # Yalnızca ilk yükleme; arka plan yenilemeleri yükleme göstergesini etkilemez
    is_loading: bool = False
    last_error: Optional[Exception] = None
    last_success_at: Optional[float] = None
    failures: int = 0
    successes: int = 0


SnapshotCallback = Callable[[Snapshot], None]


class Loader:
    """Bağlantı testi + eşzamanlı bölüm çekme + atomik yayın."""

    def __init__(self, store: Any, partitions: Iterable[Partition], *, name: str = "loader") -> None:
        self._store = store
        self._partitions: Tuple[Partition, ...] = tuple(partitions)
        if not self._partitions:
            raise ValueError("En az bir bölüm gerekli.")
        self.name = name
        self.state = RefreshState()
        self._snapshot = Snapshot.empty(self._partitions)
        self._first_call_started = False
        self._subscribers: List[SnapshotCallback] = []
        self._idle: Optional[asyncio.Event] = None

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def partitions(self) -> Tuple[Partition, ...]:
        return self._partitions

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Her başarılı yayında çağrılacak bir geri çağrı kaydet; kaydı silen işlevi döndürür."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def refresh(self, token: Optional[CancellationToken] = None) -> bool:
        """Anlık görüntüyü yenile. Yeni görüntü yayınlandıysa True döndürür.

        Hatalar asla dışarı fırlatılmaz; `state.last_error` içine yazılır.
        Zaten bir yenileme sürüyorsa hiçbir yan etki olmadan hemen döner.
        """
        if self.state.is_refreshing:
            logger.debug(f"[{self.name}] Yenileme zaten sürüyor, atlanıyor")
            return False

        first_call = not self._first_call_started
        self._first_call_started = True
        self.state.is_refreshing = True
        self._idle_event().clear()
        if first_call:
            self.state.is_loading = True
        try:
            partitions = await self._fetch_all()
            if token is not None and token.cancelled:
                logger.debug(f"[{self.name}] Yenileme iptal edildi, sonuçlar yayınlanmadı")
                return False
            self._publish(partitions)
            return True
        except LibraryError as e:
            self._record_failure(e)
            logger.warning(f"[{self.name}] Yenileme başarısız: {e}")
            return False
        except Exception as e:
            self._record_failure(e)
            logger.exception(f"[{self.name}] Yenileme sırasında beklenmedik hata")
            return False
        finally:
            self.state.is_refreshing = False
            self._idle_event().set()
            if first_call:
                self.state.is_loading = False

    async def reload(self, token: Optional[CancellationToken] = None) -> bool:
        """Yazma sonrası yeniden yükleme.

        `refresh()` sürmekte olan bir yenilemeyi görmezden gelirdi; yazmadan önce
        başlamış bir yenileme yeni kaydı içermeyebileceği için burada önce onun
        bitmesi beklenir, ardından taze bir yenileme yapılır.
        """
        while self.state.is_refreshing:
            await self._idle_event().wait()
        return await self.refresh(token)

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
            self._idle.set()
        return self._idle

    async def _fetch_all(self) -> Dict[Partition, Tuple[Any, ...]]:
        try:
            connected = await self._store.test_connection()
        except ConnectivityError:
            raise
        except Exception as e:
            raise ConnectivityError(f"Bağlantı testi başarısız: {e}") from e
        if not connected:
            raise ConnectivityError("Uzak depoya ulaşılamıyor.")

        results = await asyncio.gather(
            *(self._store.fetch_partition(name) for name in self._partitions),
            return_exceptions=True,
        )
        failures = {
            name.value: result
            for name, result in zip(self._partitions, results)
            if isinstance(result, BaseException)
        }
        if failures:
            raise PartialFetchError(failures)
        return {name: tuple(result) for name, result in zip(self._partitions, results)}

    def _publish(self, partitions: Dict[Partition, Tuple[Any, ...]]) -> None:
        self._snapshot = Snapshot(partitions=MappingProxyType(partitions), loaded_at=time.time())
        self.state.last_error = None
        self.state.last_success_at = self._snapshot.loaded_at
        self.state.successes += 1
        counts = ", ".join(f"{name.value}={len(rows)}" for name, rows in partitions.items())
        logger.info(f"[{self.name}] Anlık görüntü yayınlandı ({counts})")
        for callback in list(self._subscribers):
            try:
                callback(self._snapshot)
            except Exception:
                logger.exception(f"[{self.name}] Anlık görüntü abonesi başarısız oldu")

    def _record_failure(self, error: Exception) -> None:
        self.state.last_error = error
        self.state.failures += 1
