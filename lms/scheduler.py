"""Ön plan/arka plan farkındalıklı periyodik yenileme zamanlayıcısı.

Durumlar:
    STOPPED             -> start()              -> FOREGROUND_POLLING
    FOREGROUND_POLLING  -> on_enter_background() -> BACKGROUND_POLLING
    BACKGROUND_POLLING  -> on_enter_foreground() -> FOREGROUND_POLLING
    herhangi biri       -> stop()               -> STOPPED

Aynı anda en fazla bir zamanlayıcı veya bir arka plan döngüsü canlıdır ve
aynı anda en fazla bir yenileme yürütülür.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional

from config import settings
from lms.clock import CancellationToken, Clock, TimerHandle
from lms.lifecycle import LifecycleNotifier, LifecyclePhase
from lms.loader import Loader

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    STOPPED = auto()
    FOREGROUND_POLLING = auto()
    BACKGROUND_POLLING = auto()


@dataclass
class SchedulerStats:
    ticks: int = 0
    dropped_ticks: int = 0
    background_iterations: int = 0


async def _cancel_and_wait(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class RefreshScheduler:
    """Bir `Loader` için tek uçuşlu periyodik yenileme sahibi."""

    def __init__(
        self,
        loader: Loader,
        *,
        interval: Optional[float] = None,
        background_interval: Optional[float] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._loader = loader
        self.interval = interval if interval is not None else settings.refresh_interval
        self.background_interval = (
            background_interval if background_interval is not None else settings.background_refresh_interval
        )
        if self.interval <= 0 or self.background_interval <= 0:
            raise ValueError("Yenileme aralıkları pozitif olmalı.")
        self._clock = clock or Clock()
        self.state = SchedulerState.STOPPED
        self.stats = SchedulerStats()

        self._timer: Optional[TimerHandle] = None
        self._background_task: Optional[asyncio.Task] = None
        self._background_token: Optional[CancellationToken] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._run_token: Optional[CancellationToken] = None
        self._transition_lock: Optional[asyncio.Lock] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------- Yaşam döngüsü ------------------------- #
    @property
    def loader(self) -> Loader:
        return self._loader

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and self._timer.active

    @property
    def background_active(self) -> bool:
        return self._background_task is not None and not self._background_task.done()

    async def start(self) -> None:
        """Programı (yeniden) başlat: hemen bir yenileme, ardından her `interval` saniyede bir."""
        async with self._lock():
            refresh = await self._start_locked()
        await self._wait_refresh(refresh)

    async def stop(self) -> None:
        """Zamanlayıcıyı, arka plan döngüsünü ve sürmekte olan yenilemeyi iptal et."""
        async with self._lock():
            if self._run_token is not None:
                self._run_token.cancel()
                self._run_token = None
            await self._cancel_timer()
            await self._cancel_background()
            await _cancel_and_wait(self._refresh_task)
            self._refresh_task = None
            if self.state is not SchedulerState.STOPPED:
                logger.info(f"[{self._loader.name}] Yenileme zamanlayıcısı durduruldu")
            self.state = SchedulerState.STOPPED

    async def on_enter_background(self) -> None:
        """Sabit aralıklı zamanlayıcıyı durdur, işbirlikçi arka plan döngüsüne geç."""
        async with self._lock():
            if self.state is SchedulerState.STOPPED:
                logger.debug(f"[{self._loader.name}] Durdurulmuş zamanlayıcı arka plana alınmadı")
                return
            await self._cancel_timer()
            await self._cancel_background()
            self._background_token = self._run_token.child()
            self._background_task = asyncio.get_running_loop().create_task(
                self._background_loop(self._background_token)
            )
            self.state = SchedulerState.BACKGROUND_POLLING
            logger.info(f"[{self._loader.name}] Arka plan yenileme döngüsü başlatıldı")

    async def on_enter_foreground(self) -> None:
        """Arka plan döngüsünü iptal et, hemen yenile ve sabit aralıklı yoklamaya dön."""
        async with self._lock():
            if self.state is SchedulerState.STOPPED:
                logger.debug(f"[{self._loader.name}] Durdurulmuş zamanlayıcı ön plana alınmadı")
                return
            await self._cancel_background()
            refresh = await self._start_locked()
        await self._wait_refresh(refresh)

    async def handle_phase(self, phase: LifecyclePhase) -> None:
        if phase is LifecyclePhase.BACKGROUND:
            await self.on_enter_background()
        else:
            await self.on_enter_foreground()

    def attach(self, notifier: LifecycleNotifier) -> None:
        """Yaşam döngüsü olaylarına abone ol (önceki abonelik varsa bırakılır)."""
        self.detach()
        self._unsubscribe = notifier.subscribe(self.handle_phase)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def __aenter__(self) -> "RefreshScheduler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # ------------------------- Dahili ------------------------- #
    def _lock(self) -> asyncio.Lock:
        # Kilit, onu ilk kullanan olay döngüsünde oluşturulur
        if self._transition_lock is None:
            self._transition_lock = asyncio.Lock()
        return self._transition_lock

    async def _start_locked(self) -> Optional[asyncio.Task]:
        """Zamanlayıcıyı kur ve anında yenilemeyi başlat; yenileme görevini döndürür."""
        await self._cancel_timer()
        await self._cancel_background()
        if self._run_token is None:
            self._run_token = CancellationToken()
        self._timer = self._clock.schedule_repeating(self.interval, self._on_tick)
        self.state = SchedulerState.FOREGROUND_POLLING
        logger.info(f"[{self._loader.name}] Yenileme zamanlayıcısı başlatıldı ({self.interval}s)")
        return self._spawn_refresh()

    async def _wait_refresh(self, task: Optional[asyncio.Task]) -> None:
        # stop() görevi iptal ederse burada sessizce döneriz
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _spawn_refresh(self) -> Optional[asyncio.Task]:
        refresh_in_flight = self._refresh_task is not None and not self._refresh_task.done()
        if self._loader.state.is_refreshing or refresh_in_flight:
            self.stats.dropped_ticks += 1
            logger.debug(f"[{self._loader.name}] Yenileme sürüyor, tetikleme atlandı")
            return None
        token = self._run_token
        if token is None or token.cancelled:
            return None
        self._refresh_task = asyncio.get_running_loop().create_task(self._loader.refresh(token))
        return self._refresh_task

    def _on_tick(self) -> None:
        self.stats.ticks += 1
        self._spawn_refresh()

    async def _background_loop(self, token: CancellationToken) -> None:
        run_token = self._run_token
        while not token.cancelled:
            self.stats.background_iterations += 1
            await self._loader.refresh(run_token)
            if token.cancelled:
                break
            await self._clock.sleep(self.background_interval)
        logger.debug(f"[{self._loader.name}] Arka plan döngüsü sona erdi")

    async def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            await self._timer.wait_closed()
            self._timer = None

    async def _cancel_background(self) -> None:
        if self._background_token is not None:
            self._background_token.cancel()
            self._background_token = None
        await _cancel_and_wait(self._background_task)
        self._background_task = None
