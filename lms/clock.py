"""Zamanlayıcı, uyku ve iptal belirteci soyutlamaları.

Zamanlayıcı nesneleri gerçek saate doğrudan bağlanmaz; testlerde zamanı
elle ilerleten bir saat enjekte edilebilir.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """İşbirlikçi iptal sinyali. Üst belirteç iptal edilirse bu da iptal sayılır."""

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._cancelled = False
        self._parent = parent

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)


class TimerHandle:
    """Tekrarlayan bir zamanlayıcının tutamacı."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def wait_closed(self) -> None:
        """İptal edilen zamanlayıcı görevinin gerçekten bitmesini bekle."""
        await asyncio.gather(self._task, return_exceptions=True)


class Clock:
    """asyncio olay döngüsü üzerinde çalışan varsayılan saat."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def schedule_repeating(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """Her `interval` saniyede bir `callback` çağır; ilk çağrı bir aralık sonra."""

        async def _run() -> None:
            while True:
                await self.sleep(interval)
                try:
                    callback()
                except Exception:
                    # Tek bir hatalı tetikleme zamanlayıcıyı durdurmamalı
                    logger.exception("Zamanlayıcı geri çağrısı başarısız oldu")

        task = asyncio.get_running_loop().create_task(_run())
        return TimerHandle(task)
