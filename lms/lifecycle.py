"""Uygulama ön plan/arka plan olaylarının açık abonelikli yayıncısı."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, List

logger = logging.getLogger(__name__)


class LifecyclePhase(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


PhaseCallback = Callable[[LifecyclePhase], Awaitable[None]]


class LifecycleNotifier:
    """`enteredBackground` / `enteredForeground` olaylarını abonelere iletir."""

    def __init__(self, phase: LifecyclePhase = LifecyclePhase.FOREGROUND) -> None:
        self._phase = phase
        self._subscribers: List[PhaseCallback] = []

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    def subscribe(self, callback: PhaseCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def publish(self, phase: LifecyclePhase) -> bool:
        """Yeni evreyi abonelere ilet. Evre değişmediyse hiçbir şey yapmaz ve False döndürür."""
        phase = LifecyclePhase(phase)
        if phase is self._phase:
            return False
        self._phase = phase
        logger.info(f"Uygulama evresi değişti: {phase.value}")
        for callback in list(self._subscribers):
            await callback(phase)
        return True
