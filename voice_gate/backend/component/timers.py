"""Cancellable one-shot timers."""

from __future__ import annotations

import threading
from typing import Callable, Protocol

from voice_gate.utils.logger import LOGGER


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Schedules callbacks; implementations must allow cancel() at any time."""

    def call_later(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle: ...


class _ThreadingTimerHandle:
    def __init__(self, timer: threading.Timer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadingScheduler:
    """Runs each callback on a daemon ``threading.Timer`` thread."""

    def __init__(self, name: str = "voice-gate-timer") -> None:
        self._name = name

    def call_later(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, delay_sec), self._run, args=(callback,))
        timer.name = self._name
        timer.daemon = True
        timer.start()
        return _ThreadingTimerHandle(timer)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            LOGGER.exception("Timer callback failed")


def cancel_quietly(handle: TimerHandle | None) -> None:
    if handle is not None:
        handle.cancel()
