from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import pytest

from voice_gate.backend.runtime.config import SessionSettings
from voice_gate.backend.transport.connection import (
    CLOSE_ABNORMAL,
    CLOSE_NORMAL,
    ConnectionListener,
    TranscriptEvent,
)


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@dataclass(eq=False)
class ManualTimer:
    due: float
    order: int
    delay: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by ``advance``; callbacks run on the test thread."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.timers: List[ManualTimer] = []
        self._order = 0

    def call_later(self, delay_sec: float, callback: Callable[[], None]) -> ManualTimer:
        self._order += 1
        timer = ManualTimer(
            due=self.clock.now + delay_sec,
            order=self._order,
            delay=delay_sec,
            callback=callback,
        )
        self.timers.append(timer)
        return timer

    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.order))
            self.clock.now = max(self.clock.now, timer.due)
            timer.fired = True
            timer.callback()
        self.clock.now = target


class FakeConnection:
    def __init__(self, listener: ConnectionListener, auto_open: bool) -> None:
        self.listener = listener
        self.auto_open = auto_open
        self.started = False
        self.opened = False
        self.closed = False
        self.sent: List[bytes] = []
        self.keepalives = 0
        self.buffer_full = False

    def start(self) -> None:
        self.started = True
        if self.auto_open:
            self.open()

    def is_open(self) -> bool:
        return self.opened and not self.closed

    def send_audio(self, frame: bytes) -> bool:
        if self.buffer_full:
            return False
        self.sent.append(frame)
        return True

    def send_keepalive(self) -> bool:
        if self.buffer_full:
            return False
        self.keepalives += 1
        return True

    def close(self) -> None:
        self.closed = True
        self.opened = False
        self.listener.on_close(CLOSE_NORMAL, "client closed")

    # Backend-side simulation.
    def open(self) -> None:
        self.opened = True
        self.listener.on_open()

    def transcript(
        self, text: str, is_final: bool = True, speech_final: Optional[bool] = None
    ) -> None:
        self.listener.on_transcript(
            TranscriptEvent(text=text, is_final=is_final, speech_final=speech_final)
        )

    def finality(self) -> None:
        self.transcript("", is_final=False, speech_final=True)

    def drop(self, code: Optional[int] = CLOSE_ABNORMAL, reason: str = "") -> None:
        self.opened = False
        self.listener.on_close(code, reason)


@dataclass
class FakeBackend:
    auto_open: bool = True
    connections: List[FakeConnection] = field(default_factory=list)

    def __call__(self, listener: ConnectionListener) -> FakeConnection:
        connection = FakeConnection(listener, self.auto_open)
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


class RecordingDeliver:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def __call__(self, identity, text: str) -> None:
        self.calls.append((identity.speaker_id, text))

    @property
    def texts(self) -> List[str]:
        return [text for _, text in self.calls]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def deliver():
    return RecordingDeliver()


@pytest.fixture
def settings():
    return SessionSettings()
