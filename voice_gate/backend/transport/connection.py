"""Contract between the core and a streaming transcription backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

CLOSE_NORMAL = 1000
CLOSE_ABNORMAL = 1006
CLOSE_INTERNAL_ERROR = 1011


@dataclass(frozen=True)
class TranscriptEvent:
    """One recognition result from the backend."""

    text: str
    is_final: bool
    speech_final: Optional[bool] = None


def _noop() -> None:
    return None


def _noop_transcript(_: TranscriptEvent) -> None:
    return None


def _noop_error(_: BaseException) -> None:
    return None


def _noop_close(_: Optional[int], __: str) -> None:
    return None


@dataclass(frozen=True)
class ConnectionListener:
    """Callbacks a connection reports to; bound before the connection starts."""

    on_open: Callable[[], None] = _noop
    on_transcript: Callable[[TranscriptEvent], None] = _noop_transcript
    on_error: Callable[[BaseException], None] = _noop_error
    on_close: Callable[[Optional[int], str], None] = _noop_close


class TranscriptionConnection(Protocol):
    """One streaming session with the transcription backend.

    None of the methods may block on network I/O: they are called from the
    audio intake path with the session lock held. Connection progress is
    reported through the listener. ``send_audio`` and ``send_keepalive`` are
    only called while ``is_open`` is True and return False when the message
    was dropped because the outbound buffer is full. ``close`` is an
    intentional close.
    """

    def start(self) -> None: ...

    def is_open(self) -> bool: ...

    def send_audio(self, frame: bytes) -> bool: ...

    def send_keepalive(self) -> bool: ...

    def close(self) -> None: ...


ConnectionFactory = Callable[[ConnectionListener], TranscriptionConnection]
