"""Lifecycle of one speaker's streaming transcription connection."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from voice_gate.backend.component.timers import Scheduler, TimerHandle, cancel_quietly
from voice_gate.backend.runtime.config import SessionSettings
from voice_gate.backend.runtime.metrics import Metrics
from voice_gate.backend.transport.connection import (
    CLOSE_ABNORMAL,
    ConnectionFactory,
    ConnectionListener,
    TranscriptEvent,
    TranscriptionConnection,
)
from voice_gate.errors import ErrorCode, format_error
from voice_gate.utils.logger import LOGGER, speaker_context


def _noop_transcript(_: TranscriptEvent) -> None:
    return None


@dataclass(frozen=True)
class ConnectionManagerHooks:
    on_transcript: Callable[[TranscriptEvent], None] = _noop_transcript


@dataclass(eq=False)
class _PendingReconnect:
    attempt: int
    delay_sec: float
    handle: Optional[TimerHandle] = field(default=None, repr=False)


class ConnectionManager:
    """Owns open/keepalive/reconnect for one connection at a time.

    All state is guarded by the lock shared with the owning speaker session,
    so backend events, timer callbacks and frame handling never interleave.
    Every connection gets its own generation number; events from a replaced
    connection are ignored.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        settings: SessionSettings,
        scheduler: Scheduler,
        lock: threading.RLock,
        *,
        speaker_id: str,
        time_fn: Callable[[], float] | None = None,
        metrics: Metrics | None = None,
        hooks: ConnectionManagerHooks | None = None,
    ) -> None:
        self._factory = connection_factory
        self._settings = settings
        self._reconnect = settings.reconnect
        self._scheduler = scheduler
        self._lock = lock
        self._speaker_id = speaker_id
        self._time_fn = time_fn or time.monotonic
        self._metrics = metrics
        self._hooks = hooks or ConnectionManagerHooks()
        self._connection: Optional[TranscriptionConnection] = None
        self._generation = 0
        self._pending_reconnect: Optional[_PendingReconnect] = None
        self._keepalive_handle: Optional[TimerHandle] = None
        self._opened = False
        self._closed = False
        self.reconnect_attempts = 0
        self.last_reconnect_at: Optional[float] = None
        self.last_keepalive_at = self._time_fn()
        self.terminal = False

    @property
    def connection(self) -> Optional[TranscriptionConnection]:
        return self._connection

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def reconnect_pending(self) -> bool:
        return self._pending_reconnect is not None

    def open(self) -> None:
        with self._lock:
            if self._closed or self._opened:
                return
            self._opened = True
            self._install_connection()
            self._schedule_keepalive()

    def is_open(self) -> bool:
        connection = self._connection
        return connection is not None and connection.is_open()

    def send_audio(self, frame: bytes) -> bool:
        """Forward a frame if the connection is open; otherwise drop it."""
        with self._lock:
            if self._closed or not self.is_open():
                if self._metrics is not None:
                    self._metrics.record_dropped_not_ready()
                return False
            try:
                accepted = self._connection.send_audio(frame)  # type: ignore[union-attr]
            except Exception as exc:
                LOGGER.warning(format_error(ErrorCode.BACKEND_SEND_FAILED, repr(exc)))
                return False
            if not accepted:
                if self._metrics is not None:
                    self._metrics.record_dropped_backpressure()
                LOGGER.debug(format_error(ErrorCode.BACKEND_SEND_QUEUE_FULL))
                return False
            self.last_keepalive_at = self._time_fn()
            if self._metrics is not None:
                self._metrics.record_forwarded()
            return True

    def maybe_send_keepalive(self) -> bool:
        """Send a keepalive when nothing was sent for a full interval."""
        with self._lock:
            if self._closed or not self.is_open():
                return False
            now = self._time_fn()
            idle = now - self.last_keepalive_at
            if idle < self._settings.keepalive_interval_sec:
                return False
            try:
                accepted = self._connection.send_keepalive()  # type: ignore[union-attr]
            except Exception as exc:
                LOGGER.warning(format_error(ErrorCode.BACKEND_SEND_FAILED, repr(exc)))
                return False
            if not accepted:
                return False
            self.last_keepalive_at = now
            if self._metrics is not None:
                self._metrics.record_keepalive()
            LOGGER.trace("Keepalive sent (%.1fs since last send)", idle)
            return True

    def close(self) -> None:
        """Intentional close; no reconnect follows."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            cancel_quietly(self._keepalive_handle)
            self._keepalive_handle = None
            if self._pending_reconnect is not None:
                cancel_quietly(self._pending_reconnect.handle)
                self._pending_reconnect = None
            connection = self._connection
            self._connection = None
            if connection is None:
                return
            try:
                connection.close()
            except Exception as exc:
                LOGGER.warning("Error closing transcription connection: %r", exc)

    def _install_connection(self) -> None:
        self._generation += 1
        generation = self._generation
        listener = ConnectionListener(
            on_open=lambda: self._handle_open(generation),
            on_transcript=lambda event: self._handle_transcript(generation, event),
            on_error=lambda exc: self._handle_error(generation, exc),
            on_close=lambda code, reason: self._handle_close(generation, code, reason),
        )
        connection = self._factory(listener)
        self._connection = connection
        try:
            connection.start()
        except Exception as exc:
            LOGGER.error(format_error(ErrorCode.BACKEND_CONNECT_FAILED, repr(exc)))
            self._handle_close(generation, CLOSE_ABNORMAL, str(exc))

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _handle_open(self, generation: int) -> None:
        with speaker_context(self._speaker_id), self._lock:
            if not self._is_current(generation):
                return
            if self.reconnect_attempts:
                LOGGER.info(
                    "Transcription connection re-opened after %d attempt(s)",
                    self.reconnect_attempts,
                )
            else:
                LOGGER.info("Transcription connection opened")
            self.reconnect_attempts = 0
            self.terminal = False
            self.last_keepalive_at = self._time_fn()

    def _handle_transcript(self, generation: int, event: TranscriptEvent) -> None:
        with speaker_context(self._speaker_id), self._lock:
            if not self._is_current(generation):
                return
            self._hooks.on_transcript(event)

    def _handle_error(self, generation: int, exc: BaseException) -> None:
        with speaker_context(self._speaker_id), self._lock:
            if not self._is_current(generation):
                return
            if self._metrics is not None:
                self._metrics.record_backend_error()
            LOGGER.error(format_error(ErrorCode.BACKEND_ERROR, repr(exc)))

    def _handle_close(self, generation: int, code: Optional[int], reason: str) -> None:
        with speaker_context(self._speaker_id), self._lock:
            if not self._is_current(generation):
                LOGGER.debug("Ignoring close (code=%s) from a replaced connection", code)
                return
            self._connection = None
            LOGGER.info("Transcription connection closed (code=%s reason=%s)", code, reason)
            if code not in self._reconnect.close_codes:
                self.terminal = True
                LOGGER.error(
                    format_error(
                        ErrorCode.BACKEND_ERROR,
                        f"close code {code} is not recoverable; not reconnecting",
                    )
                )
                return
            self._maybe_schedule_reconnect(code)

    def _maybe_schedule_reconnect(self, code: Optional[int]) -> None:
        if self._pending_reconnect is not None:
            return
        max_attempts = self._reconnect.max_attempts
        if self.reconnect_attempts >= max_attempts:
            if not self.terminal:
                self.terminal = True
                if self._metrics is not None:
                    self._metrics.record_reconnect_exhausted()
                LOGGER.error(
                    format_error(
                        ErrorCode.BACKEND_RECONNECT_EXHAUSTED,
                        f"max reconnection attempts reached ({max_attempts})",
                    )
                )
            return
        now = self._time_fn()
        if (
            self.last_reconnect_at is not None
            and now - self.last_reconnect_at < self._reconnect.cooldown_sec
        ):
            if self._metrics is not None:
                self._metrics.record_reconnect_skipped()
            LOGGER.warning(
                "Skipping reconnection (%.1fs since last attempt, cooldown %.1fs)",
                now - self.last_reconnect_at,
                self._reconnect.cooldown_sec,
            )
            return
        delay = self._reconnect.delay_for(self.reconnect_attempts)
        pending = _PendingReconnect(attempt=self.reconnect_attempts + 1, delay_sec=delay)
        self._pending_reconnect = pending
        pending.handle = self._scheduler.call_later(
            delay, lambda: self._reconnect_fired(pending)
        )
        if self._metrics is not None:
            self._metrics.record_reconnect_scheduled()
        LOGGER.info(
            "Reconnecting in %.1fs (close code %s, attempt %d/%d)",
            delay,
            code,
            pending.attempt,
            max_attempts,
        )

    def _reconnect_fired(self, pending: _PendingReconnect) -> None:
        with speaker_context(self._speaker_id), self._lock:
            if self._closed or self._pending_reconnect is not pending:
                return
            self._pending_reconnect = None
            self.reconnect_attempts += 1
            self.last_reconnect_at = self._time_fn()
            LOGGER.info(
                "Reconnection initiated (attempt %d, delay %.1fs)",
                pending.attempt,
                pending.delay_sec,
            )
            self._install_connection()

    def _schedule_keepalive(self) -> None:
        interval = self._settings.keepalive_interval_sec
        if interval <= 0:
            return
        handle_box: dict = {}

        def _tick() -> None:
            with speaker_context(self._speaker_id), self._lock:
                if self._closed or self._keepalive_handle is not handle_box.get("handle"):
                    return
                self.maybe_send_keepalive()
                self._schedule_keepalive()

        handle = self._scheduler.call_later(interval, _tick)
        handle_box["handle"] = handle
        self._keepalive_handle = handle
