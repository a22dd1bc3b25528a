"""Per-speaker gating state machine."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from voice_gate.backend.application.connection_manager import (
    ConnectionManager,
    ConnectionManagerHooks,
)
from voice_gate.backend.component.preroll import PrerollBuffer
from voice_gate.backend.component.timers import Scheduler, TimerHandle, cancel_quietly
from voice_gate.backend.component.vad_gate import DynamicThreshold
from voice_gate.backend.runtime.config import SessionSettings
from voice_gate.backend.runtime.metrics import Metrics
from voice_gate.backend.transport.connection import ConnectionFactory, TranscriptEvent
from voice_gate.errors import ErrorCode, format_error
from voice_gate.utils import audio
from voice_gate.utils.logger import LOGGER, speaker_context


class SpeakerState(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    SILENCE_TRAILING = "silence_trailing"
    AWAITING_FINALITY = "awaiting_finality"


@dataclass(frozen=True)
class SpeakerIdentity:
    speaker_id: str
    display_name: str


@dataclass(eq=False)
class PendingFinality:
    """Armed finality timer plus the speech sequence number seen at arming."""

    sequence: int
    handle: Optional[TimerHandle] = field(default=None, repr=False)


@dataclass(eq=False)
class PendingSilence:
    started_at: float
    handle: Optional[TimerHandle] = field(default=None, repr=False)


DeliverFn = Callable[[SpeakerIdentity, str], None]


class SpeakerSession:
    """Gates one speaker's audio into an utterance-scoped transcription stream.

    Frames at or below the active threshold are held in the pre-roll buffer
    while idle. The first frame above it starts sending: the pre-roll goes out
    in arrival order, then the triggering frame. Final transcript fragments are
    accumulated and flushed to the delivery callable either once local silence
    has lasted the base duration, or once a backend finality signal has been
    followed by the same duration without new speech. Finality timers carry the
    speech sequence number they were armed with; any speech frame in between
    bumps the sequence and the stale flush is skipped.
    With local VAD disabled every frame is forwarded, and the silence timer
    restarts on each frame so the utterance ends once frames stop arriving.

    Frame handling, timer callbacks and backend events all run under one
    re-entrant lock that is shared with the connection manager.
    """

    def __init__(
        self,
        identity: SpeakerIdentity,
        settings: SessionSettings,
        connection_factory: ConnectionFactory,
        deliver: DeliverFn,
        *,
        scheduler: Scheduler,
        time_fn: Callable[[], float] | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self.identity = identity
        self._settings = settings
        self._deliver = deliver
        self._scheduler = scheduler
        self._time_fn = time_fn or time.monotonic
        self._metrics = metrics
        self._lock = threading.RLock()
        self._threshold = DynamicThreshold(settings.threshold)
        self._preroll = PrerollBuffer(settings.preroll_frames)
        self._fragments: List[str] = []
        self._state = SpeakerState.IDLE
        self._sending = False
        self._speech_seq = 0
        self._pending_finality: Optional[PendingFinality] = None
        self._pending_silence: Optional[PendingSilence] = None
        self._utterance_started_at: Optional[float] = None
        self._closed = False
        self.last_audio_at: Optional[float] = None
        self.connection = ConnectionManager(
            connection_factory,
            settings,
            scheduler,
            self._lock,
            speaker_id=identity.speaker_id,
            time_fn=self._time_fn,
            metrics=metrics,
            hooks=ConnectionManagerHooks(on_transcript=self._on_transcript),
        )

    @property
    def speaker_id(self) -> str:
        return self.identity.speaker_id

    @property
    def state(self) -> SpeakerState:
        return self._state

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def speaking(self) -> bool:
        return self._state is SpeakerState.SPEAKING

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transcript(self) -> str:
        with self._lock:
            return " ".join(self._fragments)

    @property
    def threshold(self) -> DynamicThreshold:
        return self._threshold

    @property
    def pending_finality(self) -> Optional[PendingFinality]:
        return self._pending_finality

    @property
    def pending_silence(self) -> Optional[PendingSilence]:
        return self._pending_silence

    def preroll_size(self) -> int:
        return len(self._preroll)

    def start(self) -> None:
        """Open the transcription connection."""
        with speaker_context(self.speaker_id):
            LOGGER.info("Speaker session started for %s", self.identity.display_name)
            self.connection.open()

    def handle_frame(self, frame: bytes) -> bool:
        """Gate one PCM16 frame. Returns False if the frame was rejected."""
        with speaker_context(self.speaker_id), self._lock:
            if self._closed:
                LOGGER.debug(format_error(ErrorCode.SESSION_CLOSED))
                return False
            if not audio.is_valid_pcm16(frame):
                if self._metrics is not None:
                    self._metrics.record_malformed_frame()
                LOGGER.debug(
                    format_error(
                        ErrorCode.AUDIO_FRAME_MALFORMED,
                        f"type={type(frame).__name__}",
                    )
                )
                return False
            frame = bytes(frame)
            if self._metrics is not None:
                self._metrics.record_frame()
            self.last_audio_at = self._time_fn()
            if not self._settings.local_vad:
                self._on_ungated_frame(frame)
                return True
            decision = self._threshold.evaluate(frame)
            if decision.speech:
                self._on_speech_frame(frame, decision.volume)
            else:
                self._on_silent_frame(frame)
            return True

    def close(self, reason: str = "closed") -> None:
        """Flush leftover text and close the connection. Idempotent."""
        with speaker_context(self.speaker_id), self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_silence()
            self._cancel_finality()
            self._flush(reason)
            self._sending = False
            self._state = SpeakerState.IDLE
            self._preroll.clear()
            self.connection.close()
            LOGGER.info("Speaker session closed (%s)", reason)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "speaker_id": self.speaker_id,
                "display_name": self.identity.display_name,
                "state": self._state.value,
                "sending": self._sending,
                "threshold": self._threshold.threshold,
                "transcript": " ".join(self._fragments),
                "preroll_frames": len(self._preroll),
                "last_audio_at": self.last_audio_at,
                "reconnect_attempts": self.connection.reconnect_attempts,
                "backend_terminal": self.connection.terminal,
                "closed": self._closed,
            }

    def _on_speech_frame(self, frame: bytes, volume: float) -> None:
        self._speech_seq += 1
        self._threshold.observe_speech(volume)
        self._cancel_silence()
        if not self._sending:
            self._sending = True
            self._utterance_started_at = self._time_fn()
            if self._metrics is not None:
                self._metrics.record_utterance_start()
            buffered = self._preroll.drain()
            LOGGER.debug(
                "Speech onset (volume=%.1f threshold=%.1f preroll=%d)",
                volume,
                self._threshold.threshold,
                len(buffered),
            )
            for buffered_frame in buffered:
                self.connection.send_audio(buffered_frame)
        self._state = SpeakerState.SPEAKING
        self.connection.send_audio(frame)

    def _on_silent_frame(self, frame: bytes) -> None:
        if not self._sending:
            self._preroll.append(frame)
            self.connection.maybe_send_keepalive()
            return
        now = self._time_fn()
        if self._pending_silence is None:
            self._start_silence(now)
        elif now - self._pending_silence.started_at >= self._settings.base_silence_sec:
            self._finish_utterance("silence")
            self._preroll.append(frame)
            return
        self.connection.send_audio(frame)

    def _on_ungated_frame(self, frame: bytes) -> None:
        # Local VAD disabled: every frame is forwarded and the utterance ends
        # once no frame has arrived for the base silence duration.
        self._speech_seq += 1
        self._cancel_silence()
        if not self._sending:
            self._sending = True
            self._utterance_started_at = self._time_fn()
            if self._metrics is not None:
                self._metrics.record_utterance_start()
        self._state = SpeakerState.SPEAKING
        self.connection.send_audio(frame)
        pending = PendingSilence(started_at=self._time_fn())
        self._pending_silence = pending
        pending.handle = self._scheduler.call_later(
            self._settings.base_silence_sec, lambda: self._silence_fired(pending)
        )

    def _start_silence(self, now: float) -> None:
        pending = PendingSilence(started_at=now)
        self._pending_silence = pending
        pending.handle = self._scheduler.call_later(
            self._settings.base_silence_sec, lambda: self._silence_fired(pending)
        )
        if self._state is SpeakerState.SPEAKING:
            self._state = SpeakerState.SILENCE_TRAILING

    def _silence_fired(self, pending: PendingSilence) -> None:
        with speaker_context(self.speaker_id), self._lock:
            if self._closed or self._pending_silence is not pending:
                return
            self._pending_silence = None
            if self._sending:
                self._finish_utterance("silence")

    def _on_transcript(self, event: TranscriptEvent) -> None:
        # Called by the connection manager with the session lock held.
        if self._closed:
            return
        text = event.text.strip()
        if event.is_final and text:
            self._fragments.append(text)
            LOGGER.debug("Final fragment: %s", text)
        if event.speech_final:
            self._on_finality()

    def _on_finality(self) -> None:
        now = self._time_fn()
        update = self._threshold.on_finality(now)
        if update.elevated:
            LOGGER.debug(
                "Threshold elevated to %.1f (avg=%.1f max=%.1f samples=%d)",
                update.threshold,
                update.average_volume,
                update.max_volume,
                update.samples,
            )
        self._cancel_finality()
        pending = PendingFinality(sequence=self._speech_seq)
        self._pending_finality = pending
        pending.handle = self._scheduler.call_later(
            self._settings.base_silence_sec, lambda: self._finality_fired(pending)
        )
        if self._sending:
            self._state = SpeakerState.AWAITING_FINALITY

    def _finality_fired(self, pending: PendingFinality) -> None:
        with speaker_context(self.speaker_id), self._lock:
            if self._closed or self._pending_finality is not pending:
                return
            self._pending_finality = None
            if self._speech_seq != pending.sequence:
                if self._metrics is not None:
                    self._metrics.record_finality_flush_skipped()
                LOGGER.info("Speech resumed after finality; skipping flush")
                return
            self._finish_utterance("finality")

    def _finish_utterance(self, reason: str) -> None:
        self._flush(reason)
        self._cancel_silence()
        self._cancel_finality()
        self._state = SpeakerState.IDLE
        if self._sending:
            self._sending = False
            self._utterance_started_at = None
            self._preroll.clear()

    def _flush(self, reason: str) -> Optional[str]:
        text = " ".join(self._fragments).strip()
        self._fragments.clear()
        if not text:
            return None
        duration = None
        if self._utterance_started_at is not None:
            duration = self._time_fn() - self._utterance_started_at
        if self._metrics is not None:
            self._metrics.record_delivery(reason, duration)
        LOGGER.info("Flushing transcript (%s, %d chars)", reason, len(text))
        try:
            self._deliver(self.identity, text)
        except Exception as exc:
            if self._metrics is not None:
                self._metrics.record_delivery_failure()
            LOGGER.error(format_error(ErrorCode.DELIVERY_FAILED, repr(exc)))
        return text

    def _cancel_silence(self) -> None:
        if self._pending_silence is not None:
            cancel_quietly(self._pending_silence.handle)
            self._pending_silence = None

    def _cancel_finality(self) -> None:
        if self._pending_finality is not None:
            cancel_quietly(self._pending_finality.handle)
            self._pending_finality = None
