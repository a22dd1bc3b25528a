"""Application wiring for the voice gate."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, Optional

from voice_gate.backend.application.session_registry import (
    SessionRegistry,
    SessionRegistryHooks,
)
from voice_gate.backend.application.speaker_session import (
    SpeakerIdentity,
    SpeakerSession,
)
from voice_gate.backend.component.timers import Scheduler, ThreadingScheduler
from voice_gate.backend.runtime.delivery import (
    DeliveryDispatcher,
    LoggingTranscriptSink,
    TranscriptSink,
)
from voice_gate.backend.runtime.metrics import Metrics
from voice_gate.backend.transport.connection import ConnectionFactory
from voice_gate.backend.transport.ws_client import websocket_connection_factory
from voice_gate.config.loader import GateConfig
from voice_gate.errors import ErrorCode, GateError, format_error
from voice_gate.utils.logger import LOGGER, speaker_context


class GateRuntime:
    """Builds and owns the registry, delivery dispatcher and metrics."""

    def __init__(
        self,
        config: GateConfig | None = None,
        connection_factory: ConnectionFactory | None = None,
        sink: TranscriptSink | None = None,
        *,
        scheduler: Scheduler | None = None,
        time_fn: Callable[[], float] | None = None,
        metrics: Metrics | None = None,
        dispatcher: DeliveryDispatcher | None = None,
    ) -> None:
        self.config = config or GateConfig()
        self.config.validate()
        self.settings = self.config.session_settings()
        self.metrics = metrics or Metrics()
        self._scheduler = scheduler or ThreadingScheduler()
        self._time_fn = time_fn or time.monotonic
        self._connection_factory = connection_factory or self._default_factory()
        self.dispatcher = dispatcher or DeliveryDispatcher(
            sink or LoggingTranscriptSink(), metrics=self.metrics
        )
        self.registry = SessionRegistry(
            self._create_session,
            SessionRegistryHooks(
                on_create=self._on_session_created,
                on_remove=self._on_session_removed,
            ),
        )
        self._shut_down = False

    def _default_factory(self) -> ConnectionFactory:
        if not self.config.backend_url:
            raise GateError(
                ErrorCode.CONFIG_INVALID,
                "backend.url is required when no connection factory is given",
            )
        headers = None
        if self.config.backend_api_key:
            headers = {"Authorization": f"Token {self.config.backend_api_key}"}
        return websocket_connection_factory(
            self.config.backend_url,
            headers,
            send_queue_size=int(self.config.backend_send_queue_frames),
        )

    def _create_session(self, speaker_id: str, display_name: str) -> SpeakerSession:
        return SpeakerSession(
            SpeakerIdentity(speaker_id=speaker_id, display_name=display_name),
            self.settings,
            self._connection_factory,
            self._deliver,
            scheduler=self._scheduler,
            time_fn=self._time_fn,
            metrics=self.metrics,
        )

    def _deliver(self, identity: SpeakerIdentity, text: str) -> None:
        self.dispatcher.submit(identity.speaker_id, identity.display_name, text)

    def _on_session_created(self, session: SpeakerSession) -> None:
        self.metrics.increase_active_sessions()

    def _on_session_removed(self, session: SpeakerSession) -> None:
        self.metrics.decrease_active_sessions()

    def handle_frame(
        self, speaker_id: str, frame: bytes, display_name: Optional[str] = None
    ) -> bool:
        """Route one frame to the speaker's session, creating it if needed."""
        if self._shut_down:
            return False
        session = self.registry.get_or_create(speaker_id, display_name)
        return session.handle_frame(frame)

    def pump_audio(
        self,
        speaker_id: str,
        display_name: Optional[str],
        frames: Iterable[bytes],
    ) -> None:
        """Feed a speaker's frame stream until it ends, then tear the session down."""
        if not speaker_id:
            raise GateError(ErrorCode.SPEAKER_ID_REQUIRED)
        with speaker_context(speaker_id):
            try:
                for frame in frames:
                    self.handle_frame(speaker_id, frame, display_name)
            except Exception as exc:
                LOGGER.error(format_error(ErrorCode.AUDIO_STREAM_FAILED, repr(exc)))
                self.speaker_left(speaker_id, reason="stream_error")
                return
            self.speaker_left(speaker_id, reason="end_of_stream")

    def speaker_left(self, speaker_id: str, reason: str = "departed") -> bool:
        return self.registry.teardown(speaker_id, reason)

    def snapshot(self) -> Dict[str, Any]:
        sessions = {}
        for speaker_id in self.registry.speaker_ids():
            session = self.registry.get(speaker_id)
            if session is not None:
                sessions[speaker_id] = session.snapshot()
        return {"sessions": sessions, "metrics": self.metrics.render()}

    def shutdown(self, wait: bool = True) -> None:
        """Tear down every session, then drain pending deliveries."""
        if self._shut_down:
            return
        self._shut_down = True
        count = self.registry.teardown_all("shutdown")
        self.dispatcher.close(wait=wait)
        LOGGER.info("Voice gate shut down (%d session(s) closed)", count)
