"""Registry of live speaker sessions."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from voice_gate.backend.application.speaker_session import SpeakerSession
from voice_gate.errors import ErrorCode, GateError
from voice_gate.utils.logger import LOGGER

SessionFactory = Callable[[str, str], SpeakerSession]


def _noop_session_hook(_: SpeakerSession) -> None:
    return None


@dataclass(frozen=True)
class SessionRegistryHooks:
    """Callbacks invoked on session create/remove."""

    on_create: Callable[[SpeakerSession], None] = _noop_session_hook
    on_remove: Callable[[SpeakerSession], None] = _noop_session_hook


class SessionRegistry:
    """Thread-safe map of speaker id to its session."""

    def __init__(
        self,
        session_factory: SessionFactory,
        hooks: SessionRegistryHooks | None = None,
    ) -> None:
        self._factory = session_factory
        self._hooks = hooks or SessionRegistryHooks()
        self._lock = threading.Lock()
        self._sessions: Dict[str, SpeakerSession] = {}

    def get_or_create(
        self, speaker_id: str, display_name: Optional[str] = None
    ) -> SpeakerSession:
        """Return the speaker's session, creating and starting it on first use."""
        if not speaker_id:
            raise GateError(ErrorCode.SPEAKER_ID_REQUIRED)
        with self._lock:
            session = self._sessions.get(speaker_id)
            if session is not None:
                return session
            session = self._factory(speaker_id, display_name or speaker_id)
            self._sessions[speaker_id] = session
        # Connection setup happens outside the registry lock.
        self._hooks.on_create(session)
        session.start()
        return session

    def get(self, speaker_id: str) -> Optional[SpeakerSession]:
        with self._lock:
            return self._sessions.get(speaker_id)

    def teardown(self, speaker_id: str, reason: str = "departed") -> bool:
        """Remove and close a session; False if it was already gone."""
        with self._lock:
            session = self._sessions.pop(speaker_id, None)
        if session is None:
            return False
        session.close(reason)
        self._hooks.on_remove(session)
        LOGGER.info("Session for speaker %s torn down (%s)", speaker_id, reason)
        return True

    def teardown_all(self, reason: str = "shutdown") -> int:
        with self._lock:
            speaker_ids = list(self._sessions)
        return sum(1 for speaker_id in speaker_ids if self.teardown(speaker_id, reason))

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def speaker_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)
