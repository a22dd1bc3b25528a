"""Application layer helpers for the voice gate."""

from .connection_manager import ConnectionManager, ConnectionManagerHooks
from .session_registry import SessionRegistry, SessionRegistryHooks
from .speaker_session import (
    PendingFinality,
    PendingSilence,
    SpeakerIdentity,
    SpeakerSession,
    SpeakerState,
)

__all__ = [
    "ConnectionManager",
    "ConnectionManagerHooks",
    "PendingFinality",
    "PendingSilence",
    "SessionRegistry",
    "SessionRegistryHooks",
    "SpeakerIdentity",
    "SpeakerSession",
    "SpeakerState",
]
