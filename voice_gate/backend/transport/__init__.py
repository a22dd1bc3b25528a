"""Transport adapters for transcription backends."""

from .connection import (
    CLOSE_ABNORMAL,
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    ConnectionFactory,
    ConnectionListener,
    TranscriptEvent,
    TranscriptionConnection,
)

__all__ = [
    "CLOSE_ABNORMAL",
    "CLOSE_INTERNAL_ERROR",
    "CLOSE_NORMAL",
    "ConnectionFactory",
    "ConnectionListener",
    "TranscriptEvent",
    "TranscriptionConnection",
]
