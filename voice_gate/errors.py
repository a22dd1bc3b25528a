"""Centralized error codes and categories."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced in logs."""

    # session/audio (ERR100x)
    SPEAKER_ID_REQUIRED = "ERR1001"
    SESSION_CLOSED = "ERR1002"
    AUDIO_FRAME_MALFORMED = "ERR1003"
    CONFIG_INVALID = "ERR1004"

    # backend (ERR200x)
    BACKEND_CONNECT_FAILED = "ERR2001"
    BACKEND_ERROR = "ERR2002"
    BACKEND_RECONNECT_EXHAUSTED = "ERR2003"
    BACKEND_SEND_FAILED = "ERR2004"
    BACKEND_MESSAGE_INVALID = "ERR2005"
    BACKEND_SEND_QUEUE_FULL = "ERR2006"

    # delivery/stream (ERR300x)
    DELIVERY_FAILED = "ERR3001"
    AUDIO_STREAM_FAILED = "ERR3002"


class ErrorCategory(str, Enum):
    """How the core reacts to an error."""

    INVALID = "invalid"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    DROPPED = "dropped"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class ErrorSpec:
    """Maps an error code to its category and default message."""

    code: ErrorCode
    category: ErrorCategory
    message: str


ERROR_SPECS: Final[dict[ErrorCode, ErrorSpec]] = {
    ErrorCode.SPEAKER_ID_REQUIRED: ErrorSpec(
        ErrorCode.SPEAKER_ID_REQUIRED,
        ErrorCategory.INVALID,
        "speaker_id is required",
    ),
    ErrorCode.SESSION_CLOSED: ErrorSpec(
        ErrorCode.SESSION_CLOSED,
        ErrorCategory.DROPPED,
        "speaker session is closed",
    ),
    ErrorCode.AUDIO_FRAME_MALFORMED: ErrorSpec(
        ErrorCode.AUDIO_FRAME_MALFORMED,
        ErrorCategory.DROPPED,
        "audio frame is not valid PCM16",
    ),
    ErrorCode.CONFIG_INVALID: ErrorSpec(
        ErrorCode.CONFIG_INVALID,
        ErrorCategory.INVALID,
        "invalid configuration",
    ),
    ErrorCode.BACKEND_CONNECT_FAILED: ErrorSpec(
        ErrorCode.BACKEND_CONNECT_FAILED,
        ErrorCategory.TRANSIENT,
        "failed to open transcription connection",
    ),
    ErrorCode.BACKEND_ERROR: ErrorSpec(
        ErrorCode.BACKEND_ERROR,
        ErrorCategory.TRANSIENT,
        "transcription backend reported an error",
    ),
    ErrorCode.BACKEND_RECONNECT_EXHAUSTED: ErrorSpec(
        ErrorCode.BACKEND_RECONNECT_EXHAUSTED,
        ErrorCategory.PERMANENT,
        "max reconnection attempts reached",
    ),
    ErrorCode.BACKEND_SEND_FAILED: ErrorSpec(
        ErrorCode.BACKEND_SEND_FAILED,
        ErrorCategory.DROPPED,
        "failed to send to transcription backend",
    ),
    ErrorCode.BACKEND_MESSAGE_INVALID: ErrorSpec(
        ErrorCode.BACKEND_MESSAGE_INVALID,
        ErrorCategory.DROPPED,
        "could not decode transcription backend message",
    ),
    ErrorCode.BACKEND_SEND_QUEUE_FULL: ErrorSpec(
        ErrorCode.BACKEND_SEND_QUEUE_FULL,
        ErrorCategory.DROPPED,
        "outbound audio buffer is full; frame dropped",
    ),
    ErrorCode.DELIVERY_FAILED: ErrorSpec(
        ErrorCode.DELIVERY_FAILED,
        ErrorCategory.BEST_EFFORT,
        "transcript delivery failed",
    ),
    ErrorCode.AUDIO_STREAM_FAILED: ErrorSpec(
        ErrorCode.AUDIO_STREAM_FAILED,
        ErrorCategory.PERMANENT,
        "audio stream terminated with an error",
    ),
}


def spec_for(code: ErrorCode) -> ErrorSpec:
    """Return the ErrorSpec for a given error code."""
    return ERROR_SPECS[code]


def category_for(code: ErrorCode) -> ErrorCategory:
    """Return the category associated with an error code."""
    return ERROR_SPECS[code].category


def format_error(code: ErrorCode, detail: Optional[str] = None) -> str:
    """Format an error code and optional detail into a message."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return f"{spec.code.value} {message}"


class GateError(RuntimeError):
    """Raised for application-defined errors with category metadata."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None) -> None:
        self.code = code
        self.category = category_for(code)
        self.detail = detail or ERROR_SPECS[code].message
        super().__init__(format_error(code, detail))


__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "ErrorSpec",
    "ERROR_SPECS",
    "GateError",
    "category_for",
    "format_error",
    "spec_for",
]
