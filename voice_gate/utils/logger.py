import contextvars
import logging
import logging.handlers
import queue
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

# Custom TRACE level below DEBUG.
TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


def trace(self: logging.Logger, message: str, *args, **kwargs) -> None:
    """Logger helper for TRACE level."""
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore

_SPEAKER_ID: contextvars.ContextVar[str] = contextvars.ContextVar(
    "voice_gate_speaker_id", default="-"
)


def set_speaker_id(speaker_id: str) -> contextvars.Token:
    """Bind a speaker id to log records emitted from the current context."""
    return _SPEAKER_ID.set(speaker_id or "-")


def clear_speaker_id(token: Optional[contextvars.Token] = None) -> None:
    if token is not None:
        _SPEAKER_ID.reset(token)
        return
    _SPEAKER_ID.set("-")


@contextmanager
def speaker_context(speaker_id: str) -> Iterator[None]:
    token = set_speaker_id(speaker_id)
    try:
        yield
    finally:
        clear_speaker_id(token)


class SpeakerContextFilter(logging.Filter):
    """Attach the current speaker id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "speaker_id"):
            record.speaker_id = _SPEAKER_ID.get()
        return True


LOG_QUEUE: "queue.Queue[logging.LogRecord]" = queue.Queue()
QUEUE_LISTENER: Optional[logging.handlers.QueueListener] = None

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s speaker_id=%(speaker_id)s: %(message)s"


def configure_logging(
    level: str,
    log_file: Optional[str],
    transcript_log_file: Optional[str] = None,
) -> None:
    """Configure root logging with queue-based handlers."""
    global QUEUE_LISTENER
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if level.upper() == "TRACE":
        numeric_level = TRACE_LEVEL_NUM

    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # The filter runs before enqueueing so the record carries the caller's context.
    queue_handler = logging.handlers.QueueHandler(LOG_QUEUE)
    queue_handler.addFilter(SpeakerContextFilter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(queue_handler)

    if QUEUE_LISTENER:
        QUEUE_LISTENER.stop()
    QUEUE_LISTENER = logging.handlers.QueueListener(
        LOG_QUEUE, *handlers, respect_handler_level=True
    )
    QUEUE_LISTENER.start()

    _configure_transcript_logger(transcript_log_file)


def _configure_transcript_logger(transcript_log_file: Optional[str]) -> None:
    for handler in TRANSCRIPT_LOGGER.handlers:
        handler.close()
    TRANSCRIPT_LOGGER.handlers.clear()
    TRANSCRIPT_LOGGER.propagate = False
    TRANSCRIPT_LOGGER.setLevel(logging.INFO)
    if not transcript_log_file:
        TRANSCRIPT_LOGGER.addHandler(logging.NullHandler())
        return
    path = Path(transcript_log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.addFilter(SpeakerContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    TRANSCRIPT_LOGGER.addHandler(handler)


LOGGER = logging.getLogger("voice_gate")
TRANSCRIPT_LOGGER = logging.getLogger("voice_gate.transcripts")
TRANSCRIPT_LOGGER.propagate = False

__all__ = [
    "configure_logging",
    "clear_speaker_id",
    "set_speaker_id",
    "speaker_context",
    "LOGGER",
    "TRANSCRIPT_LOGGER",
    "TRACE_LEVEL_NUM",
]
