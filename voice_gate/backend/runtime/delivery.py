"""Hand-off of finished transcripts to the delivery collaborator."""

from __future__ import annotations

import threading
from concurrent import futures
from typing import Optional, Protocol

from voice_gate.errors import ErrorCode, format_error
from voice_gate.utils.logger import (
    LOGGER,
    TRANSCRIPT_LOGGER,
    clear_speaker_id,
    set_speaker_id,
)

from .metrics import Metrics


class TranscriptSink(Protocol):
    """Destination for finished utterances (chat channel, thread, file...)."""

    def deliver(self, display_name: str, text: str) -> None: ...


class LoggingTranscriptSink:
    """Writes transcripts to the dedicated transcript logger."""

    def deliver(self, display_name: str, text: str) -> None:
        TRANSCRIPT_LOGGER.info("%s: %s", display_name, text)


class DeliveryDispatcher:
    """Fire-and-forget, at-most-once delivery on a single worker thread.

    A single worker keeps deliveries in submission order. Failures are logged
    and counted; nothing is retried or re-queued.
    """

    def __init__(
        self,
        sink: TranscriptSink,
        metrics: Optional[Metrics] = None,
        executor: Optional[futures.Executor] = None,
    ) -> None:
        self._sink = sink
        self._metrics = metrics
        self._owns_executor = executor is None
        self._executor = executor or futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="voice-gate-delivery"
        )
        self._closed = False
        self._lock = threading.Lock()

    def submit(self, speaker_id: str, display_name: str, text: str) -> bool:
        """Queue a delivery; returns False when the dispatcher is closed."""
        with self._lock:
            if self._closed:
                LOGGER.warning(
                    format_error(ErrorCode.DELIVERY_FAILED, "dispatcher closed"),
                )
                return False
            self._executor.submit(self._deliver, speaker_id, display_name, text)
        return True

    def _deliver(self, speaker_id: str, display_name: str, text: str) -> None:
        token = set_speaker_id(speaker_id)
        try:
            self._sink.deliver(display_name, text)
            LOGGER.info("Delivered transcript for %s (%d chars)", display_name, len(text))
        except Exception as exc:
            if self._metrics is not None:
                self._metrics.record_delivery_failure()
            LOGGER.error(format_error(ErrorCode.DELIVERY_FAILED, repr(exc)))
        finally:
            clear_speaker_id(token)

    def close(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
