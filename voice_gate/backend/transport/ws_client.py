"""WebSocket streaming connection to a transcription backend."""

from __future__ import annotations

import json
import queue
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

from voice_gate.backend.transport.connection import (
    CLOSE_ABNORMAL,
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    ConnectionFactory,
    ConnectionListener,
    TranscriptEvent,
)
from voice_gate.errors import ErrorCode, GateError, format_error
from voice_gate.utils.logger import LOGGER

KEEPALIVE_MESSAGE = json.dumps({"type": "KeepAlive"})
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})
# 250 frames is 5s of 20ms audio.
DEFAULT_SEND_QUEUE_SIZE = 250

_CLOSE_STREAM = object()
_STOP_WRITER = object()


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def parse_transcript_message(message: str | bytes) -> Optional[TranscriptEvent]:
    """Decode one backend message; returns None for non-result messages.

    Results follow the common streaming shape::

        {"type": "Results", "is_final": true, "speech_final": false,
         "channel": {"alternatives": [{"transcript": "..."}]}}

    Only ``speech_final`` on a result counts as finality; ``UtteranceEnd``
    and other message types are ignored.
    """
    if isinstance(message, (bytes, bytearray)):
        return None
    try:
        payload = json.loads(message)
    except (TypeError, ValueError) as exc:
        raise GateError(ErrorCode.BACKEND_MESSAGE_INVALID, str(exc)) from exc
    if not isinstance(payload, dict):
        raise GateError(ErrorCode.BACKEND_MESSAGE_INVALID, "payload is not an object")
    kind = payload.get("type", "Results")
    if kind != "Results":
        return None
    channel = payload.get("channel")
    alternatives = []
    if isinstance(channel, dict):
        alternatives = channel.get("alternatives") or []
    transcript = ""
    if alternatives and isinstance(alternatives[0], dict):
        transcript = str(alternatives[0].get("transcript") or "")
    speech_final = payload.get("speech_final")
    return TranscriptEvent(
        text=transcript,
        is_final=bool(payload.get("is_final")),
        speech_final=None if speech_final is None else bool(speech_final),
    )


class WebSocketTranscriptionConnection:
    """Threaded WebSocket client.

    A reader thread connects and consumes backend messages. Outbound audio
    and keepalives go through a bounded queue drained by a writer thread, so
    callers never wait on the socket; when the queue is full the message is
    dropped and ``send_audio`` returns False.
    """

    def __init__(
        self,
        url: str,
        listener: ConnectionListener,
        *,
        headers: Optional[Dict[str, str]] = None,
        open_timeout: float = 10.0,
        close_timeout: float = 2.0,
        send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self._url = url
        self._listener = listener
        self._headers = dict(headers or {})
        self._open_timeout = open_timeout
        self._close_timeout = close_timeout
        self._connect = connect or ws_connect
        self._lock = threading.Lock()
        self._state = ConnectionState.IDLE
        self._ws: Any = None
        self._close_requested = False
        self._outbound: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, send_queue_size))
        self._thread: Optional[threading.Thread] = None
        self._writer: Optional[threading.Thread] = None
        self.dropped = 0

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def start(self) -> None:
        with self._lock:
            if self._state != ConnectionState.IDLE:
                return
            self._state = ConnectionState.CONNECTING
        self._thread = threading.Thread(
            target=self._run, name="voice-gate-ws", daemon=True
        )
        self._thread.start()

    def is_open(self) -> bool:
        with self._lock:
            return self._state == ConnectionState.OPEN

    def send_audio(self, frame: bytes) -> bool:
        return self._enqueue(bytes(frame))

    def send_keepalive(self) -> bool:
        return self._enqueue(KEEPALIVE_MESSAGE)

    def close(self) -> None:
        with self._lock:
            self._close_requested = True
            if self._state in (ConnectionState.IDLE, ConnectionState.CONNECTING):
                self._state = ConnectionState.CLOSED
                return
            if self._state != ConnectionState.OPEN:
                return
            self._state = ConnectionState.CLOSING
            # The writer sends CloseStream after the queued audio, then closes.
            self._put_control(_CLOSE_STREAM)

    def _enqueue(self, message: Any) -> bool:
        with self._lock:
            if self._state != ConnectionState.OPEN:
                return False
            try:
                self._outbound.put_nowait(message)
            except queue.Full:
                self.dropped += 1
                return False
        return True

    def _put_control(self, marker: object) -> None:
        # Caller holds self._lock; only the writer removes items concurrently,
        # so one eviction always makes room.
        try:
            self._outbound.put_nowait(marker)
        except queue.Full:
            try:
                self._outbound.get_nowait()
                self.dropped += 1
            except queue.Empty:
                pass
            self._outbound.put_nowait(marker)

    def _run(self) -> None:
        try:
            ws = self._connect(
                self._url,
                additional_headers=self._headers or None,
                open_timeout=self._open_timeout,
                close_timeout=self._close_timeout,
            )
        except Exception as exc:  # network, handshake and timeout errors alike
            LOGGER.warning(format_error(ErrorCode.BACKEND_CONNECT_FAILED, str(exc)))
            with self._lock:
                self._state = ConnectionState.CLOSED
            self._listener.on_error(exc)
            self._listener.on_close(CLOSE_ABNORMAL, str(exc))
            return

        with self._lock:
            if self._close_requested:
                self._state = ConnectionState.CLOSED
                abandoned = True
            else:
                self._ws = ws
                self._state = ConnectionState.OPEN
                abandoned = False
        if abandoned:
            ws.close(code=CLOSE_NORMAL)
            return

        self._writer = threading.Thread(
            target=self._write_loop, args=(ws,), name="voice-gate-ws-writer", daemon=True
        )
        self._writer.start()
        self._listener.on_open()
        code, reason = self._read_loop(ws)
        with self._lock:
            self._state = ConnectionState.CLOSED
            self._ws = None
            self._put_control(_STOP_WRITER)
        self._listener.on_close(code, reason)

    def _write_loop(self, ws: Any) -> None:
        while True:
            item = self._outbound.get()
            if item is _STOP_WRITER:
                return
            if item is _CLOSE_STREAM:
                try:
                    ws.send(CLOSE_STREAM_MESSAGE)
                except ConnectionClosed:
                    pass
                ws.close(code=CLOSE_NORMAL)
                return
            try:
                ws.send(item)
            except ConnectionClosed:
                # the reader reports the close
                return
            except OSError as exc:
                LOGGER.warning(format_error(ErrorCode.BACKEND_SEND_FAILED, repr(exc)))
                ws.close(code=CLOSE_INTERNAL_ERROR)
                return

    def _read_loop(self, ws: Any) -> Tuple[Optional[int], str]:
        while True:
            try:
                message = ws.recv()
            except ConnectionClosed as exc:
                received = exc.rcvd
                if received is None:
                    return CLOSE_ABNORMAL, str(exc)
                return received.code, received.reason
            try:
                event = parse_transcript_message(message)
            except GateError as exc:
                LOGGER.debug(str(exc))
                continue
            if event is not None:
                self._listener.on_transcript(event)


def websocket_connection_factory(
    url: str, headers: Optional[Dict[str, str]] = None, **kwargs: Any
) -> ConnectionFactory:
    """Build a ConnectionFactory producing WebSocketTranscriptionConnection."""

    def _factory(listener: ConnectionListener) -> WebSocketTranscriptionConnection:
        return WebSocketTranscriptionConnection(url, listener, headers=headers, **kwargs)

    return _factory
