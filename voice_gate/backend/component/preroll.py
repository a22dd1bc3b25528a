"""Pre-roll buffering for utterance onsets."""

from __future__ import annotations

from collections import deque
from typing import List


class PrerollBuffer:
    """Bounded FIFO of recent frames; the oldest frame is evicted when full."""

    def __init__(self, capacity: int) -> None:
        self.capacity = max(0, int(capacity))
        self._frames: "deque[bytes]" = deque(maxlen=self.capacity or None)

    def append(self, frame: bytes) -> None:
        if self.capacity == 0:
            return
        self._frames.append(bytes(frame))

    def drain(self) -> List[bytes]:
        """Return buffered frames in arrival order and empty the buffer."""
        frames = list(self._frames)
        self._frames.clear()
        return frames

    def clear(self) -> None:
        self._frames.clear()

    def __len__(self) -> int:
        return len(self._frames)
