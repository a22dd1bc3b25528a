"""Runtime configuration models consumed by speaker sessions."""

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class ThresholdSettings:
    """Base VAD threshold and the clamp used when elevating it."""

    base: float = 150.0
    ratio: float = 0.5
    min_elevated: float = 200.0
    max_elevated: float = 800.0


@dataclass(frozen=True)
class ReconnectSettings:
    """Reconnect-with-backoff policy for the transcription connection."""

    max_attempts: int = 5
    cooldown_sec: float = 5.0
    backoff_base_sec: float = 1.0
    backoff_cap_sec: float = 10.0
    close_codes: Tuple[int, ...] = (1000, 1006, 1011)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before reconnect number ``attempt`` (0-based)."""
        return min(self.backoff_base_sec * (2 ** max(0, attempt)), self.backoff_cap_sec)


@dataclass(frozen=True)
class SessionSettings:
    """Per-speaker session settings, all durations in seconds."""

    local_vad: bool = True
    base_silence_sec: float = 1.5
    preroll_frames: int = 30
    keepalive_interval_sec: float = 5.0
    sample_rate: int = 48000
    channels: int = 2
    threshold: ThresholdSettings = field(default_factory=ThresholdSettings)
    reconnect: ReconnectSettings = field(default_factory=ReconnectSettings)
