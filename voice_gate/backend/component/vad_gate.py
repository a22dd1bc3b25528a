"""Volume-based voice activity detection with a dynamic threshold."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from voice_gate.backend.runtime.config import ThresholdSettings
from voice_gate.utils import audio


@dataclass(frozen=True)
class VADDecision:
    volume: float
    threshold: float
    speech: bool


@dataclass(frozen=True)
class ThresholdUpdate:
    """Outcome of recomputing the threshold at an utterance boundary."""

    average_volume: Optional[float]
    max_volume: float
    samples: int
    threshold: float
    elevated: bool


def clamp_elevated(average: float, settings: ThresholdSettings) -> float:
    """avg * ratio clamped into [min_elevated, max_elevated]."""
    candidate = average * settings.ratio
    if candidate < settings.min_elevated:
        return settings.min_elevated
    if candidate > settings.max_elevated:
        return settings.max_elevated
    return candidate


class DynamicThreshold:
    """Tracks per-utterance volume statistics and the active speech threshold.

    A frame is speech when its volume is strictly above the active threshold.
    At each backend finality signal the threshold is recomputed from the
    statistics of the utterance that just ended, so trailing low-level noise
    right after an utterance is not mistaken for more speech. There is no
    timer-based decay; the next finality that follows speech replaces the
    value again.
    """

    def __init__(self, settings: ThresholdSettings) -> None:
        self.settings = settings
        self.threshold = settings.base
        self.elevated_at: Optional[float] = None
        self.volume_sum = 0.0
        self.volume_count = 0
        self.volume_max = 0.0
        self.last_average: Optional[float] = None

    def is_speech(self, volume: float) -> bool:
        return volume > self.threshold

    def evaluate(self, frame: bytes) -> VADDecision:
        volume = audio.estimate_volume(frame)
        return VADDecision(
            volume=volume, threshold=self.threshold, speech=self.is_speech(volume)
        )

    def observe_speech(self, volume: float) -> None:
        self.volume_sum += volume
        self.volume_count += 1
        if volume > self.volume_max:
            self.volume_max = volume

    def on_finality(self, now: float) -> ThresholdUpdate:
        """Recompute the threshold from the finished utterance and reset stats.

        Without speech statistics the active threshold is left as it is.
        """
        samples = self.volume_count
        max_volume = self.volume_max
        if samples > 0:
            average = self.volume_sum / samples
            self.threshold = clamp_elevated(average, self.settings)
            self.elevated_at = now
            self.last_average = average
        else:
            # nothing spoken since the last finality; keep the current value
            average = None
        self._reset_stats()
        return ThresholdUpdate(
            average_volume=average,
            max_volume=max_volume,
            samples=samples,
            threshold=self.threshold,
            elevated=samples > 0,
        )

    def reset(self) -> None:
        self.threshold = self.settings.base
        self.elevated_at = None
        self._reset_stats()

    def _reset_stats(self) -> None:
        self.volume_sum = 0.0
        self.volume_count = 0
        self.volume_max = 0.0
