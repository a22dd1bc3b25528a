"""Component layer helpers for the voice gate."""

from .preroll import PrerollBuffer
from .timers import Scheduler, ThreadingScheduler, TimerHandle
from .vad_gate import DynamicThreshold, ThresholdUpdate, VADDecision, clamp_elevated

__all__ = [
    "DynamicThreshold",
    "PrerollBuffer",
    "Scheduler",
    "ThreadingScheduler",
    "ThresholdUpdate",
    "TimerHandle",
    "VADDecision",
    "clamp_elevated",
]
