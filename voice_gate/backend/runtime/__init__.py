"""Runtime configuration, metrics and delivery for the voice gate.

``GateRuntime`` lives in ``voice_gate.backend.runtime.runtime``; it is not
re-exported here because the config loader imports this package.
"""

from .config import ReconnectSettings, SessionSettings, ThresholdSettings
from .metrics import Histogram, HistogramSnapshot, Metrics

__all__ = [
    "Histogram",
    "HistogramSnapshot",
    "Metrics",
    "ReconnectSettings",
    "SessionSettings",
    "ThresholdSettings",
]
