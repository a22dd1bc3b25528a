"""Default values for gate/runtime configuration."""

from typing import Dict, Tuple

DEFAULT_SAMPLE_RATE = 48000
DEFAULT_CHANNELS = 2
DEFAULT_BASE_SILENCE_MS = 1500
DEFAULT_LOCAL_VAD_ENABLED = True
DEFAULT_VOLUME_THRESHOLD = 150.0
DEFAULT_DYNAMIC_THRESHOLD_RATIO = 0.5
DEFAULT_MIN_ELEVATED_THRESHOLD = 200.0
DEFAULT_MAX_ELEVATED_THRESHOLD = 800.0
DEFAULT_PREROLL_FRAMES = 30  # ~600ms of 20ms frames
DEFAULT_KEEPALIVE_INTERVAL_MS = 5000
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_COOLDOWN_MS = 5000
DEFAULT_RECONNECT_BACKOFF_BASE_MS = 1000
DEFAULT_RECONNECT_BACKOFF_CAP_MS = 10000
# 1000 normal (backend-initiated), 1006 abnormal, 1011 timeout/internal.
DEFAULT_RECONNECT_CLOSE_CODES: Tuple[int, ...] = (1000, 1006, 1011)
DEFAULT_BACKEND_URL = ""
DEFAULT_BACKEND_API_KEY = None
DEFAULT_BACKEND_SEND_QUEUE_FRAMES = 250  # ~5s of 20ms frames
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = None
DEFAULT_TRANSCRIPT_LOG_FILE = None

GATE_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "audio": {
        "sample_rate": "sample_rate",
        "channels": "channels",
    },
    "vad": {
        "enabled": "local_vad_enabled",
        "silence_ms": "base_silence_ms",
        "threshold": "volume_threshold",
    },
    "dynamic_threshold": {
        "ratio": "dynamic_threshold_ratio",
        "min": "min_elevated_threshold",
        "max": "max_elevated_threshold",
    },
    "preroll": {
        "frames": "preroll_frames",
    },
    "backend": {
        "url": "backend_url",
        "api_key": "backend_api_key",
        "send_queue_frames": "backend_send_queue_frames",
        "keepalive_interval_ms": "keepalive_interval_ms",
        "max_reconnect_attempts": "max_reconnect_attempts",
        "reconnect_cooldown_ms": "reconnect_cooldown_ms",
        "reconnect_backoff_base_ms": "reconnect_backoff_base_ms",
        "reconnect_backoff_cap_ms": "reconnect_backoff_cap_ms",
        "reconnect_close_codes": "reconnect_close_codes",
    },
    "logging": {
        "level": "log_level",
        "file": "log_file",
        "transcript_file": "transcript_log_file",
    },
}

__all__ = [
    "DEFAULT_SAMPLE_RATE",
    "DEFAULT_CHANNELS",
    "DEFAULT_BASE_SILENCE_MS",
    "DEFAULT_LOCAL_VAD_ENABLED",
    "DEFAULT_VOLUME_THRESHOLD",
    "DEFAULT_DYNAMIC_THRESHOLD_RATIO",
    "DEFAULT_MIN_ELEVATED_THRESHOLD",
    "DEFAULT_MAX_ELEVATED_THRESHOLD",
    "DEFAULT_PREROLL_FRAMES",
    "DEFAULT_KEEPALIVE_INTERVAL_MS",
    "DEFAULT_MAX_RECONNECT_ATTEMPTS",
    "DEFAULT_RECONNECT_COOLDOWN_MS",
    "DEFAULT_RECONNECT_BACKOFF_BASE_MS",
    "DEFAULT_RECONNECT_BACKOFF_CAP_MS",
    "DEFAULT_RECONNECT_CLOSE_CODES",
    "DEFAULT_BACKEND_URL",
    "DEFAULT_BACKEND_API_KEY",
    "DEFAULT_BACKEND_SEND_QUEUE_FRAMES",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_LOG_FILE",
    "DEFAULT_TRANSCRIPT_LOG_FILE",
    "GATE_SECTION_MAP",
]
