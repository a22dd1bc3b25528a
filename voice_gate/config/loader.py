from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from voice_gate import PROJECT_ROOT
from voice_gate.backend.runtime.config import (
    ReconnectSettings,
    SessionSettings,
    ThresholdSettings,
)
from voice_gate.config.default import (
    DEFAULT_BACKEND_API_KEY,
    DEFAULT_BACKEND_SEND_QUEUE_FRAMES,
    DEFAULT_BACKEND_URL,
    DEFAULT_BASE_SILENCE_MS,
    DEFAULT_CHANNELS,
    DEFAULT_DYNAMIC_THRESHOLD_RATIO,
    DEFAULT_KEEPALIVE_INTERVAL_MS,
    DEFAULT_LOCAL_VAD_ENABLED,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_ELEVATED_THRESHOLD,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_MIN_ELEVATED_THRESHOLD,
    DEFAULT_PREROLL_FRAMES,
    DEFAULT_RECONNECT_BACKOFF_BASE_MS,
    DEFAULT_RECONNECT_BACKOFF_CAP_MS,
    DEFAULT_RECONNECT_CLOSE_CODES,
    DEFAULT_RECONNECT_COOLDOWN_MS,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_TRANSCRIPT_LOG_FILE,
    DEFAULT_VOLUME_THRESHOLD,
    GATE_SECTION_MAP,
)
from voice_gate.errors import ErrorCode, GateError


@dataclass
class GateConfig:
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    local_vad_enabled: bool = DEFAULT_LOCAL_VAD_ENABLED
    base_silence_ms: int = DEFAULT_BASE_SILENCE_MS
    volume_threshold: float = DEFAULT_VOLUME_THRESHOLD
    dynamic_threshold_ratio: float = DEFAULT_DYNAMIC_THRESHOLD_RATIO
    min_elevated_threshold: float = DEFAULT_MIN_ELEVATED_THRESHOLD
    max_elevated_threshold: float = DEFAULT_MAX_ELEVATED_THRESHOLD
    preroll_frames: int = DEFAULT_PREROLL_FRAMES
    backend_url: str = DEFAULT_BACKEND_URL
    backend_api_key: Optional[str] = DEFAULT_BACKEND_API_KEY
    backend_send_queue_frames: int = DEFAULT_BACKEND_SEND_QUEUE_FRAMES
    keepalive_interval_ms: int = DEFAULT_KEEPALIVE_INTERVAL_MS
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    reconnect_cooldown_ms: int = DEFAULT_RECONNECT_COOLDOWN_MS
    reconnect_backoff_base_ms: int = DEFAULT_RECONNECT_BACKOFF_BASE_MS
    reconnect_backoff_cap_ms: int = DEFAULT_RECONNECT_BACKOFF_CAP_MS
    reconnect_close_codes: Tuple[int, ...] = DEFAULT_RECONNECT_CLOSE_CODES
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = DEFAULT_LOG_FILE
    transcript_log_file: Optional[str] = DEFAULT_TRANSCRIPT_LOG_FILE

    def validate(self) -> None:
        """Raise GateError(CONFIG_INVALID) on values sessions cannot run with."""
        problems = []
        if self.volume_threshold < 0:
            problems.append("vad.threshold must be non-negative")
        if self.base_silence_ms <= 0:
            problems.append("vad.silence_ms must be positive")
        if self.dynamic_threshold_ratio < 0:
            problems.append("dynamic_threshold.ratio must be non-negative")
        if self.min_elevated_threshold > self.max_elevated_threshold:
            problems.append("dynamic_threshold.min must not exceed dynamic_threshold.max")
        if self.preroll_frames < 0:
            problems.append("preroll.frames must be non-negative")
        if self.backend_send_queue_frames <= 0:
            problems.append("backend.send_queue_frames must be positive")
        if self.keepalive_interval_ms <= 0:
            problems.append("backend.keepalive_interval_ms must be positive")
        if self.max_reconnect_attempts < 0:
            problems.append("backend.max_reconnect_attempts must be non-negative")
        if self.reconnect_backoff_cap_ms < self.reconnect_backoff_base_ms:
            problems.append("backend.reconnect_backoff_cap_ms must be >= base")
        if self.sample_rate <= 0 or self.channels <= 0:
            problems.append("audio.sample_rate and audio.channels must be positive")
        if problems:
            raise GateError(ErrorCode.CONFIG_INVALID, "; ".join(problems))

    def session_settings(self) -> SessionSettings:
        """Convert millisecond config values into SessionSettings."""
        return SessionSettings(
            local_vad=bool(self.local_vad_enabled),
            base_silence_sec=self.base_silence_ms / 1000.0,
            preroll_frames=int(self.preroll_frames),
            keepalive_interval_sec=self.keepalive_interval_ms / 1000.0,
            sample_rate=int(self.sample_rate),
            channels=int(self.channels),
            threshold=ThresholdSettings(
                base=float(self.volume_threshold),
                ratio=float(self.dynamic_threshold_ratio),
                min_elevated=float(self.min_elevated_threshold),
                max_elevated=float(self.max_elevated_threshold),
            ),
            reconnect=ReconnectSettings(
                max_attempts=int(self.max_reconnect_attempts),
                cooldown_sec=self.reconnect_cooldown_ms / 1000.0,
                backoff_base_sec=self.reconnect_backoff_base_ms / 1000.0,
                backoff_cap_sec=self.reconnect_backoff_cap_ms / 1000.0,
                close_codes=tuple(int(code) for code in self.reconnect_close_codes),
            ),
        )


DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "gate.yaml"

SECTION_MAP: Dict[str, Dict[str, str]] = dict(GATE_SECTION_MAP)


def load_config(path: Optional[Path] = None) -> GateConfig:
    """Load gate configuration from YAML, falling back to defaults."""
    cfg = GateConfig()
    data = _read_yaml(path or DEFAULT_CONFIG_PATH)
    if data:
        _apply_sections(cfg, data)
    if isinstance(cfg.reconnect_close_codes, list):
        cfg.reconnect_close_codes = tuple(cfg.reconnect_close_codes)
    cfg.validate()
    return cfg


def _read_yaml(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if not path or not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if isinstance(data, dict):
        return data
    return None


def _apply_sections(cfg: GateConfig, raw: Dict[str, Any]) -> None:
    field_names = {f.name for f in fields(GateConfig)}
    for section, mapping in SECTION_MAP.items():
        data = raw.get(section)
        if not isinstance(data, dict):
            continue
        for key, attr in mapping.items():
            if key in data and data[key] is not None:
                setattr(cfg, attr, data[key])

    for key, value in raw.items():
        if key in SECTION_MAP:
            continue
        if key in field_names and value is not None:
            setattr(cfg, key, value)


__all__ = [
    "GateConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
