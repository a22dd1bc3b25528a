"""Configuration loader utilities."""

from .loader import DEFAULT_CONFIG_PATH, GateConfig, load_config

__all__ = [
    "GateConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
