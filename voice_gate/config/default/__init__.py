"""Default configuration values."""

from .gate import *  # noqa: F401,F403
from .gate import __all__  # noqa: F401
