from .config import Settings, get_settings, validate_settings
from .clock import utcnow
from .logger import setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "validate_settings",
    "utcnow",
    "setup_logging"
]
