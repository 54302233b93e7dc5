from .settings import Settings, get_settings, override_settings, reset_settings
from .logger import setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "override_settings",
    "reset_settings",
    "setup_logging",
]
