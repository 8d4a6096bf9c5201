"""Configuration module — exports Settings and load_settings.

There is deliberately no module-level settings instance: the composition
root (``chatapp.main``) loads settings once and passes them down.
"""

from chatapp.config.loader import load_settings
from chatapp.config.settings import Settings

__all__ = ["Settings", "load_settings"]
