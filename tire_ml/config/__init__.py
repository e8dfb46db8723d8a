"""Configuration module."""
from .settings import Settings, get_settings, ensure_directories, reset_settings

__all__ = ["Settings", "get_settings", "ensure_directories", "reset_settings"]
