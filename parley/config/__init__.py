"""
Configuration Module.
Exposes the Settings object and the loader.
"""

from .settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
