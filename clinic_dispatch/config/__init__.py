"""
Configuration Module

Application settings and the cached settings accessor.
"""

from clinic_dispatch.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
