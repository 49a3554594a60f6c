"""Configuration package for the FX platform."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
