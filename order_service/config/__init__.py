"""Configuration package for the order service."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
