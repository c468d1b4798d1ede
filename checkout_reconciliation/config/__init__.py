"""Configuration package for checkout reconciliation."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
