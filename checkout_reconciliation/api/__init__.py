"""HTTP API for checkout reconciliation."""
from .main import create_app

__all__ = ["create_app"]
