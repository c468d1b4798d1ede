"""Background workers."""
from .cleanup_worker import run_cleanup_pass, start_cleanup_worker

__all__ = ["run_cleanup_pass", "start_cleanup_worker"]
