"""Background workers."""
from .maintenance import run_maintenance

__all__ = ["run_maintenance"]
