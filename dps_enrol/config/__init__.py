"""Configuration package for DPS enrolment."""
from .settings import RECOGNISED_CURRENCIES, Settings, get_settings

__all__ = ["RECOGNISED_CURRENCIES", "Settings", "get_settings"]
