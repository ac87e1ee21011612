"""Database package for DPS enrolment."""
from .connection import close_db, create_session_factory, get_engine, get_session_factory, init_db
from .models import (
    APPROVED_RESPONSE,
    STATUS_PENDING,
    STATUS_SETTLED,
    Base,
    DpsTransaction,
)

__all__ = [
    "APPROVED_RESPONSE",
    "STATUS_PENDING",
    "STATUS_SETTLED",
    "Base",
    "DpsTransaction",
    "close_db",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
]
