"""Database package for the FX platform."""
from .connection import close_db, get_session_factory, init_db
from .models import Account, Base, OutboxEvent, Payment

__all__ = [
    "Account",
    "Base",
    "OutboxEvent",
    "Payment",
    "close_db",
    "get_session_factory",
    "init_db",
]
