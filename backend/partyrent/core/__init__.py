"""Core module for configuration and utilities."""

from partyrent.core.config import settings
from partyrent.core.database import Base, async_session_maker, get_session

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "get_session",
]
