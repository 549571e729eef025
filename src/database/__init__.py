"""
Database Layer for the benefits wizard.

Session state persistence for the web layer.
"""

from .session_persistence import (
    DEFAULT_SESSION_TTL_MINUTES,
    InMemorySessionBackend,
    SessionPersistence,
    SessionRecord,
    get_session_persistence,
)

__all__ = [
    "DEFAULT_SESSION_TTL_MINUTES",
    "InMemorySessionBackend",
    "SessionPersistence",
    "SessionRecord",
    "get_session_persistence",
]
