"""
Runtime state package for conv-runtime.

Tracks per-session conversation state on top of a TTL-backed store.

Typical wiring (see conv_runtime.main):

    from conv_runtime.runtime_state import InMemorySessionStore, SessionRegistry

    registry = SessionRegistry(InMemorySessionStore(), ttl_seconds=3600)
    session = await registry.get("s1")
"""

from .sessions import (
    SessionData,
    SessionPhase,
    SessionRegistry,
    SessionTurn,
    TURN_ACCEPTING_PHASES,
)
from .store import (
    ConnectionState,
    InMemorySessionStore,
    RedisSessionStore,
    SessionStoreAdapter,
)

__all__ = [
    "SessionData",
    "SessionPhase",
    "SessionRegistry",
    "SessionTurn",
    "TURN_ACCEPTING_PHASES",
    "ConnectionState",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionStoreAdapter",
]
