# conv_runtime/runtime_state/sessions.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Session state
----------------------------

Purpose
~~~~~~~
- Model one conversation (SessionData): phase, bound language and subject
  context, bounded turn history, timestamps.
- Provide the SessionRegistry, the only component that reads or writes
  sessions. It sits on top of a SessionStoreAdapter and owns creation,
  re-binding, refresh-on-activity and history trimming.

Design notes
~~~~~~~~~~~~
- One registry per process, built by the application factory and passed to
  the protocol state machine and turn relay. There is no module-level map.
- A session with no stored record is UNINITIALIZED; stored records are READY
  or ACTIVE.
- History keeps the most recent `max_history_turns` entries; older entries are
  dropped from the front.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from conv_runtime.runtime_state.store import SessionStoreAdapter
from conv_runtime.utils import get_logger

logger = get_logger("conv_runtime.runtime_state")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class SessionPhase(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    ACTIVE = "ACTIVE"


TURN_ACCEPTING_PHASES = frozenset({SessionPhase.READY, SessionPhase.ACTIVE})


class SessionTurn(BaseModel):
    """One entry in the conversation history."""

    role: Literal["user", "assistant"]
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)


class SessionData(BaseModel):
    """
    Per-session state, stored as JSON under its session_id.

    Attributes
    ----------
    session_id:
        Client-supplied conversation key.
    phase:
        READY after session.start, ACTIVE once a turn completed.
    language:
        Effective locale code bound at session.start.
    subject_reference:
        What the client asked to talk about (e.g. a catalogue item id).
    subject_context:
        Resolved context blob replayed to the generation service.
    history:
        Bounded, ordered list of turns.
    """

    session_id: str
    phase: SessionPhase = SessionPhase.READY
    language: str
    subject_reference: Optional[str] = None
    subject_context: Dict[str, Any] = Field(default_factory=dict)
    history: List[SessionTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    last_active_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SessionRegistry:
    """
    Store-backed session table.

    Parameters
    ----------
    store:
        Any SessionStoreAdapter (Redis in production, in-memory in tests).
    ttl_seconds:
        Inactivity window; every save restarts it.
    max_history_turns:
        History window size (entries, not user/assistant pairs).
    """

    def __init__(
        self,
        store: SessionStoreAdapter,
        *,
        ttl_seconds: int,
        max_history_turns: int = 30,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_history_turns = max_history_turns

    async def get(self, session_id: str) -> Optional[SessionData]:
        """Load a session; None when absent, expired or unreadable."""
        raw = await self.store.get(session_id)
        if raw is None:
            return None
        try:
            return SessionData.model_validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning(
                "[SessionRegistry] Discarding unreadable record for %s: %s",
                session_id,
                exc,
            )
            return None

    async def phase(self, session_id: str) -> SessionPhase:
        session = await self.get(session_id)
        return session.phase if session else SessionPhase.UNINITIALIZED

    async def save(self, session: SessionData) -> None:
        await self.store.set(
            session.session_id, session.model_dump_json(), self.ttl_seconds
        )

    async def start(
        self,
        session_id: str,
        *,
        language: str,
        subject_reference: Optional[str],
        subject_context: Dict[str, Any],
    ) -> Tuple[SessionData, bool]:
        """
        Create the session, or re-bind an existing one.

        Re-binding overwrites language and subject, keeps history and never
        moves the phase backwards. Returns (session, created).
        """
        session = await self.get(session_id)
        now = _utcnow()
        created = session is None

        if session is None:
            logger.info("[SessionRegistry] Creating session %s (lang=%s)", session_id, language)
            session = SessionData(
                session_id=session_id,
                phase=SessionPhase.READY,
                language=language,
                subject_reference=subject_reference,
                subject_context=subject_context,
                created_at=now,
                last_active_at=now,
            )
        else:
            logger.info(
                "[SessionRegistry] Re-binding session %s (lang %s -> %s, %d turns kept)",
                session_id,
                session.language,
                language,
                len(session.history),
            )
            session.language = language
            session.subject_reference = subject_reference
            session.subject_context = subject_context
            if session.phase is SessionPhase.UNINITIALIZED:
                session.phase = SessionPhase.READY
            session.last_active_at = now

        await self.save(session)
        return session, created

    async def touch(self, session: SessionData) -> SessionData:
        """Refresh last_active_at and the store TTL."""
        session.last_active_at = _utcnow()
        await self.save(session)
        return session

    def append_turn(
        self,
        session: SessionData,
        role: Literal["user", "assistant"],
        text: str,
    ) -> SessionTurn:
        """Append a turn in memory and trim the head. Does not persist."""
        now = _utcnow()
        turn = SessionTurn(role=role, text=text, timestamp=now)
        session.history.append(turn)
        if len(session.history) > self.max_history_turns:
            session.history = session.history[-self.max_history_turns :]
        session.last_active_at = now
        return turn

    async def ttl_remaining(self, session_id: str) -> Optional[int]:
        return await self.store.ttl_remaining(session_id)
