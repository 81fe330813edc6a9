# conv_runtime/core/protocol.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Protocol state machine
-------------------------------------
Decides, for each decoded inbound message, what is legal given the session's
phase and which frames go back to the client.

Phases: UNINITIALIZED (no record) -> READY (session.start) -> ACTIVE (first
completed turn). There is no terminal phase; sessions end by store expiry.

    heartbeat       any phase      -> heartbeat.ack (refreshes last_active_at)
    session.start   UNINITIALIZED  -> create, READY, session.ready
    session.start   READY/ACTIVE   -> re-bind language/subject, keep history
    user.message    READY/ACTIVE   -> TurnRelay
    user.message    UNINITIALIZED  -> protocol.error(SESSION_NOT_READY)
    unknown type    any            -> protocol.error(INVALID_MESSAGE)

dispatch() is the error boundary: every RelayError becomes exactly one
protocol.error frame and the connection stays usable. SendError is the
exception; it propagates so the connection worker can stop.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from conv_runtime.core.errors import (
    DecodeError,
    ErrorCode,
    MessageValidationError,
    ProtocolViolation,
    RelayError,
    SendError,
    StoreError,
)
from conv_runtime.core.relay import TurnRelay
from conv_runtime.core.types import Emit
from conv_runtime.models.messages import (
    Capabilities,
    Heartbeat,
    HeartbeatAck,
    InboundBase,
    InboundMessage,
    ProtocolError,
    SessionReady,
    SessionStart,
    UserMessage,
)
from conv_runtime.providers.context import ContextResolver
from conv_runtime.runtime_state.sessions import (
    TURN_ACCEPTING_PHASES,
    SessionRegistry,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Emit], Awaitable[None]]


class ProtocolStateMachine:
    def __init__(
        self,
        registry: SessionRegistry,
        relay: TurnRelay,
        *,
        capabilities: Optional[Dict[str, bool]] = None,
        default_language: str = "es",
        context_resolver: Optional[ContextResolver] = None,
    ) -> None:
        self.registry = registry
        self.relay = relay
        self.capabilities = Capabilities(**(capabilities or {}))
        self.default_language = default_language
        self.context_resolver = context_resolver
        self._handlers: Dict[Type[InboundBase], Handler] = {
            Heartbeat: self._on_heartbeat,
            SessionStart: self._on_session_start,
            UserMessage: self._on_user_message,
        }

    async def dispatch(
        self,
        message: Union[InboundMessage, DecodeError],
        emit: Emit,
    ) -> None:
        """Handle one decoded frame; all per-message errors end up as protocol.error."""
        if isinstance(message, DecodeError):
            logger.warning(
                "Rejecting undecodable frame (session_id=%s): %s",
                message.session_id,
                message.message,
            )
            await emit(_error_frame(message.session_id, message))
            return

        sid = message.session_id
        try:
            handler = self._handlers.get(type(message))
            if handler is None:
                raise MessageValidationError(f"Unrecognized message type {message.type!r}.")
            await handler(message, emit)
        except SendError:
            raise
        except RelayError as exc:
            logger.info("Rejected %s for %s: %s (%s)", message.type, sid, exc.code.value, exc.message)
            await emit(_error_frame(sid, exc))
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected failure handling %s for %s", message.type, sid)
            await emit(
                ProtocolError(
                    session_id=sid,
                    code=ErrorCode.UPSTREAM_ERROR,
                    message="Internal error while handling message.",
                )
            )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_heartbeat(self, message: Heartbeat, emit: Emit) -> None:
        try:
            session = await self.registry.get(message.session_id)
            if session is not None:
                await self.registry.touch(session)
        except StoreError as exc:
            logger.warning("Heartbeat for %s could not refresh session: %s", message.session_id, exc)
        await emit(HeartbeatAck(session_id=message.session_id))

    async def _on_session_start(self, message: SessionStart, emit: Emit) -> None:
        sid = message.session_id
        language = (message.language or "").strip() or self.default_language
        reference = (message.subject_reference or "").strip() or None

        subject_context = await self._resolve_context(sid, reference, language, message.context)
        session, created = await self.registry.start(
            sid,
            language=language,
            subject_reference=reference,
            subject_context=subject_context,
        )
        logger.info(
            "Session %s %s (phase=%s, lang=%s)",
            sid,
            "started" if created else "re-bound",
            session.phase.value,
            session.language,
        )
        await emit(
            SessionReady(
                session_id=sid,
                capabilities=self.capabilities,
                language=session.language,
            )
        )

    async def _resolve_context(
        self,
        session_id: str,
        reference: Optional[str],
        language: str,
        inline: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        if inline is not None:
            return dict(inline)
        if reference is None:
            raise MessageValidationError(
                "session.start requires subject_reference or context."
            )
        if self.context_resolver is None:
            return {"subject_reference": reference}
        return await self.context_resolver.resolve(reference, language, session_id)

    async def _on_user_message(self, message: UserMessage, emit: Emit) -> None:
        session = await self.registry.get(message.session_id)
        if session is None or session.phase not in TURN_ACCEPTING_PHASES:
            raise ProtocolViolation("Send session.start before user.message.")
        await self.relay.handle_turn(session, message.text, emit)


def _error_frame(session_id: Optional[str], exc: RelayError) -> ProtocolError:
    return ProtocolError(session_id=session_id, code=exc.code, message=exc.message)
