# conv_runtime/core/relay.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Turn relay
-------------------------
Runs one user turn end to end:

    validate text -> assistant.thinking -> append user turn
        -> generation service -> append assistant turn, trim, persist
        -> assistant.message

On a generation failure (error, timeout, empty text) the user turn is still
persisted so the input is not lost, no assistant turn is added, and
UpstreamError is raised for the state machine to report.

Only one turn per connection runs at a time (see core/connection.py), so the
history each call sees is exactly what the previous turn left behind.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from conv_runtime.core.errors import (
    GenerationError,
    MessageValidationError,
    ProtocolViolation,
    SendError,
    StoreError,
    UpstreamError,
)
from conv_runtime.core.types import Emit, GenerationRequest, GenerationResult
from conv_runtime.models.messages import (
    AssistantDelta,
    AssistantMessage,
    AssistantThinking,
)
from conv_runtime.providers.generation import GenerationClient
from conv_runtime.runtime_state.sessions import (
    TURN_ACCEPTING_PHASES,
    SessionData,
    SessionPhase,
    SessionRegistry,
)
from conv_runtime.utils import Stopwatch

logger = logging.getLogger(__name__)


class TurnRelay:
    """
    Parameters
    ----------
    registry:
        Session registry used for history mutation and persistence.
    generator:
        Generation collaborator.
    stream_deltas:
        Emit assistant.delta chunks when the generator offers `stream()`.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        generator: GenerationClient,
        *,
        stream_deltas: bool = False,
    ) -> None:
        self.registry = registry
        self.generator = generator
        self.stream_deltas = stream_deltas

    async def handle_turn(
        self,
        session: SessionData,
        user_text: str,
        emit: Emit,
    ) -> Tuple[SessionData, str]:
        if session.phase not in TURN_ACCEPTING_PHASES:
            raise ProtocolViolation()

        text = (user_text or "").strip()
        if not text:
            raise MessageValidationError("User text must not be empty.")

        sid = session.session_id
        await emit(AssistantThinking(session_id=sid))

        self.registry.append_turn(session, "user", text)
        request = GenerationRequest(
            session_id=sid,
            language=session.language,
            subject_context=session.subject_context,
            history=list(session.history),
        )

        try:
            with Stopwatch(f"generation {sid}", logger):
                result = await self._generate(request, emit)
        except UpstreamError:
            await self._persist_user_turn_only(session)
            raise
        except SendError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Generation client raised for %s", sid)
            await self._persist_user_turn_only(session)
            raise GenerationError() from exc

        reply = (result.text or "").strip()
        if not reply:
            await self._persist_user_turn_only(session)
            raise GenerationError("Generation service returned empty text.")

        self.registry.append_turn(session, "assistant", reply)
        if session.phase is SessionPhase.READY:
            logger.info("Session %s: READY -> ACTIVE", sid)
        session.phase = SessionPhase.ACTIVE
        await self.registry.save(session)

        await emit(
            AssistantMessage(
                session_id=sid,
                text=reply,
                confidence=result.confidence,
                sources=result.sources,
            )
        )
        return session, reply

    async def _generate(self, request: GenerationRequest, emit: Emit) -> GenerationResult:
        stream: Optional[Any] = getattr(self.generator, "stream", None)
        if not (self.stream_deltas and callable(stream)):
            return await self.generator.generate(request)

        chunks = []
        async for chunk in stream(request):
            if not chunk:
                continue
            await emit(
                AssistantDelta(session_id=request.session_id, text=chunk, index=len(chunks))
            )
            chunks.append(chunk)
        return GenerationResult(text="".join(chunks))

    async def _persist_user_turn_only(self, session: SessionData) -> None:
        try:
            await self.registry.save(session)
        except StoreError as exc:
            logger.warning(
                "Could not persist user turn for %s after upstream failure: %s",
                session.session_id,
                exc,
            )
