"""Pytest fixtures: scripted collaborators, in-memory store, wired core."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from conv_runtime.core.config import Settings
from conv_runtime.core.protocol import ProtocolStateMachine
from conv_runtime.core.relay import TurnRelay
from conv_runtime.core.types import GenerationRequest, GenerationResult
from conv_runtime.models.messages import OutboundMessage
from conv_runtime.runtime_state import InMemorySessionStore, SessionRegistry


class ScriptedGenerator:
    """Returns scripted replies in order; an Exception entry is raised instead."""

    def __init__(self, replies: Optional[List[Any]] = None, default: str = "Un tinto joven.") -> None:
        self.replies = list(replies or [])
        self.default = default
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        # snapshot: the relay keeps mutating the same session afterwards
        self.requests.append(
            GenerationRequest(
                session_id=request.session_id,
                language=request.language,
                subject_context=dict(request.subject_context),
                history=list(request.history),
            )
        )
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, GenerationResult):
            return reply
        return GenerationResult(text=reply)


class ScriptedContextResolver:
    def __init__(self, context: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None) -> None:
        self.context = context if context is not None else {"name": "Malbec Reserva"}
        self.error = error
        self.calls: List[tuple] = []

    async def resolve(self, subject_reference: str, language: str, session_id: str) -> Dict[str, Any]:
        self.calls.append((subject_reference, language, session_id))
        if self.error is not None:
            raise self.error
        return dict(self.context)


class Outbox:
    """Collects outbound messages in emission order."""

    def __init__(self) -> None:
        self.messages: List[OutboundMessage] = []

    async def __call__(self, message: OutboundMessage) -> None:
        self.messages.append(message)

    @property
    def types(self) -> List[str]:
        return [m.type for m in self.messages]

    def clear(self) -> None:
        self.messages.clear()


def frame(**fields: Any) -> str:
    """Raw inbound JSON frame with protocol_version filled in."""
    fields.setdefault("protocol_version", "1")
    return json.dumps(fields, ensure_ascii=False)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def registry(store: InMemorySessionStore) -> SessionRegistry:
    return SessionRegistry(store, ttl_seconds=3600, max_history_turns=30)


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def relay(registry: SessionRegistry, generator: ScriptedGenerator) -> TurnRelay:
    return TurnRelay(registry, generator)


@pytest.fixture
def machine(registry: SessionRegistry, relay: TurnRelay) -> ProtocolStateMachine:
    return ProtocolStateMachine(
        registry,
        relay,
        capabilities={"text": True, "audio": False, "streaming": True},
        default_language="es",
    )


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        debug=False,
        store_backend="memory",
        generation_url="http://generation.test/webhook",
        debug_token="s3cret",
    )
