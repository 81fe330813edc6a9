# conv_runtime/models/messages.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Protocol message models
--------------------------------------
Typed shapes for every frame exchanged over the conversation WebSocket.

Inbound (client -> server):
    heartbeat        keepalive probe
    session.start    bind language + subject to a session
    user.message     one user utterance

Outbound (server -> client):
    heartbeat.ack
    session.ready        capability flags + effective language
    assistant.thinking   progress signal, sent as soon as a turn is accepted
    assistant.delta      optional partial text chunk
    assistant.message    final reply text (+ optional confidence / sources)
    protocol.error       stable error code + human-readable message

Every frame carries `protocol_version`, `type` and `session_id`. Outbound
frames also carry `ts` (epoch milliseconds), stamped by the codec at send time.

Unknown inbound types decode as `Unrecognized` so the state machine can answer
them with a typed error instead of failing.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from conv_runtime.core.errors import ErrorCode

PROTOCOL_VERSION = "1"


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class InboundBase(BaseModel):
    """Fields shared by every client frame."""

    model_config = ConfigDict(extra="ignore")

    protocol_version: str
    session_id: str = Field(..., min_length=1)


class Heartbeat(InboundBase):
    type: Literal["heartbeat"] = "heartbeat"


class SessionStart(InboundBase):
    """
    Start (or re-bind) a session.

    `language` falls back to the server default when omitted. Either
    `subject_reference` or an inline `context` object must be present; the
    state machine enforces that, not the model.
    """

    type: Literal["session.start"] = "session.start"
    language: Optional[str] = None
    subject_reference: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class UserMessage(InboundBase):
    type: Literal["user.message"] = "user.message"
    text: str


class Unrecognized(InboundBase):
    """Well-formed frame whose `type` this server does not know."""

    type: str


InboundMessage = Union[Heartbeat, SessionStart, UserMessage, Unrecognized]

# type discriminator -> model. New inbound kinds are registered here.
INBOUND_TYPES: Dict[str, Type[InboundBase]] = {
    "heartbeat": Heartbeat,
    "session.start": SessionStart,
    "user.message": UserMessage,
}


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


class OutboundBase(BaseModel):
    """Fields shared by every server frame. `ts` is always set by the codec."""

    protocol_version: str = PROTOCOL_VERSION
    session_id: Optional[str] = None
    ts: Optional[int] = None


class Capabilities(BaseModel):
    text: bool = True
    audio: bool = False
    streaming: bool = True


class HeartbeatAck(OutboundBase):
    type: Literal["heartbeat.ack"] = "heartbeat.ack"


class SessionReady(OutboundBase):
    type: Literal["session.ready"] = "session.ready"
    capabilities: Capabilities = Field(default_factory=Capabilities)
    language: Optional[str] = None


class AssistantThinking(OutboundBase):
    type: Literal["assistant.thinking"] = "assistant.thinking"


class AssistantDelta(OutboundBase):
    type: Literal["assistant.delta"] = "assistant.delta"
    text: str
    index: int = 0


class AssistantMessage(OutboundBase):
    type: Literal["assistant.message"] = "assistant.message"
    text: str
    confidence: Optional[float] = None
    sources: Optional[List[Any]] = None


class ProtocolError(OutboundBase):
    type: Literal["protocol.error"] = "protocol.error"
    code: ErrorCode
    message: str


OutboundMessage = Union[
    HeartbeatAck,
    SessionReady,
    AssistantThinking,
    AssistantDelta,
    AssistantMessage,
    ProtocolError,
]
