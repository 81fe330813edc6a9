# conv_runtime/core/codec.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Message codec
----------------------------
Trust boundary between raw WebSocket frames and typed protocol messages.

decode(raw) never raises: anything that cannot be turned into a typed inbound
message comes back as a DecodeError value (code INVALID_MESSAGE), carrying the
session_id whenever one could be recovered from the frame.

encode(message) stamps the server timestamp and serializes to JSON text.

Legacy frames from the first runtime are still understood:
    {"type": "session.init", "payload": {"session_id": "...", "lang": "es"}}
`payload` keys are merged under the top-level ones and a few old field names
are mapped to their current spelling. Those clients never sent
`protocol_version`, so a frame in legacy shape (a `payload` object, the
`session.init` type, or an old field name) without one is read as version "1".
Modern frames without a version are still rejected.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from conv_runtime.core.errors import DecodeError
from conv_runtime.models.messages import (
    INBOUND_TYPES,
    PROTOCOL_VERSION,
    InboundMessage,
    OutboundMessage,
    Unrecognized,
)

logger = logging.getLogger(__name__)

LEGACY_FIELD_ALIASES: Dict[str, str] = {
    "sessionId": "session_id",
    "lang": "language",
    "vino_id": "subject_reference",
}

LEGACY_TYPE_ALIASES: Dict[str, str] = {
    "session.init": "session.start",
}

SUPPORTED_VERSIONS = frozenset({PROTOCOL_VERSION})
LEGACY_PROTOCOL_VERSION = PROTOCOL_VERSION


def _is_legacy(data: Dict[str, Any], payload: Any) -> bool:
    if isinstance(payload, dict):
        return True
    msg_type = data.get("type")
    if isinstance(msg_type, str) and msg_type in LEGACY_TYPE_ALIASES:
        return True
    return any(old in data for old in LEGACY_FIELD_ALIASES)


def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a legacy `payload` envelope and rename legacy fields."""
    merged: Dict[str, Any] = {}
    payload = data.get("payload")
    legacy = _is_legacy(data, payload)
    if isinstance(payload, dict):
        merged.update(payload)
    merged.update({k: v for k, v in data.items() if k != "payload"})

    for old, new in LEGACY_FIELD_ALIASES.items():
        if old in merged and new not in merged:
            merged[new] = merged.pop(old)

    msg_type = merged.get("type")
    if isinstance(msg_type, str):
        merged["type"] = LEGACY_TYPE_ALIASES.get(msg_type, msg_type)

    # first-runtime clients never sent a version
    if legacy and "protocol_version" not in merged:
        merged["protocol_version"] = LEGACY_PROTOCOL_VERSION

    version = merged.get("protocol_version")
    if isinstance(version, int) and not isinstance(version, bool):
        merged["protocol_version"] = str(version)

    return merged


def decode(raw: Union[str, bytes, bytearray]) -> Union[InboundMessage, DecodeError]:
    """Parse one inbound frame (text or UTF-8 binary)."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return DecodeError("Binary frame is not valid UTF-8.")
    else:
        text = raw

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return DecodeError("Could not parse message as JSON.")

    if not isinstance(data, dict):
        return DecodeError("Message must be a JSON object.")

    data = _normalize(data)

    session_id = data.get("session_id")
    if not isinstance(session_id, str) or not session_id.strip():
        return DecodeError("Message is missing session_id.")

    version = data.get("protocol_version")
    if not isinstance(version, str) or not version:
        return DecodeError("Message is missing protocol_version.", session_id=session_id)
    if version not in SUPPORTED_VERSIONS:
        return DecodeError(
            f"Unsupported protocol_version {version!r}.", session_id=session_id
        )

    msg_type = data.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        return DecodeError("Message is missing type.", session_id=session_id)

    model = INBOUND_TYPES.get(msg_type)
    if model is None:
        return Unrecognized(
            protocol_version=version, session_id=session_id, type=msg_type
        )

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        logger.debug("Invalid %s frame: %s", msg_type, exc)
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
        return DecodeError(
            f"Invalid {msg_type} message ({fields or 'bad fields'}).",
            session_id=session_id,
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode(message: OutboundMessage, *, ts: Optional[int] = None) -> str:
    """
    Serialize an outbound message to JSON text.

    The timestamp is always assigned here; a `ts` already present on the
    message is overwritten. The keyword only exists so tests can pin it.
    Non-finite floats raise ValueError rather than producing invalid JSON.
    """
    stamped = message.model_copy(update={"ts": ts if ts is not None else _now_ms()})
    payload = stamped.model_dump(mode="json", exclude_none=True)
    payload.setdefault("session_id", None)
    return json.dumps(payload, ensure_ascii=False, allow_nan=False)
