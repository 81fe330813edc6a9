# conv_runtime/core/types.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Shared type helpers
----------------------------------
Small value types passed between the turn relay and the generation
collaborator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from conv_runtime.models.messages import OutboundMessage
from conv_runtime.runtime_state.sessions import SessionTurn

# Async sink for outbound frames; one per connection.
Emit = Callable[[OutboundMessage], Awaitable[None]]


@dataclass
class GenerationRequest:
    """
    Everything the generation service sees for one turn.

    history already contains the user turn being answered, as its last entry.
    """
    session_id: str
    language: str
    subject_context: Dict[str, Any]
    history: List[SessionTurn]


@dataclass
class GenerationResult:
    """
    Reply from the generation service.

    Attributes
    ----------
    text:
        Reply text. Empty means the call failed.
    confidence:
        Optional model/flow confidence, passed through to the client.
    sources:
        Optional list of references the reply was grounded on.
    """
    text: str
    confidence: Optional[float] = None
    sources: Optional[List[Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict)
