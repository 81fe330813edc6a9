# conv_runtime/providers/generation.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Generation provider (HTTP webhook)
-------------------------------------------------
This module is the ONLY place that knows how to talk to the generation
service (an n8n-style webhook or any endpoint with the same contract).

Request (POST JSON):
    {
      "session_id": "s1",
      "language": "es",
      "subject_context": {...},
      "history": [{"role": "user", "text": "...", "timestamp": "..."}, ...]
    }

Response (JSON object, or a one-element list of it):
    {"text": "...", "confidence": 0.9, "sources": [...]}
`output` and `reply` are accepted in place of `text`.

Anything else (network error, timeout, non-200, non-JSON, empty text) is
raised as GenerationError. `requests` is blocking, so calls run in a worker
thread to keep the event loop free for other connections.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import requests

from conv_runtime.core.errors import GenerationError
from conv_runtime.core.types import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)

_TEXT_KEYS = ("text", "output", "reply")


@runtime_checkable
class GenerationClient(Protocol):
    """
    Produces assistant text for a turn.

    Implementations may also provide `stream(request)` returning an async
    iterator of text chunks; the relay uses it when delta streaming is on.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        ...


def build_generation_payload(request: GenerationRequest) -> Dict[str, Any]:
    history: List[Dict[str, Any]] = [
        turn.model_dump(mode="json") for turn in request.history
    ]
    return {
        "session_id": request.session_id,
        "language": request.language,
        "subject_context": request.subject_context,
        "history": history,
    }


def parse_generation_response(data: Any) -> GenerationResult:
    """Pull reply text (and optional metadata) out of a webhook response body."""
    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        raise GenerationError("Generation service returned an unexpected body.")

    text: Optional[str] = None
    for key in _TEXT_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            text = value.strip()
            break

    if text is None:
        raise GenerationError("Generation service returned empty text.")

    confidence = data.get("confidence")
    if (
        not isinstance(confidence, (int, float))
        or isinstance(confidence, bool)
        or not math.isfinite(confidence)
    ):
        confidence = None

    sources = data.get("sources")
    if not isinstance(sources, list):
        sources = None

    return GenerationResult(text=text, confidence=confidence, sources=sources, raw=data)


class HttpGenerationClient:
    """Blocking `requests` client wrapped for async callers."""

    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        timeout_s: float = 30.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout_s = timeout_s
        self._http = http or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, payload: Dict[str, Any]) -> Any:
        try:
            resp = self._http.post(
                self.url,
                headers=self._headers(),
                json=payload,
                timeout=self.timeout_s,
            )
        except requests.Timeout as exc:
            raise GenerationError(
                f"Generation service timed out after {self.timeout_s}s."
            ) from exc
        except requests.RequestException as exc:
            raise GenerationError(f"Generation HTTP error: {exc}") from exc

        if resp.status_code != 200:
            preview = resp.text[:200].replace("\n", " ")
            raise GenerationError(f"Generation HTTP {resp.status_code}: {preview}")

        try:
            return resp.json()
        except ValueError as exc:
            raise GenerationError("Generation service returned non-JSON response.") from exc

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        payload = build_generation_payload(request)
        logger.debug(
            "Calling generation service for %s (%d turns)",
            request.session_id,
            len(request.history),
        )
        data = await asyncio.to_thread(self._post, payload)
        return parse_generation_response(data)

    def close(self) -> None:
        self._http.close()
