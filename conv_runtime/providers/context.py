# conv_runtime/providers/context.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Context resolution provider
------------------------------------------
Optional collaborator that turns a `subject_reference` (e.g. "wine-42") into
the structured context the generation service works with. Called once per
session.start when the client did not send the context inline.

POST {subject_reference, language, session_id} -> JSON object.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import requests

from conv_runtime.core.errors import ContextResolutionError

logger = logging.getLogger(__name__)


@runtime_checkable
class ContextResolver(Protocol):
    async def resolve(
        self,
        subject_reference: str,
        language: str,
        session_id: str,
    ) -> Dict[str, Any]:
        ...


class HttpContextResolver:
    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 10.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._http = http or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self._http.post(self.url, json=payload, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise ContextResolutionError(f"Context HTTP error: {exc}") from exc

        if resp.status_code != 200:
            raise ContextResolutionError(f"Context HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ContextResolutionError("Context service returned non-JSON response.") from exc

        if not isinstance(data, dict):
            raise ContextResolutionError("Context service must return a JSON object.")
        return data

    async def resolve(
        self,
        subject_reference: str,
        language: str,
        session_id: str,
    ) -> Dict[str, Any]:
        payload = {
            "subject_reference": subject_reference,
            "language": language,
            "session_id": session_id,
        }
        logger.debug("Resolving context %r for %s", subject_reference, session_id)
        return await asyncio.to_thread(self._post, payload)

    def close(self) -> None:
        self._http.close()
