# conv_runtime/routers/debug.py
# -*- coding: utf-8 -*-
"""
conv-runtime — /debug router
----------------------------
Read-only inspection of a stored session and its remaining TTL.

    GET /debug/sessions/{session_id}
    X-Debug-Token: <DEBUG_TOKEN>

The routes answer 404 while DEBUG_TOKEN is unset, and 403 (FORBIDDEN) when
the header does not match it.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from conv_runtime.core.errors import ErrorCode, Forbidden, StoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/debug", tags=["debug"])


def _check_token(expected: Optional[str], given: Optional[str]) -> None:
    if not expected:
        raise HTTPException(status_code=404, detail="Debug surface is disabled.")
    if not given or not hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected debug request with invalid token")
        raise HTTPException(
            status_code=403,
            detail={"code": ErrorCode.FORBIDDEN.value, "message": Forbidden.default_message},
        )


@router.get("/sessions/{session_id}", summary="Inspect a stored session")
async def inspect_session(
    session_id: str,
    request: Request,
    x_debug_token: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    _check_token(request.app.state.settings.debug_token, x_debug_token)

    registry = request.app.state.registry
    try:
        session = await registry.get(session_id)
        ttl = await registry.ttl_remaining(session_id) if session else None
    except StoreError as exc:
        logger.warning("Debug lookup for %s failed: %s", session_id, exc)
        raise HTTPException(
            status_code=503,
            detail={"code": ErrorCode.UPSTREAM_ERROR.value, "message": exc.message},
        ) from exc

    if session is None:
        raise HTTPException(status_code=404, detail="Session not found.")

    return {
        "session": session.model_dump(mode="json"),
        "ttl_remaining_s": ttl,
    }
