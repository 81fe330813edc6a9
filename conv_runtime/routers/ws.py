# conv_runtime/routers/ws.py
# -*- coding: utf-8 -*-
"""
conv-runtime — WebSocket router
-------------------------------
/ws
    Conversation channel. Clients send JSON frames (text or UTF-8 binary)
    described in conv_runtime.models.messages and receive JSON frames back.

Design goals
------------
- The endpoint only moves frames: everything protocol-related lives in the
  ConnectionWorker and the state machine behind it.
- Bad input never closes the connection; it is answered with protocol.error.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from conv_runtime.core.connection import ConnectionWorker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_conversation(websocket: WebSocket) -> None:
    await websocket.accept()
    client = websocket.client
    connection_id = f"{client.host}:{client.port}" if client else "-"
    logger.info("WebSocket /ws connected from %s", connection_id)

    worker = ConnectionWorker(
        websocket.app.state.protocol,
        websocket.send_text,
        connection_id=connection_id,
    )
    worker.start()

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            data = frame.get("text")
            if data is None:
                data = frame.get("bytes")
            if data is None:
                continue
            worker.submit(data)
    except WebSocketDisconnect:
        pass
    finally:
        await worker.abort()
        logger.info("WebSocket /ws disconnected (%s)", connection_id)
