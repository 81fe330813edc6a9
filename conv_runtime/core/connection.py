# conv_runtime/core/connection.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Per-connection work queue
----------------------------------------
Each WebSocket connection gets one ConnectionWorker. The transport reader
only enqueues raw frames; a single worker task decodes and dispatches them
one at a time, so every outbound frame for message N is sent before message
N+1 is looked at. That is what keeps two overlapping user turns from
interleaving their thinking/message pairs or racing on history.

Closing the connection aborts the worker. A turn that was still waiting on
the generation service is abandoned and its reply dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from conv_runtime.core.codec import decode, encode
from conv_runtime.core.errors import SendError
from conv_runtime.core.protocol import ProtocolStateMachine
from conv_runtime.models.messages import OutboundMessage

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]
_STOP = object()


class ConnectionWorker:
    def __init__(
        self,
        machine: ProtocolStateMachine,
        send: Callable[[str], Awaitable[None]],
        *,
        connection_id: str = "-",
    ) -> None:
        self.machine = machine
        self._send = send
        self.connection_id = connection_id
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(), name=f"conn-worker-{self.connection_id}"
            )

    def submit(self, frame: Frame) -> None:
        self._queue.put_nowait(frame)

    async def emit(self, message: OutboundMessage) -> None:
        text = encode(message)
        try:
            await self._send(text)
        except Exception as exc:  # noqa: BLE001
            raise SendError(f"send failed on {self.connection_id}: {exc}") from exc

    async def process(self, frame: Frame) -> None:
        """Decode and fully handle one frame."""
        await self.machine.dispatch(decode(frame), self.emit)

    async def _run(self) -> None:
        while True:
            frame = await self._queue.get()
            if frame is _STOP:
                return
            try:
                await self.process(frame)  # type: ignore[arg-type]
            except SendError as exc:
                logger.warning("Connection %s: %s, stopping worker", self.connection_id, exc)
                return
            except Exception:  # noqa: BLE001
                logger.exception("Connection %s: worker failed", self.connection_id)
                return

    async def drain(self) -> None:
        """Handle everything already queued, then stop."""
        if self._task is None:
            return
        self._queue.put_nowait(_STOP)
        await self._task

    async def abort(self) -> None:
        """Stop immediately, abandoning any in-flight turn."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.debug("Connection %s: worker cancelled", self.connection_id)
