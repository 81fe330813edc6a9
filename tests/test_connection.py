"""Connection worker: strictly sequential handling, abort drops in-flight turns."""

from __future__ import annotations

import asyncio
import json
from typing import List

from conv_runtime.core.connection import ConnectionWorker
from conv_runtime.core.protocol import ProtocolStateMachine
from conv_runtime.core.relay import TurnRelay
from conv_runtime.core.types import GenerationRequest, GenerationResult
from conv_runtime.runtime_state import SessionRegistry

from .conftest import frame

START = frame(type="session.start", session_id="s1", language="es", subject_reference="wine-42")


def user(text: str) -> str:
    return frame(type="user.message", session_id="s1", text=text)


class SlowGenerator:
    """Each call waits for the test to release it."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.calls.append([t.text for t in request.history])
        self.started.set()
        await self.release.wait()
        return GenerationResult(text=f"reply {len(self.calls)}")


def test_messages_are_handled_one_at_a_time(registry: SessionRegistry) -> None:
    async def run() -> None:
        generator = SlowGenerator()
        machine = ProtocolStateMachine(registry, TurnRelay(registry, generator))
        sent: List[dict] = []

        async def send(text: str) -> None:
            sent.append(json.loads(text))

        worker = ConnectionWorker(machine, send, connection_id="test")
        worker.start()
        for raw in (START, user("uno"), user("dos"), frame(type="heartbeat", session_id="s1")):
            worker.submit(raw)

        await generator.started.wait()
        await asyncio.sleep(0)
        # second turn and heartbeat wait behind the first turn
        assert [m["type"] for m in sent] == ["session.ready", "assistant.thinking"]
        assert len(generator.calls) == 1

        generator.release.set()
        await worker.drain()

        assert [m["type"] for m in sent] == [
            "session.ready",
            "assistant.thinking",
            "assistant.message",
            "assistant.thinking",
            "assistant.message",
            "heartbeat.ack",
        ]
        assert generator.calls == [["uno"], ["uno", "reply 1", "dos"]]
        assert all(isinstance(m["ts"], int) for m in sent)

    asyncio.run(run())


def test_abort_abandons_in_flight_turn(registry: SessionRegistry) -> None:
    async def run() -> None:
        generator = SlowGenerator()
        machine = ProtocolStateMachine(registry, TurnRelay(registry, generator))
        sent: List[dict] = []

        async def send(text: str) -> None:
            sent.append(json.loads(text))

        worker = ConnectionWorker(machine, send)
        worker.start()
        worker.submit(START)
        worker.submit(user("hola"))

        await generator.started.wait()
        await worker.abort()

        assert [m["type"] for m in sent] == ["session.ready", "assistant.thinking"]
        session = await registry.get("s1")
        assert session is not None
        assert session.history == []

    asyncio.run(run())


def test_malformed_frame_does_not_stop_worker(registry: SessionRegistry) -> None:
    async def run() -> None:
        machine = ProtocolStateMachine(registry, TurnRelay(registry, SlowGenerator()))
        sent: List[dict] = []

        async def send(text: str) -> None:
            sent.append(json.loads(text))

        worker = ConnectionWorker(machine, send)
        worker.start()
        worker.submit(b"\x00garbage")
        worker.submit(frame(type="heartbeat", session_id="s1"))
        await worker.drain()

        assert [m["type"] for m in sent] == ["protocol.error", "heartbeat.ack"]
        assert sent[0]["code"] == "INVALID_MESSAGE"
        assert sent[0]["session_id"] is None

    asyncio.run(run())


def test_send_failure_stops_worker(registry: SessionRegistry) -> None:
    async def run() -> None:
        machine = ProtocolStateMachine(registry, TurnRelay(registry, SlowGenerator()))

        attempts: List[str] = []

        async def send(text: str) -> None:
            attempts.append(json.loads(text)["type"])
            raise ConnectionResetError("peer gone")

        worker = ConnectionWorker(machine, send)
        worker.start()
        worker.submit(frame(type="heartbeat", session_id="s1"))
        worker.submit(frame(type="heartbeat", session_id="s1"))
        await worker.drain()

        # no error frame retried on the dead socket, second frame never handled
        assert attempts == ["heartbeat.ack"]

    asyncio.run(run())
