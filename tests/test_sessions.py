"""Session registry: create / re-bind / touch / history window."""

from __future__ import annotations

import asyncio

from conv_runtime.runtime_state import (
    InMemorySessionStore,
    SessionPhase,
    SessionRegistry,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_start_creates_ready_session(registry: SessionRegistry) -> None:
    async def run() -> None:
        assert await registry.phase("s1") is SessionPhase.UNINITIALIZED

        session, created = await registry.start(
            "s1", language="es", subject_reference="wine-42", subject_context={"id": 42}
        )
        assert created is True
        assert session.phase is SessionPhase.READY

        loaded = await registry.get("s1")
        assert loaded is not None
        assert loaded.language == "es"
        assert loaded.subject_context == {"id": 42}
        assert loaded.history == []

    asyncio.run(run())


def test_rebind_keeps_history_and_phase(registry: SessionRegistry) -> None:
    async def run() -> None:
        session, _ = await registry.start("s1", language="es", subject_reference="a", subject_context={})
        registry.append_turn(session, "user", "hola")
        registry.append_turn(session, "assistant", "buenas")
        session.phase = SessionPhase.ACTIVE
        await registry.save(session)

        rebound, created = await registry.start(
            "s1", language="en", subject_reference="b", subject_context={"x": 1}
        )
        assert created is False
        assert rebound.language == "en"
        assert rebound.subject_reference == "b"
        assert rebound.phase is SessionPhase.ACTIVE
        assert [t.text for t in rebound.history] == ["hola", "buenas"]

    asyncio.run(run())


def test_history_trims_from_the_head(store: InMemorySessionStore) -> None:
    registry = SessionRegistry(store, ttl_seconds=60, max_history_turns=4)

    async def run() -> None:
        session, _ = await registry.start("s1", language="es", subject_reference="a", subject_context={})
        for i in range(6):
            registry.append_turn(session, "user" if i % 2 == 0 else "assistant", f"t{i}")
        assert [t.text for t in session.history] == ["t2", "t3", "t4", "t5"]

    asyncio.run(run())


def test_touch_renews_ttl() -> None:
    clock = FakeClock()
    store = InMemorySessionStore(clock=clock)
    registry = SessionRegistry(store, ttl_seconds=100)

    async def run() -> None:
        session, _ = await registry.start("s1", language="es", subject_reference="a", subject_context={})
        first_seen = session.last_active_at

        clock.now += 90
        assert await registry.ttl_remaining("s1") == 10

        await registry.touch(session)
        assert await registry.ttl_remaining("s1") == 100
        loaded = await registry.get("s1")
        assert loaded is not None
        assert loaded.last_active_at >= first_seen

        clock.now += 101
        assert await registry.get("s1") is None
        assert await registry.phase("s1") is SessionPhase.UNINITIALIZED

    asyncio.run(run())


def test_unreadable_record_is_treated_as_absent(store: InMemorySessionStore, registry: SessionRegistry) -> None:
    async def run() -> None:
        await store.set("s1", '{"session_id": "s1"}', 60)
        assert await registry.get("s1") is None

    asyncio.run(run())
