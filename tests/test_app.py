"""End to end over FastAPI: WebSocket protocol, debug surface, configuration."""

from __future__ import annotations

import json
import logging

import pytest
from fastapi.testclient import TestClient

from conv_runtime.core.config import Settings
from conv_runtime.core.errors import ConfigurationError
from conv_runtime.main import create_app
from conv_runtime.runtime_state import InMemorySessionStore

from .conftest import ScriptedContextResolver, ScriptedGenerator, frame


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator(["Marida con cordero."])


@pytest.fixture
def client(settings: Settings, generator: ScriptedGenerator) -> TestClient:
    app = create_app(settings, store=InMemorySessionStore(), generator=generator)
    return TestClient(app)


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["protocol_version"] == "1"


def test_websocket_conversation(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(frame(type="session.start", session_id="s1", language="es", subject_reference="wine-42"))
        ready = ws.receive_json()
        assert ready["type"] == "session.ready"
        assert ready["session_id"] == "s1"
        assert ready["capabilities"] == {"text": True, "audio": False, "streaming": True}
        assert isinstance(ready["ts"], int)

        ws.send_text(frame(type="user.message", session_id="s1", text="¿con qué marida?"))
        thinking = ws.receive_json()
        message = ws.receive_json()
        assert thinking["type"] == "assistant.thinking"
        assert thinking["session_id"] == "s1"
        assert message["type"] == "assistant.message"
        assert message["text"] == "Marida con cordero."

        ws.send_bytes(frame(type="heartbeat", session_id="s1").encode("utf-8"))
        assert ws.receive_json()["type"] == "heartbeat.ack"


def test_websocket_survives_bad_input(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text("definitely not json")
        error = ws.receive_json()
        assert error["type"] == "protocol.error"
        assert error["code"] == "INVALID_MESSAGE"
        assert error["session_id"] is None

        ws.send_text(frame(type="user.message", session_id="nope", text="hola"))
        error = ws.receive_json()
        assert error["code"] == "SESSION_NOT_READY"

        ws.send_text(frame(type="heartbeat", session_id="nope"))
        assert ws.receive_json()["type"] == "heartbeat.ack"


def test_debug_surface(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(frame(type="session.start", session_id="s1", language="es", subject_reference="wine-42"))
        ws.receive_json()

    assert client.get("/debug/sessions/s1").status_code == 403

    forbidden = client.get("/debug/sessions/s1", headers={"X-Debug-Token": "wrong"})
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["code"] == "FORBIDDEN"

    ok = client.get("/debug/sessions/s1", headers={"X-Debug-Token": "s3cret"})
    assert ok.status_code == 200
    body = ok.json()
    assert body["session"]["phase"] == "READY"
    assert body["session"]["language"] == "es"
    assert 0 < body["ttl_remaining_s"] <= 3600

    missing = client.get("/debug/sessions/other", headers={"X-Debug-Token": "s3cret"})
    assert missing.status_code == 404


def test_debug_surface_disabled_without_token(settings: Settings) -> None:
    settings.debug_token = None
    app = create_app(settings, store=InMemorySessionStore(), generator=ScriptedGenerator())
    resp = TestClient(app).get("/debug/sessions/s1", headers={"X-Debug-Token": "anything"})
    assert resp.status_code == 404


def test_missing_generation_url_is_fatal() -> None:
    settings = Settings(_env_file=None, store_backend="memory", generation_url=None)
    with pytest.raises(ConfigurationError):
        create_app(settings)


def test_missing_redis_url_is_fatal() -> None:
    settings = Settings(
        _env_file=None,
        store_backend="redis",
        redis_url=None,
        generation_url="http://gen.test",
    )
    with pytest.raises(ConfigurationError):
        create_app(settings)


def test_builds_http_collaborators_from_settings(settings: Settings) -> None:
    settings.context_url = "http://ctx.test"
    app = create_app(settings)
    protocol = app.state.protocol
    assert protocol.context_resolver is not None
    assert protocol.relay.generator.url == "http://generation.test/webhook"
    assert json.loads(json.dumps(protocol.capabilities.model_dump())) == {
        "text": True,
        "audio": False,
        "streaming": True,
    }


class ClosingGenerator(ScriptedGenerator):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


class ClosingResolver(ScriptedContextResolver):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


def test_shutdown_closes_http_collaborators(settings: Settings) -> None:
    generator = ClosingGenerator()
    resolver = ClosingResolver()
    app = create_app(settings, store=InMemorySessionStore(), generator=generator, context_resolver=resolver)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert not generator.closed

    assert generator.closed
    assert resolver.closed


def test_stream_deltas_without_streaming_generator_warns(
    settings: Settings, caplog: pytest.LogCaptureFixture
) -> None:
    settings.stream_deltas = True
    with caplog.at_level(logging.WARNING, logger="conv_runtime.main"):
        create_app(settings, store=InMemorySessionStore())

    assert any("has no stream()" in r.getMessage() for r in caplog.records)
