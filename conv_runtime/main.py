# conv_runtime/main.py
# -*- coding: utf-8 -*-
"""
conv-runtime — FastAPI application entrypoint
---------------------------------------------
This file wires everything together:

- Sets up central logging.
- Builds the collaborators from Settings (session store, generation client,
  optional context resolver) and the core on top of them
  (SessionRegistry -> TurnRelay -> ProtocolStateMachine).
- Mounts routers:
    * /ws                        (WebSocket) conversation channel
    * /debug/sessions/{id}       (HTTP)      token-gated session inspection
    * /, /health                 (HTTP)      meta
- Fails fast with ConfigurationError when a required endpoint is missing.
- Closes the store and the HTTP collaborators on shutdown.

Typical run command (dev):

    uvicorn conv_runtime.main:create_app --factory --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from conv_runtime import __version__
from conv_runtime.core.config import Settings
from conv_runtime.core.errors import ConfigurationError
from conv_runtime.core.protocol import ProtocolStateMachine
from conv_runtime.core.relay import TurnRelay
from conv_runtime.models.messages import PROTOCOL_VERSION
from conv_runtime.providers.context import ContextResolver, HttpContextResolver
from conv_runtime.providers.generation import GenerationClient, HttpGenerationClient
from conv_runtime.routers.debug import router as debug_router
from conv_runtime.routers.ws import router as ws_router
from conv_runtime.runtime_state import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionRegistry,
    SessionStoreAdapter,
)
from conv_runtime.utils import get_logger, setup_logging

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Collaborator builders
# ---------------------------------------------------------------------------


def build_store(settings: Settings) -> SessionStoreAdapter:
    if settings.store_backend == "memory":
        logger.warning("Using in-memory session store; sessions are lost on restart.")
        return InMemorySessionStore()
    if not settings.redis_url:
        raise ConfigurationError("REDIS_URL is not set while STORE_BACKEND=redis.")
    return RedisSessionStore(
        settings.redis_url,
        key_prefix=settings.redis_key_prefix,
        retry_attempts=settings.store_retry_attempts,
        base_delay_s=settings.store_retry_base_delay_s,
        max_delay_s=settings.store_retry_max_delay_s,
    )


def build_generator(settings: Settings) -> GenerationClient:
    if not settings.generation_url:
        raise ConfigurationError(
            "GENERATION_URL is not set; the relay cannot answer user turns."
        )
    return HttpGenerationClient(
        settings.generation_url,
        api_key=settings.generation_api_key,
        timeout_s=settings.generation_timeout_s,
    )


def build_context_resolver(settings: Settings) -> Optional[ContextResolver]:
    if not settings.context_url:
        return None
    return HttpContextResolver(settings.context_url, timeout_s=settings.context_timeout_s)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SessionStoreAdapter] = None,
    generator: Optional[GenerationClient] = None,
    context_resolver: Optional[ContextResolver] = None,
) -> FastAPI:
    """
    Application factory.

    Collaborators not passed in are built from settings; tests inject fakes.
    Raises ConfigurationError before any route is mounted.
    """
    settings = settings or Settings()
    setup_logging(debug=settings.debug)

    store = store if store is not None else build_store(settings)
    generator = generator if generator is not None else build_generator(settings)
    if context_resolver is None:
        context_resolver = build_context_resolver(settings)

    registry = SessionRegistry(
        store,
        ttl_seconds=settings.session_ttl_s,
        max_history_turns=settings.max_history_turns,
    )
    if settings.stream_deltas and not callable(getattr(generator, "stream", None)):
        logger.warning(
            "STREAM_DELTAS is on but %s has no stream(); replies are sent whole.",
            type(generator).__name__,
        )
    relay = TurnRelay(registry, generator, stream_deltas=settings.stream_deltas)
    protocol = ProtocolStateMachine(
        registry,
        relay,
        capabilities=settings.capabilities,
        default_language=settings.default_language,
        context_resolver=context_resolver,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await store.close()
        logger.info("Session store closed")
        for collaborator in (generator, context_resolver):
            close = getattr(collaborator, "close", None)
            if callable(close):
                close()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.protocol = protocol

    app.include_router(ws_router)
    app.include_router(debug_router)

    @app.get("/", tags=["meta"])
    async def root():
        return {
            "name": settings.app_name,
            "environment": settings.environment,
            "message": "conv-runtime is running.",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """Lightweight health check for the platform's probes."""
        return {
            "status": "ok",
            "environment": settings.environment,
            "store_backend": settings.store_backend,
            "protocol_version": PROTOCOL_VERSION,
        }

    logger.info(
        "conv-runtime app created (env=%s, store=%s, context_resolver=%s, stream_deltas=%s)",
        settings.environment,
        settings.store_backend,
        context_resolver is not None,
        settings.stream_deltas,
    )
    return app


if __name__ == "__main__":
    import uvicorn

    _settings = Settings()
    uvicorn.run(
        "conv_runtime.main:create_app",
        factory=True,
        host=_settings.api_host,
        port=_settings.api_port,
        reload=(_settings.environment != "production"),
    )
