# conv_runtime/core/config.py
# -*- coding: utf-8 -*-
"""
conv-runtime — Configuration
----------------------------
Central configuration for the relay, including:

- app metadata and API host/port
- session lifetime and history window
- session store backend (Redis or in-memory) and its reconnect backoff
- generation webhook (required) and optional context resolution endpoint
- capability flags announced in `session.ready`
- shared secret for the debug/inspection routes

Values come from environment variables or a `.env` file next to the project
root, e.g. GENERATION_URL=https://n8n.example.com/webhook/sommelier
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# This file is: conv_runtime/core/config.py
PACKAGE_DIR: Path = Path(__file__).resolve().parents[1]
ROOT_DIR: Path = PACKAGE_DIR.parent


class Settings(BaseSettings):
    """
    Global configuration for the relay.

    Instantiated once by the application factory and handed to every component
    that needs it; tests build their own instances.
    """

    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App / server basics -----------------------------------------------
    app_name: str = "conv-runtime"
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # --- Sessions -------------------------------------------------------------
    default_language: str = "es"
    session_ttl_s: int = Field(default=3600, gt=0)
    max_history_turns: int = Field(default=30, gt=0)

    # --- Session store ------------------------------------------------------
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: Optional[str] = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (env: REDIS_URL).",
    )
    redis_key_prefix: str = "conv:session:"
    store_retry_attempts: int = Field(default=5, ge=1)
    store_retry_base_delay_s: float = 0.2
    store_retry_max_delay_s: float = 5.0

    # --- Generation collaborator (webhook) ---------------------------------
    generation_url: Optional[str] = Field(
        default=None,
        description="Generation webhook endpoint (env: GENERATION_URL).",
    )
    generation_api_key: Optional[str] = Field(
        default=None,
        description="Optional bearer token for the generation webhook.",
    )
    generation_timeout_s: float = 30.0

    # --- Context resolution collaborator (optional) ------------------------
    context_url: Optional[str] = Field(
        default=None,
        description="Endpoint resolving subject_reference into context (env: CONTEXT_URL).",
    )
    context_timeout_s: float = 10.0

    # --- Protocol -----------------------------------------------------------
    stream_deltas: bool = False
    capability_text: bool = True
    capability_audio: bool = False
    capability_streaming: bool = True

    # --- Debug / inspection -------------------------------------------------
    debug_token: Optional[str] = Field(
        default=None,
        description="Shared secret for /debug routes; unset disables them.",
    )

    @property
    def capabilities(self) -> Dict[str, bool]:
        """Capability flags announced in every `session.ready`."""
        return {
            "text": self.capability_text,
            "audio": self.capability_audio,
            "streaming": self.capability_streaming,
        }


if __name__ == "__main__":
    s = Settings()
    print("conv-runtime — Settings self-test")
    print(f"ROOT_DIR        : {ROOT_DIR}")
    print(f"Environment     : {s.environment}")
    print(f"Store backend   : {s.store_backend} ({s.redis_url})")
    print(f"Session TTL     : {s.session_ttl_s}s, history {s.max_history_turns}")
    print(f"Generation URL  : {s.generation_url!r}")
    print(f"Context URL     : {s.context_url!r}")
    print(f"Capabilities    : {s.capabilities}")
