"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration.

    Built once at startup and passed by reference into the session registry
    and every call session; instances are frozen.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # HTTP / WebSocket listener
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)

    # OpenAI Realtime (speech peer)
    openai_api_key: str = Field(min_length=1, description="Bearer credential for the realtime API.")
    openai_model: str = Field(default="gpt-4o-mini-realtime-preview")
    openai_voice: str = Field(default="verse")
    openai_realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    openai_beta_header: str | None = Field(
        default="realtime=v1",
        description="Value of the OpenAI-Beta header; empty disables it.",
    )
    realtime_open_timeout: float = Field(default=10.0, gt=0)

    agent_instructions: str = Field(
        default="You are a friendly voice agent answering phone calls. Keep answers short.",
    )
    greeting_instructions: str = Field(
        default="Greet the caller briefly and ask how you can help.",
    )

    # Server-side turn detection
    vad_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    vad_prefix_padding_ms: int = Field(default=300, ge=0)
    vad_silence_duration_ms: int = Field(default=500, ge=0)

    # Twilio (Voice)
    ws_endpoint: str | None = Field(
        default=None,
        description="Public wss:// URL Twilio should stream to; defaults to wss://<host>/media-stream.",
    )
    twilio_auth_token: str | None = Field(
        default=None,
        description="If set, incoming webhooks must carry a valid X-Twilio-Signature.",
    )
    barge_in_clear: bool = Field(
        default=True,
        description="Send a Twilio 'clear' event when the caller starts speaking.",
    )

    @field_validator("openai_beta_header", "ws_endpoint", "twilio_auth_token")
    @classmethod
    def empty_as_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
