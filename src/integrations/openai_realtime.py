"""OpenAI Realtime WebSocket client and event builders."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Final
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosedError, WebSocketException

from bridge.errors import MalformedMessageError, RealtimeConnectError
from config.settings import Settings

LOGGER = logging.getLogger(__name__)

AUDIO_DELTA_EVENTS: Final[frozenset[str]] = frozenset(
    {"response.output_audio.delta", "response.audio.delta"}
)
SPEECH_STARTED_EVENT: Final[str] = "input_audio_buffer.speech_started"
SESSION_EVENTS: Final[frozenset[str]] = frozenset({"session.created", "session.updated"})
ERROR_EVENT: Final[str] = "error"


def session_update_event(settings: Settings) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "modalities": ["audio", "text"],
            "model": settings.openai_model,
            "voice": settings.openai_voice,
            "instructions": settings.agent_instructions,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "turn_detection": {
                "type": "server_vad",
                "threshold": settings.vad_threshold,
                "prefix_padding_ms": settings.vad_prefix_padding_ms,
                "silence_duration_ms": settings.vad_silence_duration_ms,
            },
        },
    }


def response_create_event(instructions: str) -> dict[str, Any]:
    return {"type": "response.create", "response": {"instructions": instructions}}


def input_audio_append_event(audio_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio_b64}


def parse_realtime_event(text: str | bytes) -> dict[str, Any]:
    try:
        event = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"Invalid JSON: {exc}") from exc
    if not isinstance(event, dict):
        raise MalformedMessageError("Expected a JSON object")
    return event


class RealtimeClient:
    """One speech-peer connection, owned by exactly one call session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._ws: websockets.ClientConnection | None = None
        self._closed = False

    @property
    def url(self) -> str:
        base = self._settings.openai_realtime_url.rstrip("/")
        return f"{base}?{urlencode({'model': self._settings.openai_model})}"

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._settings.openai_api_key}"}
        if self._settings.openai_beta_header:
            headers["OpenAI-Beta"] = self._settings.openai_beta_header
        return headers

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        LOGGER.debug("Connecting to realtime endpoint: %s", self.url)
        try:
            self._ws = await websockets.connect(
                self.url,
                additional_headers=self.headers,
                max_size=None,
                open_timeout=self._settings.realtime_open_timeout,
                ping_interval=20,
                ping_timeout=20,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            self._closed = True
            raise RealtimeConnectError(f"Realtime connection failed: {exc}") from exc

    async def send_event(self, event: dict[str, Any]) -> None:
        if self._ws is None:
            raise RealtimeConnectError("Realtime connection is not open")
        await self._ws.send(json.dumps(event))

    async def messages(self) -> AsyncIterator[str | bytes]:
        """Yield raw inbound messages until the connection closes."""

        if self._ws is None:
            return
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosedError as exc:
            LOGGER.warning("Realtime connection dropped: %s", exc)
        self._closed = True

    async def close(self) -> None:
        self._closed = True
        if self._ws is not None:
            await self._ws.close()
