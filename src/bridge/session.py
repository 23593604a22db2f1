"""Per-call relay between a Twilio media stream and a realtime speech session."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from enum import Enum
from typing import TYPE_CHECKING, Any

from bridge.errors import MalformedMessageError, RealtimeConnectError
from integrations.openai_realtime import (
    AUDIO_DELTA_EVENTS,
    ERROR_EVENT,
    SESSION_EVENTS,
    SPEECH_STARTED_EVENT,
    input_audio_append_event,
    parse_realtime_event,
    response_create_event,
    session_update_event,
)
from integrations.twilio_streaming import (
    FrameTranscoder,
    clear_message,
    media_message,
    parse_twilio_ws_message,
)

if TYPE_CHECKING:  # pragma: no cover
    from fastapi import WebSocket

    from config.settings import Settings
    from integrations.openai_realtime import RealtimeClient

LOGGER = logging.getLogger(__name__)


class CallState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_START = "awaiting_start"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.CONNECTING: frozenset({CallState.AWAITING_START, CallState.STREAMING, CallState.CLOSING}),
    CallState.AWAITING_START: frozenset({CallState.STREAMING, CallState.CLOSING}),
    CallState.STREAMING: frozenset({CallState.CLOSING}),
    CallState.CLOSING: frozenset({CallState.CLOSED}),
    CallState.CLOSED: frozenset(),
}


class CallSession:
    """Owns one telephony WebSocket and its paired realtime connection.

    The session is the only writer to either connection. Audio reaches the
    speech peer only in ``STREAMING`` (stream id known and peer configured);
    audio reaches Twilio only once its ``start`` event supplied a stream id.
    Frames arriving before the gate opens are dropped, not buffered.
    """

    def __init__(
        self,
        telephony: WebSocket,
        realtime: RealtimeClient,
        settings: Settings,
    ) -> None:
        self.session_id = secrets.token_hex(4)
        self._telephony = telephony
        self._realtime = realtime
        self._settings = settings
        self._transcoder = FrameTranscoder()

        self._state = CallState.CONNECTING
        self._ready = False
        self._telephony_open = True
        self._end_reason: str | None = None
        self._teardown: asyncio.Task[None] | None = None

        self.stream_sid: str | None = None
        self.call_sid: str | None = None
        self.frames_in = 0
        self.frames_out = 0
        self.frames_dropped = 0

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def closed(self) -> bool:
        return self._state in (CallState.CLOSING, CallState.CLOSED)

    def _transition(self, new_state: CallState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal call state transition {self._state.value} -> {new_state.value}")
        LOGGER.debug("[%s] %s -> %s", self.session_id, self._state.value, new_state.value)
        self._state = new_state

    async def run(self) -> None:
        """Relay both directions until either side ends, then tear down."""

        tasks = {
            asyncio.create_task(self._pump_telephony(), name=f"telephony-{self.session_id}"),
            asyncio.create_task(self._run_realtime(), name=f"realtime-{self.session_id}"),
        }
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    LOGGER.error("[%s] Relay task %s failed", self.session_id, task.get_name(), exc_info=exc)
                    self._end_reason = self._end_reason or f"{task.get_name()} failed"
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.close(self._end_reason or "relay ended")

    async def _pump_telephony(self) -> None:
        async for text in self._telephony.iter_text():
            await self.handle_telephony_message(text)
            if self.closed:
                return
        self._telephony_open = False
        self._end_reason = self._end_reason or "telephony disconnected"

    async def _run_realtime(self) -> None:
        try:
            await self._realtime.connect()
        except RealtimeConnectError as exc:
            LOGGER.error("[%s] %s", self.session_id, exc.detail)
            self._end_reason = "realtime connect failed"
            return

        await self.on_realtime_open()
        async for text in self._realtime.messages():
            await self.handle_realtime_message(text)
            if self.closed:
                return
        self._end_reason = self._end_reason or "realtime closed"

    async def on_realtime_open(self) -> None:
        if self._state is not CallState.CONNECTING:
            return

        LOGGER.info("[%s] Realtime connection open; configuring session", self.session_id)
        for event in (
            session_update_event(self._settings),
            response_create_event(self._settings.greeting_instructions),
        ):
            # A telephony stop may close the session while a send is pending.
            if self.closed:
                return
            await self._realtime.send_event(event)
        if self.closed:
            return

        self._ready = True
        self._transition(CallState.STREAMING if self.stream_sid else CallState.AWAITING_START)

    async def handle_telephony_message(self, text: str | bytes) -> None:
        try:
            message = parse_twilio_ws_message(text)
        except MalformedMessageError as exc:
            LOGGER.warning("[%s] Discarding telephony message: %s", self.session_id, exc.detail)
            return

        event = str(message.get("event") or "")
        if event == "media":
            await self._on_media(message)
        elif event == "start":
            self._on_start(message)
        elif event == "stop":
            await self.close("telephony stop")
        else:
            LOGGER.debug("[%s] Ignoring telephony event %r", self.session_id, event)

    def _on_start(self, message: dict[str, Any]) -> None:
        start = message.get("start")
        if not isinstance(start, dict):
            start = {}
        stream_sid = start.get("streamSid") or message.get("streamSid")
        if not isinstance(stream_sid, str) or not stream_sid:
            LOGGER.warning("[%s] Start event without streamSid", self.session_id)
            return

        self.stream_sid = stream_sid
        self.call_sid = start.get("callSid") or self.call_sid
        LOGGER.info("[%s] Start stream: %s (call=%s)", self.session_id, stream_sid, self.call_sid)

        if self._ready and self._state is CallState.AWAITING_START:
            self._transition(CallState.STREAMING)

    async def _on_media(self, message: dict[str, Any]) -> None:
        if self._state is not CallState.STREAMING:
            self.frames_dropped += 1
            return

        media = message.get("media")
        if not isinstance(media, dict):
            return
        if media.get("track") and media.get("track") != "inbound":
            return

        audio = self._transcoder.telephony_to_realtime(media.get("payload"))
        if audio is None:
            return

        await self._realtime.send_event(input_audio_append_event(audio))
        self.frames_in += 1

    async def handle_realtime_message(self, text: str | bytes) -> None:
        try:
            event = parse_realtime_event(text)
        except MalformedMessageError as exc:
            LOGGER.warning("[%s] Discarding realtime message: %s", self.session_id, exc.detail)
            return

        event_type = str(event.get("type") or "")
        if event_type in AUDIO_DELTA_EVENTS:
            await self._on_audio_delta(event.get("delta"))
        elif event_type == SPEECH_STARTED_EVENT:
            await self._on_speech_started()
        elif event_type == ERROR_EVENT:
            LOGGER.warning("[%s] Realtime error: %s", self.session_id, event.get("error"))
        elif event_type in SESSION_EVENTS:
            LOGGER.debug("[%s] Realtime %s", self.session_id, event_type)

    async def _on_audio_delta(self, delta: Any) -> None:
        # Twilio cannot route media without the stream id from its start event.
        if not self.stream_sid or self.closed:
            self.frames_dropped += 1
            return
        if not isinstance(delta, str):
            return

        payload = self._transcoder.realtime_to_telephony(delta)
        if payload is None:
            return

        await self._send_telephony(media_message(self.stream_sid, payload))
        self.frames_out += 1

    async def _on_speech_started(self) -> None:
        if not self._settings.barge_in_clear or not self.stream_sid or self.closed:
            return
        LOGGER.debug("[%s] Caller speech started; clearing playback", self.session_id)
        await self._send_telephony(clear_message(self.stream_sid))

    async def _send_telephony(self, message: dict[str, Any]) -> None:
        await self._telephony.send_text(json.dumps(message))

    async def close(self, reason: str) -> None:
        """Close both connections exactly once.

        The teardown runs in its own task and is shielded, so it completes even
        when the caller is cancelled (``run`` cancels a pump that is still
        inside ``close``). Later calls wait for the same teardown.
        """

        if self._teardown is None:
            self._transition(CallState.CLOSING)
            LOGGER.info("[%s] Closing call (stream=%s): %s", self.session_id, self.stream_sid, reason)
            self._teardown = asyncio.create_task(self._close_connections(), name=f"teardown-{self.session_id}")
        await asyncio.shield(self._teardown)

    async def _close_connections(self) -> None:
        if not self._realtime.closed:
            try:
                await self._realtime.close()
            except Exception:
                LOGGER.debug("[%s] Realtime close failed", self.session_id, exc_info=True)

        if self._telephony_open:
            self._telephony_open = False
            try:
                await self._telephony.close()
            except Exception:
                LOGGER.debug("[%s] Telephony close failed", self.session_id, exc_info=True)

        self._transition(CallState.CLOSED)
        LOGGER.info(
            "[%s] Call closed: frames_in=%d frames_out=%d dropped=%d",
            self.session_id,
            self.frames_in,
            self.frames_out,
            self.frames_dropped,
        )
