from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Final

import numpy as np

from bridge.errors import MalformedMessageError
from telephony.g711 import ulaw_decode, ulaw_encode
from telephony.resample import StreamingResampler, resample_linear

TWILIO_SAMPLE_RATE: Final[int] = 8000
REALTIME_SAMPLE_RATE: Final[int] = 24000

# The realtime API exchanges little-endian PCM16.
PCM16_LE: Final[np.dtype] = np.dtype("<i2")


def _b64decode(payload: str | None) -> bytes:
    if not payload:
        return b""
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, TypeError, ValueError):
        return b""


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _pcm16_from_bytes(raw: bytes) -> np.ndarray:
    usable = len(raw) - (len(raw) % 2)
    return np.frombuffer(raw[:usable], dtype=PCM16_LE).astype(np.int16)


def _pcm16_to_bytes(pcm: np.ndarray) -> bytes:
    return pcm.astype(PCM16_LE).tobytes()


def ulaw_b64_to_pcm24k_b64(payload: str | None) -> str | None:
    """Twilio mu-law 8 kHz (base64) to realtime PCM16 24 kHz (base64).

    Returns None for an empty or undecodable payload.
    """

    raw = _b64decode(payload)
    if not raw:
        return None

    pcm8k = ulaw_decode(raw)
    pcm24k = resample_linear(pcm8k, TWILIO_SAMPLE_RATE, REALTIME_SAMPLE_RATE)
    return _b64encode(_pcm16_to_bytes(pcm24k))


def pcm24k_b64_to_ulaw_b64(payload: str | None) -> str | None:
    """Realtime PCM16 24 kHz (base64) to Twilio mu-law 8 kHz (base64).

    Returns None for an empty or undecodable payload.
    """

    pcm24k = _pcm16_from_bytes(_b64decode(payload))
    if not pcm24k.size:
        return None

    pcm8k = resample_linear(pcm24k, REALTIME_SAMPLE_RATE, TWILIO_SAMPLE_RATE)
    if not pcm8k.size:
        return None
    return _b64encode(ulaw_encode(pcm8k))


class FrameTranscoder:
    """Per-call transcoder with one streaming resampler per direction.

    Unlike the module-level functions, resampling phase is carried from one
    frame to the next, so chunk edges do not click.
    """

    def __init__(self) -> None:
        self._inbound = StreamingResampler(TWILIO_SAMPLE_RATE, REALTIME_SAMPLE_RATE)
        self._outbound = StreamingResampler(REALTIME_SAMPLE_RATE, TWILIO_SAMPLE_RATE)

    def telephony_to_realtime(self, payload: str | None) -> str | None:
        raw = _b64decode(payload)
        if not raw:
            return None

        pcm24k = self._inbound.process(ulaw_decode(raw))
        if not pcm24k.size:
            return None
        return _b64encode(_pcm16_to_bytes(pcm24k))

    def realtime_to_telephony(self, payload: str | None) -> str | None:
        pcm24k = _pcm16_from_bytes(_b64decode(payload))
        if not pcm24k.size:
            return None

        pcm8k = self._outbound.process(pcm24k)
        if not pcm8k.size:
            return None
        return _b64encode(ulaw_encode(pcm8k))

    def reset(self) -> None:
        self._inbound.reset()
        self._outbound.reset()


def parse_twilio_ws_message(text: str | bytes) -> dict[str, Any]:
    """Parse one Media Streams frame; raises MalformedMessageError on bad input."""

    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"Invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessageError("Expected a JSON object")
    return message


def media_message(stream_sid: str, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def clear_message(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}
