from __future__ import annotations

import base64

import numpy as np
import pytest

from bridge.errors import MalformedMessageError
from integrations.twilio_streaming import (
    FrameTranscoder,
    clear_message,
    media_message,
    parse_twilio_ws_message,
    pcm24k_b64_to_ulaw_b64,
    ulaw_b64_to_pcm24k_b64,
)


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _pcm(payload: str) -> np.ndarray:
    return np.frombuffer(base64.b64decode(payload), dtype="<i2")


def test_ulaw_silence_becomes_pcm24k_silence():
    out = ulaw_b64_to_pcm24k_b64(_b64(b"\xFF" * 160))
    assert out is not None

    pcm = _pcm(out)
    assert pcm.size == 480
    assert not pcm.any()


def test_pcm24k_silence_becomes_ulaw_silence():
    out = pcm24k_b64_to_ulaw_b64(_b64(np.zeros(480, dtype="<i2").tobytes()))
    assert out is not None
    assert base64.b64decode(out) == b"\xFF" * 160


def test_pcm_is_little_endian():
    pcm = np.full(3, 0x0102, dtype="<i2").tobytes()
    assert pcm[:2] == b"\x02\x01"

    out = pcm24k_b64_to_ulaw_b64(_b64(pcm))
    assert base64.b64decode(out) == b"\xE7"


@pytest.mark.parametrize("payload", [None, "", "!!!not base64!!!"])
def test_empty_or_invalid_payload_yields_none(payload):
    assert ulaw_b64_to_pcm24k_b64(payload) is None
    assert pcm24k_b64_to_ulaw_b64(payload) is None


def test_trailing_odd_pcm_byte_is_ignored():
    raw = np.zeros(480, dtype="<i2").tobytes() + b"\x01"
    out = pcm24k_b64_to_ulaw_b64(_b64(raw))
    assert len(base64.b64decode(out)) == 160


def test_single_pcm_byte_yields_none():
    assert pcm24k_b64_to_ulaw_b64(_b64(b"\x01")) is None


def test_frame_transcoder_keeps_frame_sizes():
    transcoder = FrameTranscoder()
    for _ in range(3):
        up = transcoder.telephony_to_realtime(_b64(b"\xFF" * 160))
        assert _pcm(up).size == 480

        down = transcoder.realtime_to_telephony(_b64(np.zeros(480, dtype="<i2").tobytes()))
        assert base64.b64decode(down) == b"\xFF" * 160


def test_frame_transcoder_is_continuous_across_frames():
    transcoder = FrameTranscoder()
    tone = np.full(480, 8000, dtype="<i2").tobytes()

    transcoder.realtime_to_telephony(_b64(tone))
    second = base64.b64decode(transcoder.realtime_to_telephony(_b64(tone)))

    # A constant level stays one code across the frame boundary.
    assert len(set(second)) == 1


def test_frame_transcoder_soft_fails():
    transcoder = FrameTranscoder()
    assert transcoder.telephony_to_realtime(None) is None
    assert transcoder.realtime_to_telephony("") is None
    assert transcoder.realtime_to_telephony("%%%") is None


def test_parse_twilio_ws_message_rejects_garbage():
    with pytest.raises(MalformedMessageError):
        parse_twilio_ws_message("{not json")
    with pytest.raises(MalformedMessageError):
        parse_twilio_ws_message("[1, 2, 3]")

    assert parse_twilio_ws_message('{"event": "connected"}') == {"event": "connected"}


def test_outbound_envelopes():
    assert media_message("MZ1", "AAAA") == {
        "event": "media",
        "streamSid": "MZ1",
        "media": {"payload": "AAAA"},
    }
    assert clear_message("MZ1") == {"event": "clear", "streamSid": "MZ1"}
