from __future__ import annotations

from typing import Final

import numpy as np

ULAW_BIAS: Final[int] = 0x84
ULAW_CLIP: Final[int] = 32635

# Biased magnitudes where segments 1..7 begin.
_SEGMENT_STARTS = np.array([0x100 << n for n in range(7)], dtype=np.int32)


def decode_ulaw_byte(value: int) -> int:
    """Decode one G.711 mu-law byte to a signed 16-bit sample."""

    mu = ~value & 0xFF
    sign = mu & 0x80
    exponent = (mu >> 4) & 0x07
    mantissa = mu & 0x0F

    sample = (((mantissa << 3) + ULAW_BIAS) << exponent) - ULAW_BIAS
    return -sample if sign else sample


def encode_ulaw_sample(sample: int) -> int:
    """Encode one signed 16-bit sample to a G.711 mu-law byte."""

    sign = 0x80 if sample < 0 else 0
    magnitude = min(abs(int(sample)), ULAW_CLIP) + ULAW_BIAS

    exponent = 7
    mask = 0x4000
    while exponent > 0 and not magnitude & mask:
        exponent -= 1
        mask >>= 1

    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to PCM16 int16 array."""

    data = np.frombuffer(ulaw_bytes, dtype=np.uint8)

    mu = np.bitwise_not(data).astype(np.int32)
    sign = mu & 0x80
    exponent = (mu >> 4) & 0x07
    mantissa = mu & 0x0F

    pcm = (((mantissa << 3) + ULAW_BIAS) << exponent) - ULAW_BIAS
    pcm = np.where(sign != 0, -pcm, pcm)

    return pcm.astype(np.int16)


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode int16 samples to mu-law bytes, matching :func:`encode_ulaw_sample`."""

    samples = np.asarray(pcm16, dtype=np.int32).ravel()
    if samples.size == 0:
        return b""

    negative = samples < 0
    biased = np.minimum(np.abs(samples), ULAW_CLIP) + ULAW_BIAS

    # Segment number = count of segment starts at or below the biased magnitude.
    exponent = np.searchsorted(_SEGMENT_STARTS, biased, side="right").astype(np.int32)
    mantissa = (biased >> (exponent + 3)) & 0x0F

    code = np.where(negative, 0x80, 0) | (exponent << 4) | mantissa
    return (~code & 0xFF).astype(np.uint8).tobytes()
