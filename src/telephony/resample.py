"""Linear-interpolation sample-rate conversion for PCM16 audio."""

from __future__ import annotations

import numpy as np


def _output_length(n_samples: int, src_rate: int, dst_rate: int) -> int:
    # round(n * dst / src) with halves rounded up, in exact integer arithmetic.
    return (2 * n_samples * dst_rate + src_rate) // (2 * src_rate)


def _check_rates(src_rate: int, dst_rate: int) -> None:
    if src_rate <= 0:
        raise ValueError(f"Source rate must be positive, got {src_rate}")
    if dst_rate <= 0:
        raise ValueError(f"Target rate must be positive, got {dst_rate}")


def _interpolate(samples: np.ndarray, positions: np.ndarray, dst_rate: int) -> np.ndarray:
    """Sample ``samples`` at ``positions / dst_rate``; reads past the end are zero."""

    padded = np.concatenate([samples.astype(np.float64), np.zeros(2, dtype=np.float64)])
    idx = positions // dst_rate
    frac = (positions % dst_rate) / dst_rate

    s1 = padded[idx]
    s2 = padded[idx + 1]
    out = s1 + (s2 - s1) * frac
    return np.trunc(out).astype(np.int16)


def resample_linear(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Resample one self-contained PCM16 chunk.

    Produces ``round(len(pcm) * dst_rate / src_rate)`` samples. Output sample
    ``i`` interpolates at input position ``i * src_rate / dst_rate``; positions
    beyond the last input sample read as silence.
    """

    _check_rates(src_rate, dst_rate)
    if src_rate == dst_rate:
        return pcm
    if pcm.size == 0:
        return pcm.astype(np.int16)

    n_out = _output_length(pcm.size, src_rate, dst_rate)
    positions = np.arange(n_out, dtype=np.int64) * src_rate
    return _interpolate(pcm, positions, dst_rate)


class StreamingResampler:
    """Linear resampler that keeps phase and history between chunks.

    Consecutive calls to :meth:`process` behave as one continuous signal: input
    samples still needed for interpolation are held over, and the fractional
    read position carries into the next chunk. The stream starts from silence,
    so output lags input by one input sample. After ``T`` input samples in
    total, ``round(T * dst_rate / src_rate)`` samples have been produced.
    """

    def __init__(self, src_rate: int, dst_rate: int) -> None:
        _check_rates(src_rate, dst_rate)
        self._src_rate = src_rate
        self._dst_rate = dst_rate
        self.reset()

    @property
    def src_rate(self) -> int:
        return self._src_rate

    @property
    def dst_rate(self) -> int:
        return self._dst_rate

    @property
    def samples_in(self) -> int:
        return self._total_in

    @property
    def samples_out(self) -> int:
        return self._total_out

    def reset(self) -> None:
        self._history = np.zeros(1, dtype=np.int16)
        # Read position of the next output, in units of 1 / dst_rate input
        # samples, relative to the first held-over sample.
        self._phase = 0
        self._total_in = 0
        self._total_out = 0

    def process(self, pcm: np.ndarray) -> np.ndarray:
        if pcm.size == 0:
            return np.zeros(0, dtype=np.int16)

        self._total_in += int(pcm.size)
        n_out = _output_length(self._total_in, self._src_rate, self._dst_rate) - self._total_out

        extended = np.concatenate([self._history, pcm.astype(np.int16)])
        positions = self._phase + np.arange(n_out, dtype=np.int64) * self._src_rate
        out = _interpolate(extended, positions, self._dst_rate)

        next_position = self._phase + n_out * self._src_rate
        keep_from = min(next_position // self._dst_rate, extended.size - 1)
        self._history = extended[keep_from:].copy()
        self._phase = next_position - keep_from * self._dst_rate
        self._total_out += n_out
        return out
