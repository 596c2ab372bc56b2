"""Audio processing utilities."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def ensure_mono(data: np.ndarray) -> np.ndarray:
    """Return ``data`` as a 1-D float32 array, averaging channels if needed."""

    array = np.asarray(data, dtype=np.float32)
    if array.ndim == 1:
        return array
    if array.shape[1] == 1:
        return array[:, 0]
    return array.mean(axis=1).astype(np.float32, copy=False)


def resample(data: np.ndarray, sr: int, target_sr: int) -> np.ndarray:
    """Linearly resample a mono chunk from ``sr`` to ``target_sr``."""

    if sr == target_sr or sr <= 0 or target_sr <= 0:
        return data
    length = data.shape[0]
    if length == 0:
        return data
    target_length = max(int(round(length * target_sr / sr)), 1)
    if target_length == 1:
        return np.full(1, data[0], dtype=data.dtype)
    original_positions = np.linspace(0, length - 1, num=length)
    target_positions = np.linspace(0, length - 1, num=target_length)
    return np.interp(target_positions, original_positions, data).astype(data.dtype, copy=False)


def rms(data: np.ndarray) -> float:
    if data.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(data, dtype=np.float64))))


def apply_noise_gate(data: np.ndarray, threshold: float) -> np.ndarray:
    """Silence chunks whose RMS level is below ``threshold``."""

    if threshold <= 0 or rms(data) >= threshold:
        return data
    return np.zeros_like(data)


@dataclass
class AutoGain:
    """Slowly tracking gain that pulls speech towards a target RMS level."""

    target_rms: float = 0.1
    max_gain: float = 8.0
    smoothing: float = 0.1
    gain: float = 1.0

    def process(self, data: np.ndarray) -> np.ndarray:
        level = rms(data)
        if level > 1e-6 and self.target_rms > 0:
            desired = min(self.target_rms / level, self.max_gain)
            self.gain += (desired - self.gain) * self.smoothing
        return data * self.gain


def to_pcm16(data: np.ndarray) -> bytes:
    """Encode float samples in [-1, 1] as little-endian signed 16-bit PCM."""

    clipped = np.clip(np.asarray(data, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


__all__ = [
    "AutoGain",
    "apply_noise_gate",
    "ensure_mono",
    "resample",
    "rms",
    "to_pcm16",
]
