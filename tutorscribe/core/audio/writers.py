"""Wave writer for keeping an audio copy of the mixed stream."""

from __future__ import annotations

import threading
import wave
from pathlib import Path

import numpy as np


class AudioFileWriter:
    """16-bit PCM wave writer that accepts floating point numpy arrays.

    Writes and close may come from different threads (the mixer loop and the
    mixer teardown); writes after close are dropped.
    """

    def __init__(self, path: Path, sample_rate: int, channels: int = 1) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.sample_rate = sample_rate
        self.channels = channels
        self._lock = threading.Lock()
        self._wave = wave.open(str(self.path), "wb")
        self._wave.setnchannels(channels)
        self._wave.setsampwidth(2)
        self._wave.setframerate(sample_rate)
        self._frames_written = 0
        self._closed = False

    def write(self, data: np.ndarray) -> None:
        if data.ndim == 1:
            data = data[:, np.newaxis]
        if data.shape[1] != self.channels:
            if data.shape[1] == 1:
                data = np.repeat(data, self.channels, axis=1)
            else:
                raise ValueError("Channel mismatch when writing audio")
        as_int16 = (np.clip(data, -1.0, 1.0) * 32767.0).astype("<i2")
        with self._lock:
            if self._closed:
                return
            self._wave.writeframes(as_int16.tobytes())
            self._frames_written += as_int16.shape[0]

    @property
    def frames_written(self) -> int:
        return self._frames_written

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate == 0:
            return 0.0
        return self._frames_written / float(self.sample_rate)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._wave.close()

    def __enter__(self) -> "AudioFileWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["AudioFileWriter"]
