import wave

import numpy as np
import pytest

from tutorscribe.core.audio.writers import AudioFileWriter


def test_writer_records_frames_and_duration(tmp_path) -> None:
    path = tmp_path / "nested" / "lesson.wav"
    writer = AudioFileWriter(path, sample_rate=16_000, channels=1)

    writer.write(np.zeros(8_000, dtype=np.float32))
    writer.write(np.full((8_000, 1), 0.5, dtype=np.float32))
    writer.close()
    writer.close()

    assert writer.frames_written == 16_000
    assert writer.duration_seconds == pytest.approx(1.0)
    with wave.open(str(path), "rb") as handle:
        assert handle.getnchannels() == 1
        assert handle.getsampwidth() == 2
        assert handle.getframerate() == 16_000
        assert handle.getnframes() == 16_000


def test_writer_drops_writes_after_close(tmp_path) -> None:
    with AudioFileWriter(tmp_path / "a.wav", sample_rate=8_000) as writer:
        writer.write(np.zeros(100, dtype=np.float32))

    writer.write(np.zeros(100, dtype=np.float32))

    assert writer.frames_written == 100


def test_writer_rejects_channel_mismatch(tmp_path) -> None:
    writer = AudioFileWriter(tmp_path / "b.wav", sample_rate=8_000, channels=2)
    try:
        writer.write(np.zeros((10, 2), dtype=np.float32))
        writer.write(np.zeros(10, dtype=np.float32))
        with pytest.raises(ValueError):
            writer.write(np.zeros((10, 3), dtype=np.float32))
    finally:
        writer.close()

    assert writer.frames_written == 20
