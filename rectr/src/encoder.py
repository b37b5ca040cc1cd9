"""
PCM-to-WAV encoding.

Turns the raw 16-bit little-endian PCM captured from the recorder into a
standard WAV container.
"""

import os
import sys
import wave
from array import array
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from .tools import BITS_PER_SAMPLE, CHANNELS, SAMPLE_RATE

SAMPLE_WIDTH = BITS_PER_SAMPLE // 8


class NoAudioCaptured(Exception):
    """Raised when a recording ended without a single complete sample."""
    pass


class ArtifactFormat(Enum):
    """Audio artifact container formats."""
    RAW_CONTAINER = "wav"
    COMPRESSED = "mp3"


@dataclass(frozen=True)
class AudioArtifact:
    """An audio file produced by a recording session."""
    path: Path
    size_bytes: int
    format: ArtifactFormat
    sample_rate_hz: int
    channels: int

    @property
    def size_mb(self) -> float:
        return round(self.size_bytes / (1024 * 1024), 2)

    @classmethod
    def from_file(cls, path: Union[str, Path], format: ArtifactFormat,
                  sample_rate_hz: int, channels: int) -> "AudioArtifact":
        path = Path(path)
        return cls(path, path.stat().st_size, format, sample_rate_hz, channels)


def pcm_to_samples(pcm: bytes) -> array:
    """
    Decode little-endian signed 16-bit PCM into native integer samples.

    A trailing unpaired byte is ignored.
    """
    usable = len(pcm) - (len(pcm) % SAMPLE_WIDTH)
    samples = array("h")
    samples.frombytes(pcm[:usable])
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def encode_wav(
    pcm: Union[bytes, memoryview],
    path: Union[str, Path],
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> AudioArtifact:
    """
    Write raw PCM to a WAV file.

    The file is written next to its destination and renamed into place, so
    ``path`` never holds a half-written container. On any error the
    temporary file is removed and the exception propagates.

    Args:
        pcm: Raw signed 16-bit little-endian samples (any bytes-like object).
        path: Destination ``.wav`` path.
        sample_rate: Sample rate in Hz.
        channels: Channel count.

    Returns:
        The written AudioArtifact.

    Raises:
        NoAudioCaptured: If ``pcm`` holds no complete sample.
        OSError: If the file cannot be written.
    """
    usable = len(pcm) - (len(pcm) % SAMPLE_WIDTH)
    if not usable:
        raise NoAudioCaptured("No audio data captured")

    if sys.byteorder == "big":
        # wave expects native-order samples and writes little-endian
        frames = pcm_to_samples(pcm).tobytes()
    else:
        frames = memoryview(pcm)[:usable]

    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with wave.open(str(tmp_path), "wb") as wav_file:
            wav_file.setnchannels(channels)
            wav_file.setsampwidth(SAMPLE_WIDTH)
            wav_file.setframerate(sample_rate)
            wav_file.writeframes(frames)
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    return AudioArtifact.from_file(path, ArtifactFormat.RAW_CONTAINER, sample_rate, channels)


def wav_duration(path: Union[str, Path]) -> float:
    """Return the duration of a WAV file in seconds."""
    with wave.open(str(path), "rb") as wav_file:
        return wav_file.getnframes() / float(wav_file.getframerate())
