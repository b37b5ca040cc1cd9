"""
Audio compression for upload.

Transcodes the session WAV into a small mono 16 kHz MP3. Compression is
best-effort: whenever it fails the original WAV is kept and returned.
"""

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from .encoder import ArtifactFormat, AudioArtifact
from .tools import COMPRESS_TOOLS, COMPRESSION_SAMPLE_RATE, ToolLocator

logger = logging.getLogger(__name__)

COMPRESSION_TIMEOUT = 600


def compressed_path_for(wav_path: Path) -> Path:
    """Return the output path used for the compressed copy of ``wav_path``."""
    return wav_path.with_name(f"{wav_path.stem}_compressed.mp3")


def compress_audio(
    artifact: AudioArtifact,
    locator: Optional[ToolLocator] = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    timeout: Optional[float] = COMPRESSION_TIMEOUT,
) -> AudioArtifact:
    """
    Compress a WAV artifact, replacing it with the MP3 on success.

    Args:
        artifact: The uncompressed WAV artifact.
        locator: Tool locator used to pick ffmpeg or sox.
        runner: Callable with the ``subprocess.run`` signature.
        timeout: Maximum seconds to wait for the transcoder.

    Returns:
        The compressed artifact, or ``artifact`` unchanged if compression
        was not possible.
    """
    locator = locator or ToolLocator()
    wav_path = Path(artifact.path)
    output_path = compressed_path_for(wav_path)

    tool = locator.find(COMPRESS_TOOLS)
    if tool is None:
        names = " or ".join(spec.name for spec in COMPRESS_TOOLS)
        logger.warning("No compression tool available (%s required), keeping %s", names, wav_path.name)
        return artifact

    cmd = tool.command(input=str(wav_path), output=str(output_path))
    try:
        runner(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except subprocess.CalledProcessError as e:
        logger.warning("Compression with %s failed (exit code %s): %s",
                       tool.name, e.returncode, (e.stderr or "").strip())
        _discard(output_path)
        return artifact
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Compression with %s failed: %s", tool.name, e)
        _discard(output_path)
        return artifact

    try:
        compressed = AudioArtifact.from_file(
            output_path, ArtifactFormat.COMPRESSED, COMPRESSION_SAMPLE_RATE, 1
        )
    except OSError as e:
        logger.warning("Compression output unreadable (%s), keeping %s", e, wav_path.name)
        _discard(output_path)
        return artifact

    if compressed.size_bytes == 0:
        logger.warning("Compression produced no output, keeping %s", wav_path.name)
        _discard(output_path)
        return artifact

    # Only one of the two files may survive
    try:
        wav_path.unlink()
    except OSError as e:
        logger.warning("Could not remove %s after compression: %s", wav_path.name, e)
        _discard(output_path)
        return artifact

    logger.info(
        "Audio compressed: %.1f MB -> %.1f MB (%.1fx reduction)",
        artifact.size_bytes / 1024 / 1024,
        compressed.size_bytes / 1024 / 1024,
        artifact.size_bytes / compressed.size_bytes,
    )
    return compressed


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial output %s: %s", path, e)
