"""
Session directory layout.

Each processed recording gets its own directory named after the generated
title and the recording start time, holding the audio, the transcript and
the summary.
"""

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# Characters not allowed in directory names on common filesystems
UNSAFE_TITLE_CHARS = '/\\:*?|<>"'

DIR_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
SUMMARY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

AUDIO_BASENAME = "recording"
TRANSCRIPT_FILENAME = "transcript.txt"
SUMMARY_FILENAME = "summary.txt"

# Message keys for the summary header; localized by the presentation layer
DEFAULT_SUMMARY_HEADERS = {
    "title": "Meeting",
    "date": "Date",
}


def sanitize_title(title: str) -> str:
    """Replace characters that are unsafe in directory names with ``_``."""
    return title.translate({ord(c): "_" for c in UNSAFE_TITLE_CHARS})


def session_dir_name(title: str, started_at: datetime) -> str:
    """
    Build a session directory name from a title and start time.

    Example:
        >>> session_dir_name("Q3 Plan/Review", datetime(2024, 1, 2, 3, 4, 5))
        'Q3 Plan_Review_2024-01-02_03-04-05'
    """
    return f"{sanitize_title(title)}_{started_at.strftime(DIR_TIMESTAMP_FORMAT)}"


def create_session_dir(output_dir: Union[str, Path], title: str, started_at: datetime) -> Path:
    """Create (if needed) and return the directory for a session."""
    session_dir = Path(output_dir) / session_dir_name(title, started_at)
    session_dir.mkdir(parents=True, exist_ok=True)
    return session_dir


def move_audio(audio_path: Union[str, Path], session_dir: Union[str, Path]) -> Path:
    """Move the session audio into ``session_dir`` as ``recording.<ext>``."""
    audio_path = Path(audio_path)
    destination = Path(session_dir) / f"{AUDIO_BASENAME}{audio_path.suffix}"
    # shutil.move falls back to copy+delete across filesystems
    return Path(shutil.move(str(audio_path), str(destination)))


def write_transcript(transcript: str, session_dir: Union[str, Path]) -> Path:
    path = Path(session_dir) / TRANSCRIPT_FILENAME
    path.write_text(transcript, encoding="utf-8")
    return path


def format_summary(title: str, summary: str, started_at: datetime, headers: Optional[dict] = None) -> str:
    """Render the summary file body."""
    headers = {**DEFAULT_SUMMARY_HEADERS, **(headers or {})}
    return (
        f"{headers['title']}: {title}\n"
        f"{headers['date']}: {started_at.strftime(SUMMARY_TIMESTAMP_FORMAT)}\n"
        f"\n"
        f"{summary}"
    )


def write_summary(
    title: str,
    summary: str,
    started_at: datetime,
    session_dir: Union[str, Path],
    headers: Optional[dict] = None,
) -> Path:
    """
    Save the summary file for a session.

    Args:
        title: Generated meeting title.
        summary: Summary body with real line breaks.
        started_at: Recording start time.
        session_dir: Destination session directory.
        headers: Optional overrides for the ``title``/``date`` header labels.

    Returns:
        Path to the written summary file.
    """
    path = Path(os.path.abspath(Path(session_dir) / SUMMARY_FILENAME))
    path.write_text(format_summary(title, summary, started_at, headers), encoding="utf-8")
    return path
