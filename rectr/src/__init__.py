"""
Recording Transcriber - Record meetings and turn them into titled summaries.

Captures microphone audio through sox/rec/ffmpeg, encodes it to WAV/MP3 and
transcribes and summarizes it with the OpenAI API.
"""

__version__ = "1.0.0"
__author__ = "Recording Transcriber Team"

from .session import CaptureSession, SessionState
from .provider import OpenAIProvider
from .pipeline import RecordingPipeline

__all__ = [
    "CaptureSession",
    "SessionState",
    "OpenAIProvider",
    "RecordingPipeline",
]
