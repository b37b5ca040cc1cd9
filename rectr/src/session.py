"""
Recording session state machine.

A CaptureSession owns one capture process, its buffer and its worker thread
for the lifetime of a single recording::

    IDLE -> RECORDING -> STOPPING -> ENCODING -> DONE
                                  \\-> NO_AUDIO
    any step may end in FAILED
"""

import logging
import subprocess
import threading
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from .capture import CaptureBuffer, CaptureProcess, CaptureWorker
from .encoder import AudioArtifact, NoAudioCaptured, encode_wav
from .processor import compress_audio
from .tools import ResolvedTool, ToolLocator, ensure_capture_tool

logger = logging.getLogger(__name__)

RECORDING_FILENAME = "recording.wav"

# Seconds to wait for end-of-stream after killing the recorder
STOP_TIMEOUT = 5.0


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    ENCODING = "encoding"
    DONE = "done"
    NO_AUDIO = "no_audio"
    FAILED = "failed"


class SessionStateError(RuntimeError):
    """Raised when an operation is called in the wrong session state."""
    pass


class SessionError(Exception):
    """A terminal session failure tagged with the stage that failed."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {cause}")


class IOFailure(SessionError):
    """Filesystem error while writing the session audio."""
    pass


class CaptureSession:
    """One recording, from process launch to encoded artifact."""

    def __init__(
        self,
        locator: Optional[ToolLocator] = None,
        process_factory: Callable[[ResolvedTool], CaptureProcess] = CaptureProcess,
        installer: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        compress: bool = True,
        stop_timeout: float = STOP_TIMEOUT,
    ):
        """
        Initialize an idle session.

        Args:
            locator: Tool locator for the capture and compression tools.
            process_factory: Builds the capture process adapter for a tool.
            installer: Runner handed to the package-manager installer.
            compress: Attempt MP3 compression after encoding.
            stop_timeout: Seconds to wait for the stream to end after the kill.
        """
        self.locator = locator or ToolLocator()
        self.process_factory = process_factory
        self.installer = installer
        self.compress = compress
        self.stop_timeout = stop_timeout

        self.state = SessionState.IDLE
        self.started_at: Optional[datetime] = None
        self.buffer = CaptureBuffer()
        self.artifact: Optional[AudioArtifact] = None
        self.error: Optional[str] = None
        self.tool: Optional[ResolvedTool] = None

        self._process: Optional[CaptureProcess] = None
        self._worker: Optional[CaptureWorker] = None
        self._started_monotonic: Optional[float] = None
        self._stopped_monotonic: Optional[float] = None
        self._lock = threading.Lock()

    # -- state helpers -------------------------------------------------

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(f"Session is {self.state.value}, expected {allowed}")

    def _set_state(self, state: SessionState) -> None:
        with self._lock:
            logger.debug("Session %s -> %s", self.state.value, state.value)
            self.state = state

    def _fail(self, stage: str, cause: BaseException) -> None:
        with self._lock:
            self.state = SessionState.FAILED
            self.error = f"{stage} failed: {cause}"
        logger.error("Session failed during %s: %s", stage, cause)

    # -- progress --------------------------------------------------------

    @property
    def done(self) -> threading.Event:
        """One-shot signal fired when the capture worker has exited."""
        if self._worker is None:
            raise SessionStateError("Session has not started recording")
        return self._worker.done

    @property
    def elapsed(self) -> float:
        """Seconds recorded so far (frozen once recording stops)."""
        if self._started_monotonic is None:
            return 0.0
        end = self._stopped_monotonic or time.monotonic()
        return end - self._started_monotonic

    @property
    def buffer_size(self) -> int:
        return len(self.buffer)

    @property
    def is_recording(self) -> bool:
        return self.state == SessionState.RECORDING

    # -- transitions -----------------------------------------------------

    def start_recording(self) -> None:
        """
        Launch the capture process and the background reader.

        May block while a missing capture tool is installed.

        Raises:
            SessionStateError: If the session is not idle.
            ToolUnavailable, UnsupportedPlatform: No usable capture tool.
            OSError: The capture process could not be launched.
        """
        self._require(SessionState.IDLE)

        try:
            self.tool = ensure_capture_tool(self.locator, self.installer)
            self._process = self.process_factory(self.tool)
            stream = self._process.start()
        except Exception as e:
            self._fail("capture setup", e)
            raise

        self.started_at = datetime.now()
        self._started_monotonic = time.monotonic()
        self._worker = CaptureWorker(self._process, stream, self.buffer)
        self._set_state(SessionState.RECORDING)
        self._worker.start()
        logger.info("Recording started with %s", self.tool.name)

    def stop_recording(self) -> None:
        """
        Stop capturing and wait for the reader to finish.

        Returns only after the worker has stopped appending to the buffer,
        waiting at most about twice ``stop_timeout``.
        """
        self._require(SessionState.RECORDING)
        self._set_state(SessionState.STOPPING)
        if not self._worker.stop(self.stop_timeout):
            logger.error("Capture worker did not exit, keeping %d bytes captured so far", self.buffer_size)
        self._stopped_monotonic = time.monotonic()
        logger.info("Recording stopped: %.1fs, %d bytes", self.elapsed, self.buffer_size)

    def save_and_encode(self, output_dir: Union[str, Path]) -> AudioArtifact:
        """
        Encode the captured audio into ``output_dir``.

        Returns:
            The final artifact (compressed when possible).

        Raises:
            NoAudioCaptured: Nothing was recorded; no file is written.
            IOFailure: The WAV could not be written.
        """
        self._require(SessionState.STOPPING)

        if not self.buffer.sealed:
            raise SessionStateError("Capture worker is still running")

        if len(self.buffer) == 0:
            self._set_state(SessionState.NO_AUDIO)
            raise NoAudioCaptured("No audio data captured")

        self._set_state(SessionState.ENCODING)
        try:
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            artifact = encode_wav(self.buffer.view(), output_dir / RECORDING_FILENAME)
        except OSError as e:
            self._fail("save audio", e)
            raise IOFailure("save audio", e) from e

        if self.compress:
            artifact = compress_audio(artifact, self.locator)

        with self._lock:
            self.artifact = artifact
            self.state = SessionState.DONE
        logger.info("Audio saved: %s (%.2f MB)", artifact.path, artifact.size_mb)
        return artifact

