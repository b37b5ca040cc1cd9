"""
Recording pipeline that orchestrates the full microphone-to-summary workflow.

Combines live capture, encoding, transcription, summarization and the
session directory layout.
"""

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import CONF_DIR, Settings, load_settings, setup_logging
from .encoder import AudioArtifact, NoAudioCaptured
from .provider import OpenAIProvider, ProviderError
from .session import CaptureSession, SessionError
from .storage import create_session_dir, move_audio, write_summary, write_transcript
from .tools import ToolLocator, ToolUnavailable, UnsupportedPlatform

logger = logging.getLogger(__name__)

# Pause before recording again after a session captured nothing
NO_AUDIO_RESTART_DELAY = 3.0


@dataclass
class PipelineResult:
    """Result of one recording pipeline run."""
    success: bool
    no_audio: bool = False
    title: Optional[str] = None
    summary: Optional[str] = None
    session_dir: Optional[Path] = None
    audio_path: Optional[Path] = None
    transcript_path: Optional[Path] = None
    summary_path: Optional[Path] = None
    artifact: Optional[AudioArtifact] = None
    error: Optional[str] = None

    @property
    def summary_content(self) -> Optional[str]:
        """Read the saved summary file if available."""
        if self.summary_path and self.summary_path.exists():
            return self.summary_path.read_text(encoding="utf-8")
        return None


class RecordingPipeline:
    """
    Complete recording pipeline.

    Handles the workflow from microphone capture to a titled session
    directory with audio, transcript and summary.
    """

    def __init__(
        self,
        settings: Settings,
        provider: Optional[OpenAIProvider] = None,
        locator: Optional[ToolLocator] = None,
        temp_dir: Optional[str] = None,
        session_factory: Optional[Callable[[], CaptureSession]] = None,
        restart_delay: float = NO_AUDIO_RESTART_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the recording pipeline.

        Args:
            settings: Validated settings (credential, language, model, save location).
            provider: Transcription provider; built from the settings if None.
            locator: Tool locator shared by capture and compression.
            temp_dir: Directory for in-flight recordings; system temp if None.
            session_factory: Builds a new idle CaptureSession.
            restart_delay: Seconds to wait before recording again after no audio.
            sleep: Sleep function used for the restart delay.
        """
        self.settings = settings
        self.locator = locator or ToolLocator()
        self.temp_dir = temp_dir or tempfile.gettempdir()
        self.session_factory = session_factory or (lambda: CaptureSession(locator=self.locator))
        self.restart_delay = restart_delay
        self._sleep = sleep

        self._provider = provider
        self.session: Optional[CaptureSession] = None

    @classmethod
    def from_config(cls, conf_dir: Path = CONF_DIR, **kwargs) -> "RecordingPipeline":
        """
        Build a pipeline from rectr.conf and configure logging.

        Raises:
            ConfigError: If no usable API key is configured.
        """
        settings = load_settings(conf_dir)
        setup_logging(settings.logs_dir)
        return cls(settings, **kwargs)

    @property
    def provider(self) -> OpenAIProvider:
        """Get or create the transcription provider."""
        if self._provider is None:
            self._provider = OpenAIProvider(self.settings.api_key)
        return self._provider

    def start(self) -> CaptureSession:
        """
        Start a new recording session.

        Raises:
            RuntimeError: If a session is already recording.
            ToolUnavailable, UnsupportedPlatform, OSError: Capture setup failed.
        """
        if self.session is not None and self.session.is_recording:
            raise RuntimeError("A recording session is already active")
        self.session = self.session_factory()
        self.session.start_recording()
        return self.session

    def stop_and_process(
        self,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ) -> PipelineResult:
        """
        Stop the active recording and run it through the rest of the pipeline.

        Args:
            progress_callback: Optional callback for progress updates.

        Returns:
            PipelineResult; ``no_audio`` is set when nothing was captured.
        """
        session = self.session
        if session is None:
            raise RuntimeError("No recording session to stop")

        def update_progress(progress: float, message: str):
            if progress_callback:
                progress_callback(progress, message)
            logger.info("[%.0f%%] %s", progress * 100, message)

        update_progress(0.0, "Stopping recording...")
        session.stop_recording()

        work_dir = Path(tempfile.mkdtemp(prefix="rectr_", dir=self.temp_dir))
        artifact = None
        audio_path = None
        stage = "save audio"
        try:
            update_progress(0.1, "Saving audio...")
            artifact = session.save_and_encode(work_dir)

            stage = "transcription"
            update_progress(0.2, "Transcribing audio...")
            transcript = self.provider.transcribe(
                artifact.path, self.settings.effective_language, self.settings.model
            )

            stage = "summary generation"
            update_progress(0.6, "Generating summary...")
            result = self.provider.summarize(transcript)

            stage = "save session"
            update_progress(0.9, "Saving session...")
            session_dir = create_session_dir(
                self.settings.save_location, result.title, session.started_at
            )
            audio_path = move_audio(artifact.path, session_dir)

            transcript_path = None
            try:
                transcript_path = write_transcript(transcript, session_dir)
            except OSError as e:
                logger.warning("Failed to save transcript: %s", e)

            summary_path = write_summary(result.title, result.summary, session.started_at, session_dir)

            shutil.rmtree(work_dir, ignore_errors=True)
            update_progress(1.0, f"Done! Saved to: {session_dir}")

            return PipelineResult(
                success=True,
                title=result.title,
                summary=result.summary,
                session_dir=session_dir,
                audio_path=audio_path,
                transcript_path=transcript_path,
                summary_path=summary_path,
                artifact=artifact,
            )

        except NoAudioCaptured:
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.warning("No audio data captured")
            return PipelineResult(success=False, no_audio=True, error="No audio data captured")

        except SessionError as e:
            shutil.rmtree(work_dir, ignore_errors=True)
            return self._failure(str(e))

        except (ProviderError, OSError) as e:
            return self._failure(f"{stage} failed: {e}", artifact, audio_path)

    def _failure(
        self,
        error: str,
        artifact: Optional[AudioArtifact] = None,
        audio_path: Optional[Path] = None,
    ) -> PipelineResult:
        logger.error("%s", error)
        if audio_path is None and artifact is not None:
            audio_path = artifact.path
        if audio_path is not None:
            logger.info("Recording kept at %s", audio_path)
        return PipelineResult(
            success=False,
            audio_path=audio_path,
            artifact=artifact,
            error=error,
        )

    def run(
        self,
        wait_for_stop: Callable[[CaptureSession], None],
        progress_callback: Optional[Callable[[float, str], None]] = None,
        max_attempts: Optional[int] = None,
    ) -> PipelineResult:
        """
        Record and process sessions until one captures audio.

        ``wait_for_stop`` blocks while the user records (it receives the live
        session for progress display); Ctrl+C is treated as a stop request.
        Sessions that capture nothing are restarted after ``restart_delay``.

        Args:
            wait_for_stop: Blocks until the recording should stop.
            progress_callback: Optional callback for processing progress.
            max_attempts: Give up after this many empty sessions (None = never).
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                session = self.start()
            except (ToolUnavailable, UnsupportedPlatform, OSError) as e:
                return PipelineResult(success=False, error=f"capture setup failed: {e}")

            try:
                wait_for_stop(session)
            except KeyboardInterrupt:
                logger.info("Stop requested")

            result = self.stop_and_process(progress_callback)
            if not result.no_audio:
                return result
            if max_attempts is not None and attempts >= max_attempts:
                return result

            logger.info("Restarting recording in %.0f seconds", self.restart_delay)
            self._sleep(self.restart_delay)
