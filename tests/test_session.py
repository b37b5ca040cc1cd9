import sys
import time
import wave

import pytest

from conftest import make_locator, wait_until
from rectr.src.capture import CaptureProcess
from rectr.src.encoder import ArtifactFormat, NoAudioCaptured
from rectr.src.session import (
    CaptureSession,
    IOFailure,
    SessionState,
    SessionStateError,
)
from rectr.src.tools import ResolvedTool, ToolLocator, ToolSpec, UnsupportedPlatform


@pytest.fixture
def session(capture_only_locator, pipe_processes):
    return CaptureSession(locator=capture_only_locator, process_factory=pipe_processes)


def test_new_session_is_idle(session):
    assert session.state is SessionState.IDLE
    assert session.elapsed == 0.0
    assert session.buffer_size == 0
    with pytest.raises(SessionStateError):
        session.done


def test_immediate_stop_reports_no_audio(session, tmp_path):
    session.start_recording()
    session.stop_recording()

    with pytest.raises(NoAudioCaptured):
        session.save_and_encode(tmp_path / "out")

    assert session.state is SessionState.NO_AUDIO
    assert session.artifact is None
    assert not (tmp_path / "out").exists()


def test_one_second_recording_is_saved_as_wav(session, pipe_processes, tmp_path):
    session.start_recording()
    assert session.is_recording
    assert session.tool.name == "rec"

    pipe_processes.last.feed(b"\x00\x01" * 44100)
    session.stop_recording()

    assert session.state is SessionState.STOPPING
    assert session.done.is_set()
    assert session.buffer_size == 88200

    artifact = session.save_and_encode(tmp_path)

    assert session.state is SessionState.DONE
    assert session.artifact == artifact
    # no ffmpeg or sox on this locator: the WAV is kept
    assert artifact.format is ArtifactFormat.RAW_CONTAINER
    assert artifact.path == tmp_path / "recording.wav"
    with wave.open(str(artifact.path), "rb") as wav_file:
        assert wav_file.getnframes() == 44100
        assert wav_file.getframerate() == 44100
        assert wav_file.getnchannels() == 1


def test_stop_kills_the_capture_process(session, pipe_processes):
    session.start_recording()
    session.stop_recording()

    process = pipe_processes.last
    assert process.terminate_calls >= 1
    assert process.waited
    assert not process.is_running()


def test_buffer_rejects_appends_after_stop(session):
    session.start_recording()
    session.stop_recording()
    with pytest.raises(BufferError):
        session.buffer.append(b"\x00\x00")


def test_start_twice_is_rejected(session, pipe_processes):
    session.start_recording()
    with pytest.raises(SessionStateError):
        session.start_recording()
    assert len(pipe_processes.created) == 1
    session.stop_recording()


def test_operations_out_of_order(session, tmp_path):
    with pytest.raises(SessionStateError):
        session.stop_recording()
    with pytest.raises(SessionStateError):
        session.save_and_encode(tmp_path)


def test_missing_tools_on_unsupported_platform(pipe_processes):
    session = CaptureSession(locator=make_locator(set(), platform="windows"),
                             process_factory=pipe_processes)

    with pytest.raises(UnsupportedPlatform):
        session.start_recording()

    assert session.state is SessionState.FAILED
    assert session.error.startswith("capture setup failed")
    assert pipe_processes.created == []


def test_spawn_failure_marks_session_failed(capture_only_locator):
    def broken_factory(tool):
        raise FileNotFoundError("rec")

    session = CaptureSession(locator=capture_only_locator, process_factory=broken_factory)
    with pytest.raises(FileNotFoundError):
        session.start_recording()
    assert session.state is SessionState.FAILED


def test_unwritable_output_dir_fails_with_io_error(session, pipe_processes, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    session.start_recording()
    pipe_processes.last.feed(b"\x01\x00" * 100)
    session.stop_recording()

    with pytest.raises(IOFailure) as excinfo:
        session.save_and_encode(blocker)

    assert excinfo.value.stage == "save audio"
    assert session.state is SessionState.FAILED
    assert session.error.startswith("save audio failed")


def test_progress_is_observable_while_recording(session, pipe_processes):
    session.start_recording()
    assert session.started_at is not None

    pipe_processes.last.feed(b"\x00" * 8192)
    assert wait_until(lambda: session.buffer_size == 8192)
    assert session.elapsed > 0

    session.stop_recording()
    frozen = session.elapsed
    assert session.elapsed == frozen


# Real recorder processes: a Python child writing PCM to stdout

STREAMING_RECORDER = (
    "import sys, time\n"
    "while True:\n"
    "    sys.stdout.buffer.write(b'\\x01\\x00' * 2048)\n"
    "    sys.stdout.buffer.flush()\n"
    "    time.sleep(0.01)\n"
)

SHORT_RECORDER = "import sys\nsys.stdout.buffer.write(b'\\x02\\x00' * 1000)\n"

# Hands its stdout to a grandchild that outlives the kill
FORKING_RECORDER = (
    "import subprocess, sys, time\n"
    "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(5)'])\n"
    "sys.stdout.buffer.write(b'\\x03\\x00' * 64)\n"
    "sys.stdout.buffer.flush()\n"
    "time.sleep(5)\n"
)


class _PythonRecorderLocator(ToolLocator):
    """Resolves the capture tool to a Python script; no compression tools."""

    def __init__(self, code):
        super().__init__(platform="linux", which=lambda name: None, path_exists=lambda path: False)
        self.tool = ResolvedTool(ToolSpec("python", ("-c", code)), sys.executable)

    def acquire(self):
        return self.tool


def _real_session(code, **kwargs):
    return CaptureSession(locator=_PythonRecorderLocator(code), process_factory=CaptureProcess, **kwargs)


def test_stop_kills_real_recorder_and_drains_pipe(tmp_path):
    session = _real_session(STREAMING_RECORDER)
    session.start_recording()
    assert wait_until(lambda: session.buffer_size >= 4096, timeout=10)

    session.stop_recording()

    assert session.done.is_set()
    assert not session._process.is_running()
    assert session._process.wait(timeout=1) is not None
    assert session.buffer.sealed
    assert session.buffer_size > 0
    assert session.buffer_size % 2 == 0

    artifact = session.save_and_encode(tmp_path)
    assert session.state is SessionState.DONE
    assert artifact.size_bytes > session.buffer_size


def test_real_recorder_exiting_before_stop(tmp_path):
    session = _real_session(SHORT_RECORDER)
    session.start_recording()
    assert session.done.wait(10)

    session.stop_recording()

    assert session.buffer.snapshot() == b"\x02\x00" * 1000
    assert session._process.wait(timeout=1) == 0
    artifact = session.save_and_encode(tmp_path)
    assert artifact.path.name == "recording.wav"


def test_stop_is_bounded_when_child_keeps_pipe_open(tmp_path, caplog):
    session = _real_session(FORKING_RECORDER, stop_timeout=0.5)
    session.start_recording()
    assert wait_until(lambda: session.buffer_size == 128, timeout=10)

    started = time.monotonic()
    with caplog.at_level("WARNING"):
        session.stop_recording()

    assert time.monotonic() - started < 4
    assert "still open" in caplog.text
    assert session.buffer.sealed
    assert session.buffer.snapshot() == b"\x03\x00" * 64

    artifact = session.save_and_encode(tmp_path)
    assert session.state is SessionState.DONE
    with wave.open(str(artifact.path), "rb") as wav_file:
        assert wav_file.getnframes() == 64
