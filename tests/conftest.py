import os
import time

import pytest

from rectr.src.tools import ToolLocator


class PipeCaptureProcess:
    """Stand-in for CaptureProcess backed by an os.pipe().

    ``feed`` plays the recorder writing PCM; ``terminate`` closes the write
    end the way killing the recorder would, so the reader sees EOF after
    draining what was already written.
    """

    def __init__(self, tool):
        self.tool = tool
        self.started = False
        self.terminate_calls = 0
        self.waited = False
        self._write_fd = None

    def start(self):
        read_fd, self._write_fd = os.pipe()
        self.started = True
        return os.fdopen(read_fd, "rb", buffering=0)

    def feed(self, data: bytes):
        view = memoryview(data)
        while view:
            written = os.write(self._write_fd, view)
            view = view[written:]

    def is_running(self):
        return self._write_fd is not None

    def terminate(self):
        self.terminate_calls += 1
        if self._write_fd is not None:
            os.close(self._write_fd)
            self._write_fd = None

    def wait(self, timeout=None):
        self.waited = True
        return -9


@pytest.fixture
def pipe_processes():
    """Process factory for CaptureSession; created fakes are collected in ``.created``."""

    class Factory:
        def __init__(self):
            self.created = []

        def __call__(self, tool):
            process = PipeCaptureProcess(tool)
            self.created.append(process)
            return process

        @property
        def last(self):
            return self.created[-1]

    return Factory()


def make_locator(available, platform="linux"):
    available = set(available)
    return ToolLocator(
        platform=platform,
        which=lambda name: f"/usr/bin/{name}" if name in available else None,
        path_exists=lambda path: False,
    )


@pytest.fixture
def capture_only_locator():
    """Locator with a capture tool but neither ffmpeg nor sox for compression."""
    return make_locator({"rec"})


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
