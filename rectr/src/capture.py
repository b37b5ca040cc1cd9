"""
Live audio capture from an external recorder process.

The recorder writes raw PCM to its stdout; a background worker drains that
pipe into a CaptureBuffer until the stream ends.
"""

import logging
import subprocess
import threading
from typing import BinaryIO, Callable, Optional

from .tools import ResolvedTool

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


class CaptureProcess:
    """Owns one external capture process and its stdout stream."""

    def __init__(self, tool: ResolvedTool, popen: Callable[..., subprocess.Popen] = subprocess.Popen):
        self.tool = tool
        self._popen = popen
        self._process: Optional[subprocess.Popen] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def start(self) -> BinaryIO:
        """
        Launch the capture tool and return its raw PCM output stream.

        Raises:
            RuntimeError: If this adapter already started a process.
            OSError: If the process could not be spawned.
        """
        if self._process is not None:
            raise RuntimeError("Capture process already started")

        cmd = self.tool.command()
        logger.debug("Starting capture: %s", " ".join(cmd))
        self._process = self._popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            bufsize=0,
        )
        return self._process.stdout

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def terminate(self) -> None:
        """Kill the process if it is still running. Safe to call repeatedly."""
        if not self.is_running():
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            # exited between poll() and kill()
            pass

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Reap the process and return its exit code (None if never started)."""
        if self._process is None:
            return None
        return self._process.wait(timeout=timeout)


class CaptureBuffer:
    """
    Append-only PCM buffer shared by the capture worker and the controller.

    Bytes are stored in whole 16-bit samples: an odd trailing byte is held
    back until its partner arrives, so ``len(buffer)`` is always even. Length
    reads take no lock; appends and snapshots hold a lock only for the copy.
    """

    def __init__(self):
        self._data = bytearray()
        self._pending = b""
        self._lock = threading.Lock()
        self._sealed = False

    def append(self, chunk: bytes) -> None:
        with self._lock:
            if self._sealed:
                raise BufferError("Capture buffer is sealed")
            data = self._pending + chunk
            usable = len(data) - (len(data) % 2)
            self._data += data[:usable]
            self._pending = data[usable:]

    def seal(self) -> None:
        """Reject further appends; a held-back odd byte is dropped."""
        with self._lock:
            self._sealed = True
            if self._pending:
                logger.debug("Dropping trailing unpaired byte")
            self._pending = b""

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def size(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def snapshot(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def view(self) -> memoryview:
        """Zero-copy view of the sealed contents."""
        if not self._sealed:
            raise BufferError("Capture buffer is still being written")
        return memoryview(self._data)


class CaptureWorker:
    """
    Background reader moving the capture stream into a buffer.

    The loop only ends on end-of-stream or a read error: stopping is done by
    killing the process, after which whatever is left in the pipe is drained.
    On exit the process is reaped, the buffer sealed and ``done`` set once.
    """

    def __init__(
        self,
        process: CaptureProcess,
        stream: BinaryIO,
        buffer: CaptureBuffer,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.process = process
        self.stream = stream
        self.buffer = buffer
        self.chunk_size = chunk_size
        self.done = threading.Event()
        self.error: Optional[BaseException] = None
        self._stop_requested = threading.Event()
        self._abandoned = threading.Event()
        self._thread = threading.Thread(target=self._run, name="capture-worker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Kill the capture process and block until the worker has finished.

        If the stream is still open ``timeout`` seconds after the kill (a
        child of the recorder kept the pipe), the stream is closed and the
        buffer sealed with what it holds, then ``done`` is awaited once more.

        Returns:
            True once the worker has exited, False if it is still blocked.
        """
        self._stop_requested.set()
        self.process.terminate()
        if self.done.wait(timeout):
            return True

        logger.warning("Capture stream still open %.1fs after kill, closing it", timeout)
        self._abandon()
        return self.done.wait(timeout)

    def _abandon(self) -> None:
        self._abandoned.set()
        try:
            self.stream.close()
        except (OSError, ValueError) as e:
            logger.debug("Closing capture stream failed: %s", e)
        self.buffer.seal()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def _run(self) -> None:
        try:
            self._read_loop()
        finally:
            try:
                self.stream.close()
            except OSError as e:
                logger.debug("Closing capture stream failed: %s", e)
            self.process.terminate()
            code = self.process.wait()
            logger.debug("Capture process exited with code %s", code)
            self.buffer.seal()
            self.done.set()

    def _read_loop(self) -> None:
        while True:
            try:
                chunk = self.stream.read(self.chunk_size)
            except (OSError, ValueError) as e:
                if self.abandoned:
                    return
                self.error = e
                logger.error("Error reading audio data: %s", e)
                return
            if not chunk:
                if not self.stop_requested:
                    logger.warning("Capture stream ended before stop was requested")
                return
            try:
                self.buffer.append(chunk)
            except BufferError:
                # sealed by stop() after the stream was abandoned
                logger.debug("Dropping %d bytes read after capture was abandoned", len(chunk))
                return
