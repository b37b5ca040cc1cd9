"""
External tool discovery and installation.

Capture and compression utilities are described as data (ordered ``ToolSpec``
lists per platform) and resolved against an availability predicate, so the
first installed tool wins.
"""

import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100
CHANNELS = 1
BITS_PER_SAMPLE = 16

# Raw signed 16-bit little-endian mono PCM on stdout
_SOX_RAW_OUTPUT = (
    "-t", "raw",
    "-b", str(BITS_PER_SAMPLE),
    "-e", "signed-integer",
    "-L",
    "-r", str(SAMPLE_RATE),
    "-c", str(CHANNELS),
    "-",
)
_FFMPEG_RAW_OUTPUT = (
    "-ar", str(SAMPLE_RATE),
    "-ac", str(CHANNELS),
    "-f", "s16le",
    "-",
)

HOMEBREW_PATHS = (
    "/opt/homebrew/bin/brew",  # Apple Silicon
    "/usr/local/bin/brew",     # Intel
)


class ToolUnavailable(Exception):
    """Exception raised when no suitable external tool is installed."""
    pass


class UnsupportedPlatform(Exception):
    """Exception raised when tools cannot be installed on this platform."""
    pass


@dataclass(frozen=True)
class ToolSpec:
    """An external command and its argument template."""
    name: str
    args: Tuple[str, ...]

    def command(self, executable: Optional[str] = None, **values: str) -> List[str]:
        """Build the argv, substituting ``{placeholders}`` in the template."""
        return [executable or self.name] + [arg.format(**values) for arg in self.args]


@dataclass(frozen=True)
class ResolvedTool:
    """A tool spec bound to the executable found on this machine."""
    spec: ToolSpec
    executable: str

    @property
    def name(self) -> str:
        return self.spec.name

    def command(self, **values: str) -> List[str]:
        return self.spec.command(self.executable, **values)


SOX_CAPTURE = ToolSpec("sox", ("-d",) + _SOX_RAW_OUTPUT)
REC_CAPTURE = ToolSpec("rec", _SOX_RAW_OUTPUT)

CAPTURE_TOOLS: Dict[str, Tuple[ToolSpec, ...]] = {
    "darwin": (
        SOX_CAPTURE,
        REC_CAPTURE,
        ToolSpec("ffmpeg", ("-loglevel", "error", "-f", "avfoundation", "-i", ":0") + _FFMPEG_RAW_OUTPUT),
    ),
    "linux": (
        SOX_CAPTURE,
        REC_CAPTURE,
        ToolSpec("ffmpeg", ("-loglevel", "error", "-f", "pulse", "-i", "default") + _FFMPEG_RAW_OUTPUT),
    ),
    "windows": (
        SOX_CAPTURE,
        REC_CAPTURE,
        ToolSpec("ffmpeg", ("-loglevel", "error", "-f", "dshow", "-i", "audio=default") + _FFMPEG_RAW_OUTPUT),
    ),
}

# Generic recorders for any other platform
DEFAULT_CAPTURE_TOOLS = (SOX_CAPTURE, REC_CAPTURE)

COMPRESSION_BITRATE_KBPS = 64
COMPRESSION_SAMPLE_RATE = 16000

COMPRESS_TOOLS: Tuple[ToolSpec, ...] = (
    ToolSpec("ffmpeg", (
        "-loglevel", "error",
        "-i", "{input}",
        "-codec:a", "libmp3lame",
        "-b:a", f"{COMPRESSION_BITRATE_KBPS}k",
        "-ac", "1",
        "-ar", str(COMPRESSION_SAMPLE_RATE),
        "-y", "{output}",
    )),
    ToolSpec("sox", (
        "{input}",
        "-C", str(COMPRESSION_BITRATE_KBPS),
        "-r", str(COMPRESSION_SAMPLE_RATE),
        "-c", "1",
        "{output}",
    )),
)

# Packages tried in order by the installer
INSTALL_PACKAGES = ("sox", "ffmpeg")

# Linux package managers: (detect binary, optional refresh command, install prefix)
LINUX_PACKAGE_MANAGERS: Tuple[Tuple[str, Optional[Tuple[str, ...]], Tuple[str, ...]], ...] = (
    ("apt-get", ("sudo", "apt-get", "update"), ("sudo", "apt-get", "install", "-y")),
    ("yum", None, ("sudo", "yum", "install", "-y")),
    ("dnf", None, ("sudo", "dnf", "install", "-y")),
)


def current_platform() -> str:
    """Return the normalized platform key (darwin, linux, windows, ...)."""
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform in ("win32", "cygwin"):
        return "windows"
    return sys.platform


class ToolLocator:
    """Resolve capture/compression tools and install missing ones."""

    def __init__(
        self,
        platform: Optional[str] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        path_exists: Callable[[str], bool] = os.path.exists,
    ):
        """
        Initialize the locator.

        Args:
            platform: Platform key; defaults to the running platform.
            which: Availability predicate returning an executable path or None.
            path_exists: Filesystem check used to find Homebrew.
        """
        self.platform = platform or current_platform()
        self._which = which
        self._path_exists = path_exists

    @property
    def capture_tools(self) -> Tuple[ToolSpec, ...]:
        return CAPTURE_TOOLS.get(self.platform, DEFAULT_CAPTURE_TOOLS)

    def find(self, specs: Sequence[ToolSpec]) -> Optional[ResolvedTool]:
        """Return the first spec whose executable is available, or None."""
        for spec in specs:
            executable = self._which(spec.name)
            if executable:
                return ResolvedTool(spec, executable)
        return None

    def has_installer(self) -> bool:
        if self.platform == "darwin":
            return True
        if self.platform == "linux":
            return self._linux_package_manager() is not None
        return False

    def acquire(self) -> ResolvedTool:
        """
        Select the preferred installed capture tool.

        Raises:
            ToolUnavailable: No tool installed, but one can be installed.
            UnsupportedPlatform: No tool installed and no installer exists.
        """
        tool = self.find(self.capture_tools)
        if tool is not None:
            if tool.spec is not self.capture_tools[0]:
                logger.warning("%s not found, using %s for capture", self.capture_tools[0].name, tool.name)
            return tool

        names = ", ".join(spec.name for spec in self.capture_tools)
        if not self.has_installer():
            raise UnsupportedPlatform(
                f"No capture tool found ({names}) and no installer is supported on {self.platform}"
            )
        raise ToolUnavailable(f"No capture tool found ({names})")

    def brew_path(self) -> Optional[str]:
        for path in HOMEBREW_PATHS:
            if self._path_exists(path):
                return path
        return self._which("brew")

    def _linux_package_manager(self):
        for manager in LINUX_PACKAGE_MANAGERS:
            if self._which(manager[0]):
                return manager
        return None

    def install(self, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> str:
        """
        Install a capture tool through the platform package manager.

        Blocks until the package manager exits. Tries each package in
        INSTALL_PACKAGES and returns the name of the one installed.

        Raises:
            ToolUnavailable: Homebrew is missing on macOS, or every install failed.
            UnsupportedPlatform: No supported package manager for this platform.
        """
        if self.platform == "darwin":
            brew = self.brew_path()
            if not brew:
                raise ToolUnavailable(
                    "Homebrew is required but not installed. Install it first: https://brew.sh"
                )
            prefix: Tuple[str, ...] = (brew, "install")
        elif self.platform == "linux":
            manager = self._linux_package_manager()
            if manager is None:
                raise UnsupportedPlatform("Unsupported Linux distribution: no apt-get, yum or dnf found")
            _, refresh, prefix = manager
            if refresh:
                try:
                    runner(list(refresh), check=True)
                except (OSError, subprocess.CalledProcessError) as e:
                    logger.warning("Package index refresh failed: %s", e)
        else:
            raise UnsupportedPlatform(f"Unsupported operating system: {self.platform}")

        last_error: Optional[Exception] = None
        for package in INSTALL_PACKAGES:
            logger.info("Installing %s...", package)
            try:
                runner(list(prefix) + [package], check=True)
                return package
            except (OSError, subprocess.CalledProcessError) as e:
                logger.warning("Failed to install %s: %s", package, e)
                last_error = e

        raise ToolUnavailable(f"Could not install a capture tool: {last_error}")


def ensure_capture_tool(
    locator: ToolLocator,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> ResolvedTool:
    """Return an installed capture tool, installing one first if needed."""
    try:
        return locator.acquire()
    except ToolUnavailable:
        logger.info("No capture tool installed, attempting installation")
        locator.install(runner)
        return locator.acquire()
