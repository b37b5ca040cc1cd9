"""
Configuration manager for rectr.

Handles reading and writing rectr.conf, default values, the stored API
credential and logging setup.
"""

import configparser
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .keystore import KeyStore

CONF_DIR = Path(os.environ.get("RECTR_CONF_DIR", Path.home() / ".rectr"))
CONF_FILE_NAME = "rectr.conf"
LOG_FILE_NAME = "rectr.log"

DEFAULT_SAVE_LOCATION = str(Path.home() / "Downloads" / "rectr")
DEFAULT_LANGUAGE = "auto"
DEFAULT_MODEL = "whisper-1"

API_KEY_VENDOR = "openai"
API_KEY_ENV = "OPENAI_API_KEY"
MIN_API_KEY_LENGTH = 10

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DEFAULTS = {
    "Directories": {"save_location": DEFAULT_SAVE_LOCATION, "logs_dir": ""},
    "Language": {"language": DEFAULT_LANGUAGE},
    "Model": {"model": DEFAULT_MODEL},
}


class ConfigError(Exception):
    """Exception raised for missing or invalid settings."""
    pass


@dataclass
class Settings:
    """Validated values the recorder needs at runtime."""
    api_key: str
    save_location: str
    language: str
    model: str
    logs_dir: Optional[str] = None

    @property
    def effective_language(self) -> Optional[str]:
        return None if self.language == "auto" else self.language


def get_conf_file(conf_dir: Path = CONF_DIR) -> Path:
    return Path(conf_dir) / CONF_FILE_NAME


def ensure_conf_dir_and_file(conf_dir: Path = CONF_DIR):
    """Ensure the conf directory and rectr.conf exist, creating them if needed."""
    conf_dir = Path(conf_dir)
    conf_file = get_conf_file(conf_dir)
    created_dir = False
    created_file = False

    if not conf_dir.exists():
        conf_dir.mkdir(parents=True, exist_ok=True)
        created_dir = True

    if not conf_file.exists():
        conf_file.touch()
        created_file = True

    return created_dir, created_file


def apply_defaults(config: configparser.ConfigParser) -> configparser.ConfigParser:
    """Fill in every missing or blank setting with its default."""
    for section, values in DEFAULTS.items():
        if not config.has_section(section):
            config.add_section(section)
        for key, default in values.items():
            if not config.get(section, key, fallback=""):
                config.set(section, key, default)
    return config


def load_config(conf_dir: Path = CONF_DIR) -> configparser.ConfigParser:
    """Load rectr.conf with defaults applied for anything missing."""
    config = configparser.ConfigParser()
    conf_file = get_conf_file(conf_dir)
    if conf_file.exists():
        config.read(str(conf_file), encoding="utf-8")
    return apply_defaults(config)


def save_config(config: configparser.ConfigParser, conf_dir: Path = CONF_DIR):
    """Save rectr.conf."""
    ensure_conf_dir_and_file(conf_dir)
    with open(get_conf_file(conf_dir), "w", encoding="utf-8") as f:
        config.write(f)


def has_valid_token(api_key: Optional[str]) -> bool:
    return bool(api_key) and len(api_key) > MIN_API_KEY_LENGTH


def get_api_key(conf_dir: Path = CONF_DIR) -> Optional[str]:
    """Return the stored API key, falling back to the environment."""
    stored = KeyStore(conf_dir).get_key(API_KEY_VENDOR)
    return stored or os.environ.get(API_KEY_ENV)


def save_api_key(api_key: str, conf_dir: Path = CONF_DIR):
    if not has_valid_token(api_key):
        raise ConfigError("API key looks invalid (too short)")
    KeyStore(conf_dir).save_key(API_KEY_VENDOR, api_key)


def load_settings(conf_dir: Path = CONF_DIR) -> Settings:
    """
    Read and validate the settings needed to record and process a session.

    Raises:
        ConfigError: If no usable API key is configured.
    """
    _, created_file = ensure_conf_dir_and_file(conf_dir)
    config = load_config(conf_dir)
    if created_file:
        # first run: write the defaults out so they can be edited
        save_config(config, conf_dir)

    api_key = get_api_key(conf_dir)
    if not has_valid_token(api_key):
        raise ConfigError(
            f"OpenAI API key is required. Store one with save_api_key() or set {API_KEY_ENV}."
        )

    logs_dir = config.get("Directories", "logs_dir", fallback="") or None
    return Settings(
        api_key=api_key,
        save_location=os.path.expanduser(config.get("Directories", "save_location")),
        language=config.get("Language", "language"),
        model=config.get("Model", "model"),
        logs_dir=os.path.expanduser(logs_dir) if logs_dir else None,
    )


def setup_logging(logs_dir: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Configure the ``rectr`` logger hierarchy.

    Logs go to stderr and, when ``logs_dir`` is set, to ``rectr.log`` there.
    Calling it again replaces the handlers installed by a previous call.
    """
    root = logging.getLogger("rectr")
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if logs_dir:
        os.makedirs(logs_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(logs_dir, LOG_FILE_NAME), encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
