import logging

import pytest

from rectr.src import config
from rectr.src.config import (
    ConfigError,
    get_api_key,
    has_valid_token,
    load_config,
    load_settings,
    save_api_key,
    save_config,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _no_env_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_config(tmp_path)
    assert cfg.get("Directories", "save_location") == config.DEFAULT_SAVE_LOCATION
    assert cfg.get("Language", "language") == "auto"
    assert cfg.get("Model", "model") == "whisper-1"


def test_blank_values_fall_back_to_defaults(tmp_path):
    (tmp_path / "rectr.conf").write_text("[Language]\nlanguage =\n\n[Model]\nmodel = whisper-2\n")
    cfg = load_config(tmp_path)
    assert cfg.get("Language", "language") == "auto"
    assert cfg.get("Model", "model") == "whisper-2"


def test_save_and_reload_roundtrip(tmp_path):
    conf_dir = tmp_path / "conf"
    cfg = load_config(conf_dir)
    cfg.set("Language", "language", "ru")
    save_config(cfg, conf_dir)

    reloaded = load_config(conf_dir)
    assert reloaded.get("Language", "language") == "ru"


@pytest.mark.parametrize(
    "key, valid",
    [(None, False), ("", False), ("sk-123456", False), ("sk-1234567", False), ("sk-12345678", True)],
)
def test_token_validity(key, valid):
    assert has_valid_token(key) is valid


def test_short_key_is_not_saved(tmp_path):
    with pytest.raises(ConfigError):
        save_api_key("short", tmp_path)
    assert get_api_key(tmp_path) is None


def test_stored_key_wins_over_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-environment")
    assert get_api_key(tmp_path) == "sk-from-environment"

    save_api_key("sk-stored-0123456789", tmp_path)
    assert get_api_key(tmp_path) == "sk-stored-0123456789"


def test_load_settings_requires_key(tmp_path):
    with pytest.raises(ConfigError, match="API key"):
        load_settings(tmp_path)


def test_first_load_writes_default_config(tmp_path, monkeypatch):
    conf_dir = tmp_path / "conf"
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-environment")

    settings = load_settings(conf_dir)

    assert settings.language == "auto"
    assert settings.effective_language is None
    written = (conf_dir / "rectr.conf").read_text(encoding="utf-8")
    assert "[Directories]" in written
    assert "language = auto" in written


def test_load_settings_expands_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "rectr.conf").write_text(
        "[Directories]\nsave_location = ~/meetings\nlogs_dir = ~/logs\n\n[Language]\nlanguage = de\n"
    )
    save_api_key("sk-stored-0123456789", tmp_path)

    settings = load_settings(tmp_path)

    assert settings.api_key == "sk-stored-0123456789"
    assert settings.save_location == str(tmp_path / "meetings")
    assert settings.logs_dir == str(tmp_path / "logs")
    assert settings.effective_language == "de"
    assert settings.model == "whisper-1"


def test_setup_logging_writes_log_file(tmp_path):
    logger = setup_logging(str(tmp_path / "logs"), level=logging.DEBUG)
    try:
        logging.getLogger("rectr.src.session").info("session started")
        for handler in logger.handlers:
            handler.flush()
        assert "session started" in (tmp_path / "logs" / "rectr.log").read_text(encoding="utf-8")

        # reconfiguring replaces instead of stacking handlers
        setup_logging()
        assert len(logger.handlers) == 1
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
