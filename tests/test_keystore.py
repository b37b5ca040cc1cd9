import os
import stat

import pytest

from rectr.src.keystore import KeyStore, KeyStoreError


def test_save_and_get_key(tmp_path):
    store = KeyStore(tmp_path)
    store.save_key("openai", "sk-abcdefghijklmnop")

    assert KeyStore(tmp_path).get_key("openai") == "sk-abcdefghijklmnop"
    assert b"sk-abcdefghijklmnop" not in store.data_file.read_bytes()


def test_files_are_private(tmp_path):
    store = KeyStore(tmp_path)
    store.save_key("openai", "sk-abcdefghijklmnop")

    for path in (store.key_file, store.data_file):
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_missing_store_reads_as_empty(tmp_path):
    store = KeyStore(tmp_path / "nowhere")
    assert store.get_key("openai") is None
    assert not store.key_file.exists()


def test_foreign_key_file_is_reported(tmp_path):
    KeyStore(tmp_path).save_key("openai", "sk-abcdefghijklmnop")
    (tmp_path / ".rectr.key").unlink()

    with pytest.raises(KeyStoreError):
        KeyStore(tmp_path).get_key("openai")
