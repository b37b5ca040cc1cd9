from __future__ import annotations

import json
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

KEY_FILE_NAME = ".rectr.key"
DATA_FILE_NAME = ".rectr_keys.dat"


class KeyStoreError(Exception):
    """Raised when the encrypted credential store cannot be read."""
    pass


class KeyStore:
    """Fernet-encrypted API key storage inside the configuration directory."""

    def __init__(self, conf_dir: str | Path):
        self.conf_dir = Path(conf_dir)
        self.key_file = self.conf_dir / KEY_FILE_NAME
        self.data_file = self.conf_dir / DATA_FILE_NAME
        self._fernet: Fernet | None = None

    @property
    def fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        if self.key_file.exists():
            return self.key_file.read_bytes().strip()
        self.conf_dir.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        self.key_file.write_bytes(key)
        os.chmod(self.key_file, 0o600)
        return key

    def _load_store(self) -> dict:
        if not self.data_file.exists():
            return {}
        encrypted = self.data_file.read_bytes()
        try:
            decrypted = self.fernet.decrypt(encrypted)
        except InvalidToken as e:
            raise KeyStoreError(f"Cannot decrypt {self.data_file}: key file does not match") from e
        return json.loads(decrypted.decode("utf-8"))

    def _save_store(self, data: dict):
        raw = json.dumps(data).encode("utf-8")
        self.data_file.write_bytes(self.fernet.encrypt(raw))
        os.chmod(self.data_file, 0o600)

    def save_key(self, vendor: str, api_key: str):
        data = self._load_store()
        data[vendor] = api_key
        self._save_store(data)

    def get_key(self, vendor: str) -> str | None:
        return self._load_store().get(vendor)

