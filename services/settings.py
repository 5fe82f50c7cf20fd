"""Persistent settings and encrypted secrets for Docket."""

from __future__ import annotations

import base64
import json
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


APP_DIR_NAME = "docket"
PASSPHRASE_ENV = "DOCKET_SECRET_KEY"

DEFAULTS: Dict[str, Any] = {
    "session_timeout_minutes": 10,
    "log_level": "INFO",
    "log_file": None,
    "database_path": None,
    "cases_page_limit_max": 100,
}

_MISSING = object()


def _default_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    if base:
        return Path(base) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


@dataclass
class SettingsPaths:
    config_dir: Path
    settings_file: Path
    secrets_file: Path
    master_key_file: Path

    @classmethod
    def under(cls, config_dir: Path) -> "SettingsPaths":
        return cls(
            config_dir=config_dir,
            settings_file=config_dir / "settings.json",
            secrets_file=config_dir / "secrets.enc",
            master_key_file=config_dir / "master.key",
        )


class SettingsManager:
    """Reads and writes ``settings.json`` and the Fernet-encrypted secrets store."""

    SETTINGS_SCHEMA_VERSION = 1
    KDF_ITERATIONS = 390_000

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.paths = SettingsPaths.under(Path(config_dir) if config_dir else _default_config_dir())
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)

        self._settings: Dict[str, Any] = {}
        self._load_settings()
        self.passphrase: str = os.environ.get(PASSPHRASE_ENV) or self._load_or_create_master_key()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Plain settings
    # ------------------------------------------------------------------
    def get(self, key: str, default: Any = _MISSING) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is _MISSING:
            return DEFAULTS.get(key)
        return default

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self._save_settings()

    def delete(self, key: str) -> None:
        if self._settings.pop(key, None) is not None:
            self._save_settings()

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------
    def get_secret(self, key: str, default: Any = None) -> Any:
        return self._load_secrets().get(key, default)

    def set_secret(self, key: str, value: Any) -> None:
        payload = self._load_secrets()
        payload[key] = value
        self._store_secrets(payload)

    def get_or_create_secret(self, key: str, nbytes: int = 32) -> str:
        """Return the stored secret ``key``, generating a random one on first use."""
        value = self.get_secret(key)
        if not value:
            value = secrets.token_urlsafe(nbytes)
            self.set_secret(key, value)
        return value

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_settings(self) -> None:
        try:
            with self.paths.settings_file.open("r", encoding="utf-8") as fh:
                self._settings = json.load(fh)
        except FileNotFoundError:
            self._settings = {}
        except json.JSONDecodeError:
            raise RuntimeError(f"{self.paths.settings_file} is corrupted; please repair or delete it.")

    def _save_settings(self) -> None:
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        with self.paths.settings_file.open("w", encoding="utf-8") as fh:
            json.dump(self._settings, fh, indent=2, sort_keys=True)

    def _ensure_schema(self) -> None:
        if int(self._settings.get("schema_version", 0)) >= self.SETTINGS_SCHEMA_VERSION:
            return
        self._settings["schema_version"] = self.SETTINGS_SCHEMA_VERSION
        self._settings.setdefault("secret_iterations", self.KDF_ITERATIONS)
        self._settings.setdefault(
            "secret_salt", base64.urlsafe_b64encode(os.urandom(16)).decode("utf-8")
        )
        self._save_settings()

    def _load_or_create_master_key(self) -> str:
        key_path = self.paths.master_key_file
        if key_path.exists():
            key = key_path.read_text(encoding="utf-8").strip()
            if key:
                return key

        key = secrets.token_urlsafe(32)
        key_path.write_text(key, encoding="utf-8")
        key_path.chmod(0o600)
        return key

    def _fernet(self) -> Fernet:
        salt_b64 = self._settings.get("secret_salt")
        if not salt_b64:
            raise RuntimeError("Settings missing secret salt; try reinitialising configuration.")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=base64.urlsafe_b64decode(salt_b64),
            iterations=int(self._settings.get("secret_iterations", self.KDF_ITERATIONS)),
        )
        key = kdf.derive(self.passphrase.encode("utf-8"))
        return Fernet(base64.urlsafe_b64encode(key))

    def _load_secrets(self) -> Dict[str, Any]:
        if not self.paths.secrets_file.exists():
            return {}
        try:
            decrypted = self._fernet().decrypt(self.paths.secrets_file.read_bytes())
        except InvalidToken as exc:
            raise RuntimeError(
                f"Unable to decrypt secrets store. Is {PASSPHRASE_ENV} correct?"
            ) from exc
        try:
            return json.loads(decrypted.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise RuntimeError("Secrets store is corrupted.") from exc

    def _store_secrets(self, payload: Dict[str, Any]) -> None:
        token = self._fernet().encrypt(json.dumps(payload).encode("utf-8"))
        self.paths.secrets_file.write_bytes(token)


settings_manager = SettingsManager()
