"""Secure credential storage helpers for Chaptervoice CLI.

Responsibilities:
- Persist provider API keys in an OS-backed secure credential store.
- Provide deterministic read/write/delete operations per provider.
- Avoid logging or exposing secret values in diagnostics.

Key types:
- `CredentialStore`: interface for provider credential persistence.
- `KeyringCredentialStore`: keyring-backed secure credential storage.
"""

from __future__ import annotations

from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError, PasswordDeleteError


_DEFAULT_SERVICE_NAME = "chaptervoice"
_ACCOUNT_NAMES = {
    "openai": "openai_api_key",
    "elevenlabs": "elevenlabs_api_key",
}


def account_name_for(provider_id: str) -> str:
    """Return the keyring account name for a provider identifier."""

    try:
        return _ACCOUNT_NAMES[provider_id]
    except KeyError as exc:
        supported = ", ".join(sorted(_ACCOUNT_NAMES))
        raise ValueError(
            f"Unsupported credential provider `{provider_id}`; supported: {supported}."
        ) from exc


class CredentialStore:
    """Interface for secure provider credential operations."""

    def is_available(self) -> bool:
        """Return whether secure credential operations are available."""

        raise NotImplementedError

    def get_api_key(self) -> str | None:
        """Load the stored API key from secure storage, when available."""

        raise NotImplementedError

    def set_api_key(self, api_key: str) -> None:
        """Persist an API key in secure storage."""

        raise NotImplementedError

    def clear_api_key(self) -> bool:
        """Delete a stored API key and return whether one existed."""

        raise NotImplementedError


@dataclass(slots=True)
class KeyringCredentialStore(CredentialStore):
    """Secure credential store backed by the `keyring` package."""

    service_name: str = _DEFAULT_SERVICE_NAME
    account_name: str = _ACCOUNT_NAMES["openai"]

    def _load_keyring_module(self):
        """Return the `keyring` module used for credential operations."""

        return keyring

    def is_available(self) -> bool:
        """Return `True` when a usable keyring backend is configured."""

        keyring_module = self._load_keyring_module()
        try:
            backend = keyring_module.get_keyring()
        except KeyringError:
            return False
        return type(backend).__module__ != "keyring.backends.fail"

    def get_api_key(self) -> str | None:
        """Get a normalized API key from keyring, returning `None` when missing."""

        if not self.is_available():
            return None
        keyring_module = self._load_keyring_module()
        try:
            value = keyring_module.get_password(self.service_name, self.account_name)
        except KeyringError:
            return None
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        return normalized

    def set_api_key(self, api_key: str) -> None:
        """Persist a normalized API key in keyring or raise when unavailable."""

        if not self.is_available():
            raise RuntimeError(
                "Secure credential storage is unavailable because no keyring backend "
                "is configured. Install a keyring backend to persist API keys securely."
            )

        normalized = api_key.strip()
        if not normalized:
            raise ValueError("API key must be a non-empty string.")
        self._load_keyring_module().set_password(
            self.service_name, self.account_name, normalized
        )

    def clear_api_key(self) -> bool:
        """Remove the stored API key from keyring and report if one was present."""

        if not self.is_available():
            return False

        existing = self.get_api_key()
        if existing is None:
            return False

        try:
            self._load_keyring_module().delete_password(self.service_name, self.account_name)
        except PasswordDeleteError:
            return False
        return True


def create_credential_store(provider_id: str = "openai") -> CredentialStore:
    """Create the default secure credential store for a provider."""

    return KeyringCredentialStore(account_name=account_name_for(provider_id))
