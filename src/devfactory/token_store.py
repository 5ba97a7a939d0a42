"""Token persistence: in-process dict or the OS keychain."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import keyring

logger = logging.getLogger(__name__)

SERVICE_NAME = "devfactory"


class TokenStore(ABC):
    """Key/value store for personal access tokens."""

    @abstractmethod
    def load(self, key: str) -> str | None:
        """Return the stored token, or None."""

    @abstractmethod
    def save(self, key: str, value: str) -> bool:
        """Store a token. Returns True on success."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a token. Returns True when something was removed."""


class MemoryTokenStore(TokenStore):
    def __init__(self):
        self._tokens: dict[str, str] = {}

    def load(self, key: str) -> str | None:
        return self._tokens.get(key)

    def save(self, key: str, value: str) -> bool:
        if not value:
            return False
        self._tokens[key] = value
        return True

    def delete(self, key: str) -> bool:
        return self._tokens.pop(key, None) is not None


class KeyringTokenStore(TokenStore):
    """Stores tokens in the OS keychain (macOS Keychain, Windows Credential Manager, Secret Service)."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    def load(self, key: str) -> str | None:
        try:
            return keyring.get_password(self.service_name, key)
        except Exception:
            logger.warning("Failed to load %s from keyring", key)
            return None

    def save(self, key: str, value: str) -> bool:
        if not value:
            return False
        try:
            keyring.set_password(self.service_name, key, value)
            return True
        except Exception:
            logger.warning("Failed to save %s to keyring", key)
            return False

    def delete(self, key: str) -> bool:
        try:
            keyring.delete_password(self.service_name, key)
            return True
        except Exception:
            logger.info("No keyring entry removed for %s", key)
            return False


def open_token_store(kind: str = "memory") -> TokenStore:
    """Build the token store named by the ``token_store`` setting."""
    if kind == "keyring":
        return KeyringTokenStore()
    if kind == "memory":
        return MemoryTokenStore()
    raise ValueError(f"Unknown token store: {kind}")
