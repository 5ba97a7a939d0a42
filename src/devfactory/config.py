"""Environment-driven settings."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from devfactory.errors import ConfigError

DEFAULT_DEVFILE_FILENAMES = ("devfile.yaml", ".devfile.yaml")
DEFAULT_API_ENDPOINT = "http://localhost:8080"
DEFAULT_CERT_PATH = "public-certs"
TOKEN_STORE_KINDS = ("memory", "keyring")


@dataclass(frozen=True)
class Settings:
    api_endpoint: str = DEFAULT_API_ENDPOINT
    devfile_filenames: tuple[str, ...] = DEFAULT_DEVFILE_FILENAMES
    force_refresh_token: bool = False
    self_signed_cert_path: str = DEFAULT_CERT_PATH
    request_timeout: float = 30.0
    token_store: str = "memory"
    log_level: str = "INFO"
    dev_mode: bool = False


def parse_filenames(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated filename list; fall back to the defaults if empty."""
    if not raw:
        return DEFAULT_DEVFILE_FILENAMES
    names = tuple(part.strip() for part in raw.split(",") if part.strip())
    return names or DEFAULT_DEVFILE_FILENAMES


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.
    """
    env = os.environ if environ is None else environ

    raw_timeout = env.get("DEVFACTORY_REQUEST_TIMEOUT", "30")
    try:
        timeout = float(raw_timeout)
    except ValueError:
        raise ConfigError(f"DEVFACTORY_REQUEST_TIMEOUT must be a number, got {raw_timeout!r}")
    if timeout <= 0:
        raise ConfigError("DEVFACTORY_REQUEST_TIMEOUT must be positive")

    store = env.get("DEVFACTORY_TOKEN_STORE", "memory").strip().lower()
    if store not in TOKEN_STORE_KINDS:
        raise ConfigError(
            f"DEVFACTORY_TOKEN_STORE must be one of {', '.join(TOKEN_STORE_KINDS)}, got {store!r}"
        )

    return Settings(
        api_endpoint=(env.get("CHE_API_ENDPOINT") or DEFAULT_API_ENDPOINT).rstrip("/"),
        devfile_filenames=parse_filenames(env.get("CHE_FACTORY_DEFAULT_DEVFILE_FILENAMES")),
        force_refresh_token=_flag(env.get("CHE_FORCE_REFRESH_PERSONAL_ACCESS_TOKEN")),
        self_signed_cert_path=env.get("CHE_SELF_SIGNED_MOUNT_PATH") or DEFAULT_CERT_PATH,
        request_timeout=timeout,
        token_store=store,
        log_level=env.get("DEVFACTORY_LOG_LEVEL", "INFO").upper(),
        dev_mode=_flag(env.get("DEVFACTORY_DEV_MODE")),
    )
