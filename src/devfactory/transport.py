"""Two-stage HTTP transport.

Requests go out first without certificate validation, which covers public
providers. A transport-level failure (TLS, connection, timeout) is retried
once through a session that trusts certifi's bundle plus any self-signed
certificates mounted for cluster-internal endpoints. HTTP statuses are never
retried; the caller interprets them.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import certifi
import requests
import urllib3

from devfactory.config import Settings
from devfactory.errors import Communication

logger = logging.getLogger(__name__)

USER_AGENT = "devfactory/1.0"
_MAX_SUBDIRS = 10
_MAX_DEPTH = 5
DEFAULT_BUNDLE_PATH = Path(tempfile.gettempdir()) / "devfactory-ca-bundle.pem"

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def collect_certificates(cert_path: str | Path) -> list[bytes]:
    """Read every certificate file below *cert_path*.

    Walks at most five levels deep and at most ten subdirectories per level.
    A missing or unreadable directory yields an empty list.
    """
    found: list[bytes] = []

    def _walk(path: Path, depth: int) -> None:
        subdirs: list[Path] = []
        try:
            entries = sorted(path.iterdir())
        except OSError:
            return
        for entry in entries:
            if entry.is_dir():
                if len(subdirs) < _MAX_SUBDIRS:
                    subdirs.append(entry)
                continue
            try:
                found.append(entry.read_bytes())
            except OSError:
                logger.warning("Skipping unreadable certificate %s", entry)
        if depth < _MAX_DEPTH:
            for subdir in subdirs:
                _walk(subdir, depth + 1)

    _walk(Path(cert_path), 1)
    return found


def build_ca_bundle(cert_path: str | Path, bundle_path: str | Path | None = None) -> str | None:
    """Write certifi's roots plus the mounted certificates to a bundle file.

    The bundle always lands at *bundle_path* (``DEFAULT_BUNDLE_PATH`` when
    omitted) and is replaced on every call, so repeated startups reuse one
    file.

    Returns the bundle path, or None when no extra certificates are mounted.
    """
    extra = collect_certificates(cert_path)
    if not extra:
        return None
    target = Path(bundle_path or DEFAULT_BUNDLE_PATH)
    partial = target.with_name(f"{target.name}.{os.getpid()}.tmp")
    with partial.open("wb") as bundle:
        bundle.write(Path(certifi.where()).read_bytes())
        for cert in extra:
            bundle.write(b"\n")
            bundle.write(cert)
    os.replace(partial, target)
    logger.info("Loaded %d self-signed certificate(s) from %s", len(extra), cert_path)
    return str(target)


class Transport:
    """Pair of requests sessions implementing the two-stage fetch."""

    def __init__(
        self,
        timeout: float = 30.0,
        ca_bundle: str | None = None,
        max_redirects: int = 50,
    ):
        self.timeout = timeout
        self.unverified = self._session(verify=False, max_redirects=max_redirects)
        self.verified = self._session(verify=ca_bundle or True, max_redirects=max_redirects)

    @staticmethod
    def _session(verify: bool | str, max_redirects: int) -> requests.Session:
        session = requests.Session()
        session.verify = verify
        session.max_redirects = max_redirects
        session.headers["User-Agent"] = USER_AGENT
        return session

    @classmethod
    def from_settings(cls, settings: Settings) -> Transport:
        return cls(
            timeout=settings.request_timeout,
            ca_bundle=build_ca_bundle(settings.self_signed_cert_path),
        )

    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        """GET *url*, falling back to the verified session on transport errors.

        Raises:
            Communication: when both sessions fail at the transport level.
        """
        try:
            return self.unverified.get(
                url, headers=headers, params=params, timeout=self.timeout, verify=False
            )
        except requests.RequestException as exc:
            logger.info("Unverified request to %s failed (%s); retrying with CA validation", url, exc)
        try:
            return self.verified.get(
                url, headers=headers, params=params, timeout=self.timeout, verify=self.verified.verify
            )
        except requests.RequestException as exc:
            raise Communication(f"Request to {url} failed: {exc}") from exc
