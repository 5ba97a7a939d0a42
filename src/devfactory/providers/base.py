"""Abstract base classes for SCM file resolvers and provider API clients."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

import requests

from devfactory.config import DEFAULT_DEVFILE_FILENAMES
from devfactory.errors import (
    BadRequest,
    Communication,
    DevFactoryError,
    FileNotFound,
    NoMatchingFile,
)
from devfactory.models import FetchOutcome, FetchStatus, ProviderType
from devfactory.oauth import authentication_required, hostname_of
from devfactory.transport import Transport

logger = logging.getLogger(__name__)

FILE_NOT_FOUND_MESSAGE = "Requested file not found in repository"
INVALID_CREDENTIALS_MESSAGE = "SCM Authentication required (invalid or expired credentials)"


class ScmFileResolver(ABC):
    """Fetches files from one SCM provider.

    Subclasses decide which URLs they accept and how a repository URL plus
    file path turns into raw-content URLs. The shared fetch primitive
    classifies every response into a FetchOutcome; only the public
    ``file_content`` boundary turns outcomes into exceptions.
    """

    provider: ProviderType = ProviderType.GENERIC
    host_markers: tuple[str, ...] = ()

    def __init__(
        self,
        transport: Transport,
        api_endpoint: str,
        devfile_filenames: Sequence[str] = DEFAULT_DEVFILE_FILENAMES,
    ):
        self.transport = transport
        self.api_endpoint = api_endpoint
        self.devfile_filenames = tuple(devfile_filenames) or DEFAULT_DEVFILE_FILENAMES

    def accept(self, repository: str) -> bool:
        host = hostname_of(repository)
        return any(marker in host for marker in self.host_markers)

    @abstractmethod
    def file_content(
        self,
        repository: str,
        file_path: str | None = None,
        authorization: str | None = None,
    ) -> bytes:
        """Return the bytes of *file_path*, or of the first devfile found."""

    def supports_credential(self, authorization: str) -> bool:
        """Whether the provider understands this Authorization scheme."""
        return True

    def request_headers(self, repository: str, authorization: str | None) -> dict[str, str]:
        return {"Authorization": authorization} if authorization else {}

    def fetch(
        self,
        url: str,
        repository: str,
        authorization: str | None = None,
    ) -> FetchOutcome:
        logger.info("[%s] Fetching %s (authorization %s)", self.provider.value, url,
                    "provided" if authorization else "not provided")
        try:
            resp = self.transport.get(url, headers=self.request_headers(repository, authorization))
        except Communication as exc:
            return FetchOutcome(FetchStatus.ERROR, url, detail=exc.message)
        return self.classify(url, resp, authorization)

    def classify(
        self,
        url: str,
        resp: requests.Response,
        authorization: str | None,
    ) -> FetchOutcome:
        status = resp.status_code
        if status == 200:
            return FetchOutcome(FetchStatus.OK, url, content=resp.content, http_status=status)
        if status in (401, 403):
            return FetchOutcome(FetchStatus.AUTH_REQUIRED, url, http_status=status)
        if status == 404:
            if not authorization:
                # Private repositories answer 404 to anonymous callers.
                return FetchOutcome(FetchStatus.AUTH_REQUIRED, url, http_status=status)
            if not self.supports_credential(authorization):
                return FetchOutcome(FetchStatus.AUTH_REQUIRED, url, http_status=status)
            return FetchOutcome(
                FetchStatus.NOT_FOUND, url, http_status=status, detail=FILE_NOT_FOUND_MESSAGE
            )
        return FetchOutcome(
            FetchStatus.ERROR,
            url,
            http_status=status,
            detail=f"HTTP {status}: {resp.reason or ''}".rstrip(),
            content=resp.content[:200],
        )

    def to_error(self, outcome: FetchOutcome, authorization: str | None) -> DevFactoryError:
        """Turn a failed outcome into the exception callers see."""
        if outcome.status is FetchStatus.AUTH_REQUIRED:
            message = INVALID_CREDENTIALS_MESSAGE if authorization else "SCM Authentication required"
            return authentication_required(self.api_endpoint, self.provider, message)
        if outcome.status is FetchStatus.NOT_FOUND:
            return FileNotFound(FILE_NOT_FOUND_MESSAGE)
        return Communication(
            f"Failed to fetch {outcome.url}",
            status=outcome.http_status,
            body=outcome.content.decode("utf-8", errors="replace"),
        )

    def fetch_one(self, url: str, repository: str, authorization: str | None) -> bytes:
        outcome = self.fetch(url, repository, authorization)
        if outcome.ok:
            return outcome.content
        raise self.to_error(outcome, authorization)

    def fetch_first(
        self,
        candidates: Iterable[tuple[str, str]],
        repository: str,
        authorization: str | None,
    ) -> bytes:
        """Try ``(label, url)`` candidates in order; return the first success.

        An authentication outcome stops the search immediately. Otherwise
        per-candidate failures are collected into NoMatchingFile.
        """
        attempts: list[str] = []
        for label, url in candidates:
            outcome = self.fetch(url, repository, authorization)
            if outcome.ok:
                logger.info("[%s] Found %s", self.provider.value, label)
                return outcome.content
            if outcome.status is FetchStatus.AUTH_REQUIRED:
                raise self.to_error(outcome, authorization)
            logger.info("[%s] %s failed: %s", self.provider.value, label, outcome.detail)
            attempts.append(f"{label}: {outcome.detail}")
        raise NoMatchingFile(attempts)

    @staticmethod
    def unparseable(repository: str) -> BadRequest:
        return BadRequest(f"Unable to parse repository URL: {repository}")


class ScmApiClient(ABC):
    """Thin client for a provider's REST API."""

    provider: ProviderType = ProviderType.GENERIC
    auth_scheme = "Bearer"
    auth_statuses: tuple[int, ...] = (401,)

    def __init__(
        self,
        api_server_url: str,
        scm_server_url: str,
        transport: Transport,
        api_endpoint: str,
    ):
        self.api_server_url = api_server_url.rstrip("/")
        self.scm_server_url = scm_server_url.rstrip("/")
        self.transport = transport
        self.api_endpoint = api_endpoint

    def _api_get(
        self,
        path: str,
        token: str,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        resp = self.transport.get(
            f"{self.api_server_url}{path}",
            headers={"Accept": "application/json", "Authorization": f"{self.auth_scheme} {token}"},
            params=params,
        )
        self._check_status(resp)
        return resp

    def _api_json(self, path: str, token: str, params: dict[str, str] | None = None):
        resp = self._api_get(path, token, params=params)
        if resp.status_code == 204:
            return None
        return resp.json()

    def _check_status(self, resp: requests.Response) -> None:
        status = resp.status_code
        if 200 <= status < 300:
            return
        text = resp.text[:200] if resp.text else "Unrecognised error"
        if status in self.auth_statuses:
            raise authentication_required(self.api_endpoint, self.provider, "ScmUnauthorized")
        if status == 400:
            raise BadRequest(f"ScmBadRequest: {text}")
        if status == 404:
            raise FileNotFound(f"ScmItemNotFound: {text}")
        raise Communication("ScmCommunication", status=status, body=text)

    @abstractmethod
    def get_user(self, token: str) -> dict | None:
        """Return the profile of the token's owner."""

    def is_connected(self, scm_server_url: str) -> bool:
        return scm_server_url.rstrip("/").lower() == self.scm_server_url.lower()
