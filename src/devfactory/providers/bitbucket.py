"""Bitbucket file resolver and REST API client."""

from __future__ import annotations

import base64
from urllib.parse import quote, urlparse

from devfactory.errors import BadRequest
from devfactory.models import ProviderType
from devfactory.providers.base import ScmApiClient, ScmFileResolver
from devfactory.transport import Transport
from devfactory.url_parser import (
    BITBUCKET_API_BASE,
    DEFAULT_BRANCH,
    BitbucketRepo,
    parse_repo_url,
    strip_repo_suffix,
)

BITBUCKET_SERVER = "https://bitbucket.org"
BITBUCKET_CLOUD_HOST = "bitbucket.org"
# Bitbucket does not resolve HEAD to the default branch like GitHub does.
DEFAULT_BRANCH_CANDIDATES = ("master", "main", DEFAULT_BRANCH)
TOKEN_AUTH_USER = "x-token-auth"


def basic_from_bearer(authorization: str, repository: str) -> str:
    """Convert ``Bearer <token>`` into Basic credentials Bitbucket accepts.

    The user name comes from the repository URL's user info when present,
    otherwise ``x-token-auth``. Other schemes pass through unchanged.
    """
    if not authorization.startswith("Bearer "):
        return authorization
    token = authorization[len("Bearer "):]
    user = urlparse(repository).username or TOKEN_AUTH_USER
    encoded = base64.b64encode(f"{user}:{token}".encode()).decode()
    return f"Basic {encoded}"


class BitbucketFileResolver(ScmFileResolver):
    """Resolves files from Bitbucket, probing common default branches."""

    provider = ProviderType.BITBUCKET
    host_markers = ("bitbucket",)

    def request_headers(self, repository: str, authorization: str | None) -> dict[str, str]:
        if not authorization:
            return {}
        return {"Authorization": basic_from_bearer(authorization, repository)}

    def file_content(
        self,
        repository: str,
        file_path: str | None = None,
        authorization: str | None = None,
    ) -> bytes:
        repo = parse_repo_url(repository, self.devfile_filenames)
        if not isinstance(repo, BitbucketRepo):
            if file_path:
                return self.fetch_one(
                    self._fallback_raw_url(repository, file_path), repository, authorization
                )
            raise self.unparseable(repository)

        branches = DEFAULT_BRANCH_CANDIDATES if repo.has_default_branch else (repo.branch,)

        if file_path:
            if repo.has_default_branch and urlparse(repo.server_url).hostname == BITBUCKET_CLOUD_HOST:
                candidates = [
                    (f"{file_path} ({branch})", repo.with_branch(branch).api_file_location(file_path))
                    for branch in branches
                ]
                return self.fetch_first(candidates, repository, authorization)
            return self.fetch_one(repo.raw_file_location(file_path), repository, authorization)

        candidates = [
            (f"{filename} ({branch})", repo.with_branch(branch).raw_file_location(filename))
            for branch in branches
            for filename in repo.devfile_filenames
        ]
        return self.fetch_first(candidates, repository, authorization)

    @staticmethod
    def _fallback_raw_url(repository: str, file_path: str) -> str:
        parsed = urlparse(repository)
        parts = [p for p in parsed.path.split("/") if p]
        if len(parts) < 2:
            raise BadRequest(f"Invalid Bitbucket repository URL: {repository}")
        return (
            f"{parsed.scheme}://{parsed.hostname}/{parts[0]}/{strip_repo_suffix(parts[1])}"
            f"/raw/{DEFAULT_BRANCH}/{quote(file_path, safe='/')}"
        )


class BitbucketApiClient(ScmApiClient):
    """Client for the Bitbucket Cloud 2.0 REST API."""

    provider = ProviderType.BITBUCKET

    def __init__(self, transport: Transport, api_endpoint: str, api_server_url: str | None = None):
        super().__init__(api_server_url or BITBUCKET_API_BASE, BITBUCKET_SERVER, transport, api_endpoint)

    def get_user(self, token: str) -> dict | None:
        return self._api_json("/user", token)
