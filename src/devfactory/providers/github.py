"""GitHub file resolver and REST API client."""

from __future__ import annotations

from urllib.parse import quote, urlparse

from devfactory.errors import BadRequest
from devfactory.models import ProviderType
from devfactory.providers.base import ScmApiClient, ScmFileResolver
from devfactory.transport import Transport
from devfactory.url_parser import (
    DEFAULT_BRANCH,
    GITHUB_RAW_BASE,
    GITHUB_SERVER,
    parse_repo_url,
    strip_repo_suffix,
)


class GitHubFileResolver(ScmFileResolver):
    """Resolves files from github.com and GitHub Enterprise repositories."""

    provider = ProviderType.GITHUB
    host_markers = ("github",)

    def supports_credential(self, authorization: str) -> bool:
        # GitHub serves private content only to OAuth/bearer tokens.
        return not authorization.startswith("Basic ")

    def file_content(
        self,
        repository: str,
        file_path: str | None = None,
        authorization: str | None = None,
    ) -> bytes:
        repo = parse_repo_url(repository, self.devfile_filenames)
        if repo is not None and repo.provider is not self.provider:
            repo = None

        if file_path:
            url = repo.raw_file_location(file_path) if repo else self._fallback_raw_url(repository, file_path)
            return self.fetch_one(url, repository, authorization)

        if repo is None:
            raise self.unparseable(repository)
        candidates = [(loc.filename, loc.resolved_url) for loc in repo.devfile_file_locations()]
        return self.fetch_first(candidates, repository, authorization)

    @staticmethod
    def _fallback_raw_url(repository: str, file_path: str) -> str:
        parts = [p for p in urlparse(repository).path.split("/") if p]
        if len(parts) < 2:
            raise BadRequest(f"Invalid GitHub repository URL: {repository}")
        branch = parts[3] if len(parts) > 3 else DEFAULT_BRANCH
        return (
            f"{GITHUB_RAW_BASE}/{parts[0]}/{strip_repo_suffix(parts[1])}"
            f"/{branch}/{quote(file_path, safe='/')}"
        )


class GitHubApiClient(ScmApiClient):
    """Client for the GitHub REST API (github.com or Enterprise Server)."""

    provider = ProviderType.GITHUB
    auth_scheme = "token"
    API_BASE = "https://api.github.com"

    def __init__(self, transport: Transport, api_endpoint: str, server_url: str | None = None):
        server = (server_url or GITHUB_SERVER).rstrip("/")
        api = self.API_BASE if server == GITHUB_SERVER else f"{server}/api/v3"
        super().__init__(api, server, transport, api_endpoint)

    def get_user(self, token: str) -> dict | None:
        return self._api_json("/user", token)
