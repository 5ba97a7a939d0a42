"""GitLab file resolver and REST API client."""

from __future__ import annotations

from urllib.parse import quote, urlparse

from devfactory.errors import BadRequest
from devfactory.models import ProviderType
from devfactory.providers.base import ScmApiClient, ScmFileResolver
from devfactory.transport import Transport
from devfactory.url_parser import DEFAULT_BRANCH, parse_repo_url, strip_repo_suffix

GITLAB_SERVER = "https://gitlab.com"


class GitLabFileResolver(ScmFileResolver):
    """Resolves files through the GitLab v4 repository files API."""

    provider = ProviderType.GITLAB
    host_markers = ("gitlab",)

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
        parsed = urlparse(repository)
        parts = [p for p in parsed.path.split("/") if p]
        if len(parts) < 2:
            raise BadRequest(f"Invalid GitLab repository URL: {repository}")
        project_path = strip_repo_suffix("/".join(parts))
        origin = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            origin = f"{origin}:{parsed.port}"
        return (
            f"{origin}/api/v4/projects/{quote(project_path, safe='')}"
            f"/repository/files/{quote(file_path, safe='')}/raw?ref={DEFAULT_BRANCH}"
        )


class GitLabApiClient(ScmApiClient):
    """Client for the GitLab v4 REST API."""

    provider = ProviderType.GITLAB

    def __init__(self, transport: Transport, api_endpoint: str, server_url: str | None = None):
        server = (server_url or GITLAB_SERVER).rstrip("/")
        super().__init__(f"{server}/api/v4", server, transport, api_endpoint)

    def get_user(self, token: str) -> dict | None:
        return self._api_json("/user", token)
