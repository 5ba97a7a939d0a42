"""Azure DevOps file resolver and REST API client."""

from __future__ import annotations

from devfactory.errors import BadRequest, NoMatchingFile
from devfactory.models import ProviderType
from devfactory.oauth import authentication_required
from devfactory.providers.base import ScmApiClient, ScmFileResolver
from devfactory.transport import Transport
from devfactory.url_parser import (
    AZURE_API_VERSION,
    AZURE_DEVOPS_SERVER,
    parse_azure_devops_url,
)

PROFILE_API_SERVER = "https://app.vssps.visualstudio.com"


class AzureDevOpsFileResolver(ScmFileResolver):
    """Resolves files through the Azure DevOps Git items API."""

    provider = ProviderType.AZURE_DEVOPS
    host_markers = ("dev.azure.com", "visualstudio.com", "azure.com")

    def request_headers(self, repository: str, authorization: str | None) -> dict[str, str]:
        headers = {"Accept": "application/octet-stream"}
        if authorization:
            headers["Authorization"] = authorization
        return headers

    def file_content(
        self,
        repository: str,
        file_path: str | None = None,
        authorization: str | None = None,
    ) -> bytes:
        repo = parse_azure_devops_url(repository, self.devfile_filenames)
        if repo is None:
            raise BadRequest(f"Invalid Azure DevOps URL format: {repository}")

        if file_path:
            return self.fetch_one(repo.raw_file_location(file_path), repository, authorization)

        candidates = [(loc.filename, loc.resolved_url) for loc in repo.devfile_file_locations()]
        try:
            return self.fetch_first(candidates, repository, authorization)
        except NoMatchingFile:
            if not authorization:
                # Nothing readable anonymously: most likely a private project.
                raise authentication_required(self.api_endpoint, self.provider)
            raise


class AzureDevOpsApiClient(ScmApiClient):
    """Client for the Azure DevOps profile API."""

    provider = ProviderType.AZURE_DEVOPS
    auth_statuses = (401, 403)

    def __init__(self, transport: Transport, api_endpoint: str, server_url: str | None = None):
        server = (server_url or AZURE_DEVOPS_SERVER).rstrip("/")
        api = PROFILE_API_SERVER if server == AZURE_DEVOPS_SERVER else server
        super().__init__(api, server, transport, api_endpoint)

    def get_user(self, token: str) -> dict | None:
        data = self._api_json(
            "/_apis/profile/profiles/me", token, params={"api-version": AZURE_API_VERSION}
        )
        if data is None:
            return None
        keys = ("id", "displayName", "emailAddress", "publicAlias", "coreRevision", "timeStamp", "revision")
        return {key: data.get(key) for key in keys}

    def is_connected(self, scm_server_url: str) -> bool:
        url = scm_server_url.rstrip("/").lower()
        return (
            super().is_connected(scm_server_url)
            or "dev.azure.com" in url
            or "visualstudio.com" in url
        )
