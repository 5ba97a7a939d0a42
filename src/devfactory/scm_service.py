"""File resolution across providers and API-client lookup."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from devfactory.config import Settings
from devfactory.errors import BadRequest
from devfactory.oauth import hostname_of, normalize_ssh_url
from devfactory.providers.azure_devops import AzureDevOpsApiClient, AzureDevOpsFileResolver
from devfactory.providers.base import ScmApiClient, ScmFileResolver
from devfactory.providers.bitbucket import BitbucketApiClient, BitbucketFileResolver
from devfactory.providers.generic import GenericFileResolver
from devfactory.providers.github import GitHubApiClient, GitHubFileResolver
from devfactory.providers.gitlab import GitLabApiClient, GitLabFileResolver
from devfactory.transport import Transport

logger = logging.getLogger(__name__)


def server_origin(url: str) -> str:
    parsed = urlparse(url.strip())
    origin = f"{parsed.scheme}://{parsed.hostname}"
    return f"{origin}:{parsed.port}" if parsed.port else origin


class ScmService:
    """Routes file requests to the first resolver that accepts the URL.

    The order is fixed: GitHub, GitLab, Bitbucket, Azure DevOps, and the
    generic resolver last since it accepts any http(s) URL.
    """

    def __init__(self, settings: Settings, transport: Transport):
        self.settings = settings
        self.transport = transport
        args = (transport, settings.api_endpoint, settings.devfile_filenames)
        self.resolvers: tuple[ScmFileResolver, ...] = (
            GitHubFileResolver(*args),
            GitLabFileResolver(*args),
            BitbucketFileResolver(*args),
            AzureDevOpsFileResolver(*args),
            GenericFileResolver(*args),
        )

    def resolver_for(self, repository: str) -> ScmFileResolver:
        for resolver in self.resolvers:
            if resolver.accept(repository):
                return resolver
        raise BadRequest(f"Unsupported repository URL: {repository}")

    def resolve_file(
        self,
        repository: str | None,
        file_path: str | None = None,
        authorization: str | None = None,
    ) -> bytes:
        if not repository or not repository.strip():
            raise BadRequest("Repository parameter is required")
        resolver = self.resolver_for(repository)
        logger.info("Resolving %s in %s with %s resolver", file_path or "devfile",
                    repository, resolver.provider.value)
        return resolver.file_content(repository.strip(), file_path, authorization)

    def api_client_for(self, scm_server_url: str) -> ScmApiClient | None:
        """Build the API client for the provider hosting *scm_server_url*.

        The hosted services are matched through each client's
        ``is_connected``. Self-hosted GitHub and GitLab servers get a client
        aimed at their own origin. Returns None for hosts that are not a known
        provider.
        """
        origin = server_origin(normalize_ssh_url(scm_server_url))
        endpoint = self.settings.api_endpoint
        hosted: tuple[ScmApiClient, ...] = (
            GitHubApiClient(self.transport, endpoint),
            GitLabApiClient(self.transport, endpoint),
            BitbucketApiClient(self.transport, endpoint),
            AzureDevOpsApiClient(self.transport, endpoint),
        )
        for client in hosted:
            if client.is_connected(origin):
                return client
        host = hostname_of(scm_server_url)
        if "github" in host:
            return GitHubApiClient(self.transport, endpoint, origin)
        if "gitlab" in host:
            return GitLabApiClient(self.transport, endpoint, origin)
        if "bitbucket" in host:
            return BitbucketApiClient(self.transport, endpoint)
        return None
