"""Repository URL parsing and raw-file URL rendering."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from urllib.parse import quote, urlparse

from devfactory.config import DEFAULT_DEVFILE_FILENAMES
from devfactory.models import ConfigFileLocation, ProviderType
from devfactory.oauth import normalize_ssh_url

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "HEAD"
GITHUB_SERVER = "https://github.com"
GITHUB_RAW_BASE = "https://raw.githubusercontent.com"
BITBUCKET_API_BASE = "https://api.bitbucket.org/2.0"
AZURE_DEVOPS_SERVER = "https://dev.azure.com"
AZURE_DEFAULT_BRANCH = "main"
AZURE_API_VERSION = "7.0"

_GITLAB_TREE_MARKER = "/-/tree/"


def strip_repo_suffix(url: str) -> str:
    """Remove trailing slashes and ``.git`` suffixes until none remain."""
    previous = None
    while previous != url:
        previous = url
        url = url.rstrip("/").removesuffix(".git")
    return url


@dataclass(frozen=True)
class RemoteRepository:
    """Normalized repository location shared by all providers."""

    provider: ProviderType
    server_url: str
    repository: str
    branch: str = DEFAULT_BRANCH
    devfile_filenames: tuple[str, ...] = DEFAULT_DEVFILE_FILENAMES

    def raw_file_location(self, filename: str) -> str:
        raise NotImplementedError

    def devfile_file_locations(self) -> list[ConfigFileLocation]:
        return [
            ConfigFileLocation(filename=name, resolved_url=self.raw_file_location(name))
            for name in self.devfile_filenames
        ]

    def with_branch(self, branch: str) -> RemoteRepository:
        return replace(self, branch=branch)

    @property
    def has_default_branch(self) -> bool:
        return self.branch == DEFAULT_BRANCH


@dataclass(frozen=True)
class GithubRepo(RemoteRepository):
    owner: str = ""

    def raw_file_location(self, filename: str) -> str:
        path = f"{self.owner}/{self.repository}/{self.branch}/{quote(filename, safe='/')}"
        if self.server_url == GITHUB_SERVER:
            return f"{GITHUB_RAW_BASE}/{path}"
        # GitHub Enterprise Server
        return f"{self.server_url}/raw/{path}"


@dataclass(frozen=True)
class GitlabRepo(RemoteRepository):
    sub_groups: str = ""

    @property
    def project(self) -> str:
        return self.sub_groups.rsplit("/", 1)[-1]

    def raw_file_location(self, filename: str) -> str:
        return (
            f"{self.server_url}/api/v4/projects/{quote(self.sub_groups, safe='')}"
            f"/repository/files/{quote(filename, safe='')}/raw?ref={self.branch}"
        )


@dataclass(frozen=True)
class BitbucketRepo(RemoteRepository):
    workspace: str = ""

    def raw_file_location(self, filename: str) -> str:
        return (
            f"{self.server_url}/{self.workspace}/{self.repository}"
            f"/raw/{self.branch}/{quote(filename, safe='/')}"
        )

    def api_file_location(self, filename: str) -> str:
        """Bitbucket Cloud REST endpoint for the same file."""
        return (
            f"{BITBUCKET_API_BASE}/repositories/{self.workspace}/{self.repository}"
            f"/src/{self.branch}/{quote(filename, safe='/')}"
        )


@dataclass(frozen=True)
class AzureDevOpsRepo(RemoteRepository):
    organization: str = ""
    project: str = ""

    def raw_file_location(self, filename: str) -> str:
        return (
            f"{AZURE_DEVOPS_SERVER}/{self.organization}/{self.project}"
            f"/_apis/git/repositories/{self.repository}/items"
            f"?path=/{quote(filename.lstrip('/'), safe='/')}"
            f"&versionDescriptor.version={self.branch}&api-version={AZURE_API_VERSION}"
        )


def _origin(scheme: str, host: str, port: int | None) -> str:
    return f"{scheme}://{host}:{port}" if port else f"{scheme}://{host}"


def _path_parts(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


def _parse_github(parsed, filenames: tuple[str, ...]) -> GithubRepo | None:
    # path: owner/repo[/tree|blob/branch[/...]]
    parts = _path_parts(parsed.path)
    if len(parts) < 2:
        return None
    branch = DEFAULT_BRANCH
    if len(parts) >= 4 and parts[2] in ("tree", "blob"):
        branch = parts[3]
    return GithubRepo(
        provider=ProviderType.GITHUB,
        server_url=_origin(parsed.scheme, parsed.hostname, parsed.port),
        owner=parts[0],
        repository=strip_repo_suffix(parts[1]),
        branch=branch,
        devfile_filenames=filenames,
    )


def _parse_gitlab(parsed, filenames: tuple[str, ...]) -> GitlabRepo | None:
    path = strip_repo_suffix(parsed.path.strip("/"))
    if not path:
        return None
    sub_groups, branch = path, DEFAULT_BRANCH
    marker = path.find(_GITLAB_TREE_MARKER)
    if marker > 0:
        sub_groups = path[:marker]
        branch = path[marker + len(_GITLAB_TREE_MARKER):] or DEFAULT_BRANCH
    return GitlabRepo(
        provider=ProviderType.GITLAB,
        server_url=_origin(parsed.scheme, parsed.hostname, parsed.port),
        repository=sub_groups.rsplit("/", 1)[-1],
        sub_groups=sub_groups,
        branch=branch,
        devfile_filenames=filenames,
    )


def _parse_bitbucket(parsed, filenames: tuple[str, ...]) -> BitbucketRepo | None:
    # path: workspace/repo[/src/branch[/...]]
    parts = _path_parts(parsed.path)
    if len(parts) < 2:
        return None
    branch = DEFAULT_BRANCH
    if len(parts) >= 4 and parts[2] == "src":
        branch = parts[3]
    # hostname, not netloc: user info must not leak into the origin
    return BitbucketRepo(
        provider=ProviderType.BITBUCKET,
        server_url=_origin(parsed.scheme, parsed.hostname, parsed.port),
        workspace=parts[0],
        repository=strip_repo_suffix(parts[1]),
        branch=branch,
        devfile_filenames=filenames,
    )


_PARSERS = (
    ("github", _parse_github),
    ("gitlab", _parse_gitlab),
    ("bitbucket", _parse_bitbucket),
)


def parse_repo_url(
    url: str,
    devfile_filenames: tuple[str, ...] | list[str] = DEFAULT_DEVFILE_FILENAMES,
) -> RemoteRepository | None:
    """Parse a GitHub, GitLab or Bitbucket repository URL.

    Supported formats:
      - https://github.com/owner/repo[.git]
      - https://github.com/owner/repo/tree|blob/branch[/...]
      - https://gitlab.com/group/sub/project[/-/tree/branch]
      - https://bitbucket.org/workspace/repo[/src/branch[/...]]
      - git@host:path SSH remotes of all of the above

    Returns None when the URL belongs to none of these providers.
    """
    filenames = tuple(devfile_filenames) or DEFAULT_DEVFILE_FILENAMES
    parsed = urlparse(normalize_ssh_url(url.strip()))
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    for marker, parser in _PARSERS:
        if marker in host:
            repo = parser(parsed, filenames)
            if repo is not None:
                return repo
            logger.debug("%s URL without repository path: %s", marker, url)
    return None


def _extract_azdo_branch(query: str) -> str | None:
    """Extract branch from Azure DevOps query string (version=GBbranch)."""
    match = re.search(r"version=GB(.+?)(?:&|$)", query)
    return match.group(1) if match else None


def parse_azure_devops_url(
    url: str,
    devfile_filenames: tuple[str, ...] | list[str] = DEFAULT_DEVFILE_FILENAMES,
) -> AzureDevOpsRepo | None:
    """Parse an Azure DevOps repository URL.

    Supported formats:
      - https://dev.azure.com/org/project/_git/repo
      - https://org.visualstudio.com/project/_git/repo
      - either of the above with ?version=GBbranch
    """
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    parts = _path_parts(parsed.path)

    if host == "dev.azure.com":
        if len(parts) < 4 or parts[2] != "_git":
            return None
        org, project, repo = parts[0], parts[1], parts[3]
    elif host.endswith(".visualstudio.com"):
        if len(parts) < 3 or parts[1] != "_git":
            return None
        org = host.removesuffix(".visualstudio.com")
        project, repo = parts[0], parts[2]
    else:
        return None

    return AzureDevOpsRepo(
        provider=ProviderType.AZURE_DEVOPS,
        server_url=AZURE_DEVOPS_SERVER,
        organization=org,
        project=project,
        repository=strip_repo_suffix(repo),
        branch=_extract_azdo_branch(parsed.query) or AZURE_DEFAULT_BRANCH,
        devfile_filenames=tuple(devfile_filenames) or DEFAULT_DEVFILE_FILENAMES,
    )
