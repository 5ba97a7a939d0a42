"""Factory parameter resolvers: turn a URL into a ProjectDescriptor.

Two resolvers cover the URL space. DirectLinkResolver handles links that
point straight at a devfile; RepositoryLinkResolver handles bare repository
links on a known provider and discovers the devfile through ScmService.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote, urlparse

import yaml

from devfactory.config import DEFAULT_DEVFILE_FILENAMES
from devfactory.errors import AuthenticationRequired, BadRequest, FileNotFound
from devfactory.models import (
    MINIMAL_SCHEMA_VERSION,
    Link,
    ProjectDescriptor,
    ProviderType,
    ResolverPriority,
    ScmInfo,
)
from devfactory.oauth import authentication_required, detect_provider, normalize_ssh_url
from devfactory.scm_service import ScmService
from devfactory.transport import Transport
from devfactory.url_parser import strip_repo_suffix

logger = logging.getLogger(__name__)

URL_PARAMETER = "url"
ERROR_CODE_PARAMETER = "error_code"
AUTHORIZATION_PARAMETER = "authorization"
ACCESS_DENIED = "access_denied"

SIDE_FILES = (
    "devfile.yaml",
    ".che/che-editor.yaml",
    ".che/che-theia-plugins.yaml",
    ".vscode/extensions.json",
)
DEFAULT_NAME = "factory"
_DOCUMENT_EXTENSION = re.compile(r"\.(yaml|yml|json)$", re.IGNORECASE)
_SCHEMA_MARKERS = ("schemaVersion", "apiVersion")


def _path_parts(url: str) -> list[str]:
    return [part for part in urlparse(url).path.split("/") if part]


def _clean(url: str) -> str:
    """Lower-cased URL without query, fragment or ``.git`` suffix."""
    clean = url.lower().split("?", 1)[0].split("#", 1)[0]
    return clean.removesuffix(".git")


def parse_devfile(content: bytes | str, source: str) -> dict[str, Any]:
    """Parse a devfile as JSON, falling back to YAML.

    Raises:
        BadRequest: when the content is empty, unparseable, not a mapping,
            or has neither ``schemaVersion`` nor ``apiVersion``.
    """
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    if not text.strip():
        raise BadRequest(f"Empty content fetched from {source}")
    try:
        document = json.loads(text)
    except ValueError:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise BadRequest(f"Failed to parse devfile content as JSON or YAML: {exc}") from exc
    if not isinstance(document, dict):
        raise BadRequest(f"Failed to parse devfile content as JSON or YAML: {source}")
    if not any(document.get(marker) for marker in _SCHEMA_MARKERS):
        raise BadRequest("Invalid devfile: missing schemaVersion or apiVersion field")
    return document


def branch_from_url(url: str) -> str | None:
    """Branch named by a ``/tree/<branch>`` or ``/blob/<branch>`` path segment."""
    parts = _path_parts(url)
    for marker in ("tree", "blob"):
        if marker in parts:
            index = parts.index(marker)
            if index + 1 < len(parts):
                return parts[index + 1]
    return None


def repository_name(url: str) -> str:
    parts = _path_parts(url)
    if len(parts) < 2:
        return DEFAULT_NAME
    return strip_repo_suffix(parts[-1]) or DEFAULT_NAME


def scm_side_file_links(api_endpoint: str, repository_url: str) -> list[Link]:
    """One link per well-known side file, served by the SCM resolve endpoint."""
    base = api_endpoint.rstrip("/")
    return [
        Link(
            rel=f"{path} content",
            href=(
                f"{base}/api/scm/resolve?repository={quote(repository_url, safe='')}"
                f"&file={quote(path, safe='')}"
            ),
        )
        for path in SIDE_FILES
    ]


class FactoryParametersResolver(ABC):
    """One strategy for building a descriptor from request parameters."""

    priority: ResolverPriority = ResolverPriority.DEFAULT
    name = ""

    @abstractmethod
    def accept(self, params: Mapping[str, Any]) -> bool:
        """Whether this resolver handles *params*."""

    @abstractmethod
    def create_factory(self, params: Mapping[str, Any]) -> ProjectDescriptor:
        """Build the descriptor; called only after ``accept`` returned True."""

    @staticmethod
    def url_of(params: Mapping[str, Any]) -> str:
        url = params.get(URL_PARAMETER)
        if not url or not isinstance(url, str):
            raise BadRequest("Factory url required")
        return url.strip()


class DirectLinkResolver(FactoryParametersResolver):
    """Handles URLs that end with a devfile name and fetches them as-is."""

    priority = ResolverPriority.HIGHEST
    name = "raw-url"

    def __init__(
        self,
        transport: Transport,
        api_endpoint: str,
        devfile_filenames: Sequence[str] = DEFAULT_DEVFILE_FILENAMES,
    ):
        self.transport = transport
        self.api_endpoint = api_endpoint
        self.devfile_filenames = tuple(devfile_filenames) or DEFAULT_DEVFILE_FILENAMES

    def accept(self, params: Mapping[str, Any]) -> bool:
        url = params.get(URL_PARAMETER)
        if not url or not isinstance(url, str):
            return False
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return False
        clean = url.strip().lower().split("?", 1)[0].split("#", 1)[0]
        return any(clean.endswith(name.lower()) for name in self.devfile_filenames)

    def create_factory(self, params: Mapping[str, Any]) -> ProjectDescriptor:
        url = self.url_of(params)
        authorization = params.get(AUTHORIZATION_PARAMETER)
        headers = {"Authorization": authorization} if authorization else None

        logger.info("Fetching devfile from direct link %s", url)
        resp = self.transport.get(url, headers=headers)
        if resp.status_code != 200:
            provider = detect_provider(url)
            if resp.status_code in (401, 403) and provider is not ProviderType.GENERIC:
                raise authentication_required(self.api_endpoint, provider)
            raise BadRequest(
                f"Failed to fetch devfile from {url}: HTTP {resp.status_code} {resp.reason or ''}".rstrip()
            )

        devfile = parse_devfile(resp.content, url)
        parts = _path_parts(url)
        filename = parts[-1] if parts else ""
        return ProjectDescriptor(
            devfile=devfile,
            name=_DOCUMENT_EXTENSION.sub("", filename) or DEFAULT_NAME,
            source=filename if _DOCUMENT_EXTENSION.search(filename) else None,
        )


class RepositoryLinkResolver(FactoryParametersResolver):
    """Handles bare repository links on GitHub, GitLab, Bitbucket and Azure DevOps."""

    priority = ResolverPriority.DEFAULT
    name = "scm-repository"

    def __init__(self, scm_service: ScmService):
        self.scm_service = scm_service

    @property
    def devfile_filenames(self) -> tuple[str, ...]:
        return self.scm_service.settings.devfile_filenames

    def accept(self, params: Mapping[str, Any]) -> bool:
        url = params.get(URL_PARAMETER)
        if not url or not isinstance(url, str):
            return False
        normalized = normalize_ssh_url(url.strip())
        parsed = urlparse(normalized)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return False
        if detect_provider(normalized) is ProviderType.GENERIC:
            return False
        clean = _clean(normalized)
        return not any(clean.endswith("/" + name.lower()) for name in self.devfile_filenames)

    def create_factory(self, params: Mapping[str, Any]) -> ProjectDescriptor:
        url = self.url_of(params)
        authorization = params.get(AUTHORIZATION_PARAMETER)
        clean_url = url.removesuffix(".git")
        scm_info = ScmInfo(
            clone_url=url,
            provider_name=detect_provider(url).value,
            branch=branch_from_url(url),
        )
        links = scm_side_file_links(self.scm_service.settings.api_endpoint, url)

        try:
            content = self.scm_service.resolve_file(clean_url, None, authorization)
        except AuthenticationRequired:
            if params.get(ERROR_CODE_PARAMETER) == ACCESS_DENIED:
                logger.info("Authorisation declined for %s; returning minimal factory", url)
                return self.minimal_factory(scm_info, links)
            raise
        except FileNotFound as exc:
            logger.info("No devfile found in %s (%s); returning minimal factory", url, exc.message)
            return self.minimal_factory(scm_info, links)

        return ProjectDescriptor(
            devfile=parse_devfile(content, url),
            name=repository_name(url),
            source="devfile.yaml",
            scm_info=scm_info,
            links=links,
        )

    @staticmethod
    def minimal_factory(scm_info: ScmInfo, links: list[Link]) -> ProjectDescriptor:
        return ProjectDescriptor(
            devfile={"schemaVersion": MINIMAL_SCHEMA_VERSION},
            source="repo",
            scm_info=scm_info,
            links=links,
        )
