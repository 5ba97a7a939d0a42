"""Data classes for devfactory."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

FACTORY_VERSION = "4.0"
MINIMAL_SCHEMA_VERSION = "2.3.0"


class ProviderType(Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZURE_DEVOPS = "azure-devops"
    GENERIC = "git"


class ResolverPriority(IntEnum):
    LOWEST = 0
    DEFAULT = 5
    HIGHEST = 10


class FetchStatus(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"


@dataclass(frozen=True)
class ConfigFileLocation:
    filename: str
    resolved_url: str


@dataclass(frozen=True)
class FetchOutcome:
    """Result of a single outbound file fetch."""

    status: FetchStatus
    url: str
    content: bytes = b""
    http_status: int | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK


@dataclass
class Link:
    rel: str
    href: str
    method: str = "GET"

    def to_dict(self) -> dict[str, str]:
        return {"rel": self.rel, "href": self.href, "method": self.method}


@dataclass
class ScmInfo:
    clone_url: str
    provider_name: str
    branch: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"clone_url": self.clone_url, "scm_provider": self.provider_name}
        if self.branch:
            data["branch"] = self.branch
        return data


@dataclass
class ProjectDescriptor:
    """A resolved factory: configuration document plus navigation links."""

    devfile: dict[str, Any]
    version: str = FACTORY_VERSION
    name: str | None = None
    source: str | None = None
    scm_info: ScmInfo | None = None
    links: list[Link] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"v": self.version}
        if self.name is not None:
            data["name"] = self.name
        if self.source is not None:
            data["source"] = self.source
        data["devfile"] = self.devfile
        if self.scm_info is not None:
            data["scm_info"] = self.scm_info.to_dict()
        data["links"] = [link.to_dict() for link in self.links]
        return data


@dataclass(frozen=True)
class Subject:
    """Caller identity handed over by the authentication layer."""

    user_id: str
    user_name: str = ""
    token: str = ""
