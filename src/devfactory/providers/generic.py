"""Fallback resolver for plain HTTP(S) file locations."""

from __future__ import annotations

from urllib.parse import urlparse

import requests

from devfactory.errors import Communication, DevFactoryError, FileNotFound
from devfactory.models import FetchOutcome, FetchStatus, ProviderType
from devfactory.providers.base import FILE_NOT_FOUND_MESSAGE, ScmFileResolver


def build_file_url(repository: str, file_path: str) -> str:
    """Append *file_path* to *repository* unless the URL already contains it."""
    if file_path in repository:
        return repository
    return f"{repository.rstrip('/')}/{file_path.lstrip('/')}"


class GenericFileResolver(ScmFileResolver):
    """Accepts any http(s) URL. There is no OAuth provider to fall back on."""

    provider = ProviderType.GENERIC

    def accept(self, repository: str) -> bool:
        parsed = urlparse(repository.strip())
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)

    def classify(
        self,
        url: str,
        resp: requests.Response,
        authorization: str | None,
    ) -> FetchOutcome:
        status = resp.status_code
        if status == 200:
            return FetchOutcome(FetchStatus.OK, url, content=resp.content, http_status=status)
        if status == 404:
            return FetchOutcome(FetchStatus.NOT_FOUND, url, http_status=status, detail=FILE_NOT_FOUND_MESSAGE)
        return FetchOutcome(
            FetchStatus.ERROR,
            url,
            http_status=status,
            detail=f"HTTP {status}: {resp.reason or ''}".rstrip(),
            content=resp.content[:200],
        )

    def to_error(self, outcome: FetchOutcome, authorization: str | None) -> DevFactoryError:
        if outcome.status is FetchStatus.NOT_FOUND:
            return FileNotFound(FILE_NOT_FOUND_MESSAGE)
        return Communication(
            f"Failed to fetch {outcome.url}",
            status=outcome.http_status,
            body=outcome.content.decode("utf-8", errors="replace"),
        )

    def file_content(
        self,
        repository: str,
        file_path: str | None = None,
        authorization: str | None = None,
    ) -> bytes:
        if file_path:
            return self.fetch_one(build_file_url(repository, file_path), repository, authorization)
        candidates = [(name, build_file_url(repository, name)) for name in self.devfile_filenames]
        return self.fetch_first(candidates, repository, authorization)
