"""OAuth re-authentication links and provider detection."""

from __future__ import annotations

import re
from urllib.parse import urlencode, urlparse

from devfactory.errors import AuthenticationRequired
from devfactory.models import ProviderType

PROVIDER_SCOPES = {
    ProviderType.GITHUB: "repo",
    ProviderType.GITLAB: "api write_repository",
    ProviderType.BITBUCKET: "repository",
    ProviderType.AZURE_DEVOPS: "vso.code",
}

_AZURE_HOST_MARKERS = ("dev.azure.com", "visualstudio.com", "azure.com")
_SSH_RE = re.compile(r"^git@([^:]+):(.+)$")


def normalize_ssh_url(url: str) -> str:
    """Turn ``git@host:owner/repo.git`` into ``https://host/owner/repo.git``."""
    match = _SSH_RE.match(url)
    if match:
        return f"https://{match.group(1)}/{match.group(2)}"
    return url


def hostname_of(url: str) -> str:
    return (urlparse(normalize_ssh_url(url.strip())).hostname or "").lower()


def detect_provider(url: str) -> ProviderType:
    """Map a repository URL onto a provider by hostname."""
    host = hostname_of(url)
    if "github" in host:
        return ProviderType.GITHUB
    if "gitlab" in host:
        return ProviderType.GITLAB
    if "bitbucket" in host:
        return ProviderType.BITBUCKET
    if any(marker in host for marker in _AZURE_HOST_MARKERS):
        return ProviderType.AZURE_DEVOPS
    return ProviderType.GENERIC


def build_authenticate_url(
    api_endpoint: str,
    provider: str,
    scope: str = "repository",
    request_method: str = "POST",
    signature_method: str = "rsa",
) -> str:
    query = urlencode(
        {
            "oauth_provider": provider,
            "scope": scope,
            "request_method": request_method,
            "signature_method": signature_method,
        }
    )
    return f"{api_endpoint.rstrip('/')}/api/oauth/authenticate?{query}"


def authentication_required(
    api_endpoint: str,
    provider: ProviderType,
    message: str = "SCM Authentication required",
) -> AuthenticationRequired:
    """Build the 401 signal for *provider*, including its re-auth link."""
    url = build_authenticate_url(api_endpoint, provider.value, PROVIDER_SCOPES[provider])
    return AuthenticationRequired(provider.value, url, message=message)
