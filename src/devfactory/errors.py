"""Exception hierarchy shared by the resolvers and the HTTP layer."""

from __future__ import annotations

from typing import Any

OAUTH_VERSION = "2.0"
BODY_EXCERPT_LENGTH = 200


class DevFactoryError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ConfigError(DevFactoryError):
    """Raised when the environment holds an unusable setting."""


class BadRequest(DevFactoryError):
    """Raised for missing or invalid parameters and unparseable devfiles."""

    status_code = 400
    error = "Bad Request"


class NoMatchingResolver(BadRequest):
    """Raised when no factory resolver accepts the parameters."""


class FileNotFound(DevFactoryError):
    """Raised when the requested file does not exist in the repository."""

    status_code = 404
    error = "Not Found"


class NoMatchingFile(FileNotFound):
    """Raised when every candidate filename/branch combination failed."""

    def __init__(self, attempts: list[str]):
        self.attempts = list(attempts)
        super().__init__(f"No devfile found. Tried: {', '.join(self.attempts)}")


class Communication(DevFactoryError):
    """Raised for network failures and unexpected upstream statuses."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        self.status = status
        self.body = body[:BODY_EXCERPT_LENGTH]
        if status is not None:
            message = f"{message}: HTTP {status}"
            if self.body:
                message = f"{message} - {self.body}"
        super().__init__(message)


class AuthenticationRequired(DevFactoryError):
    """Raised when the caller must complete an OAuth flow for a provider."""

    status_code = 401
    error = "Unauthorized"

    def __init__(
        self,
        provider: str,
        authenticate_url: str,
        message: str = "SCM Authentication required",
        oauth_version: str = OAUTH_VERSION,
    ):
        super().__init__(message)
        self.provider = provider
        self.authenticate_url = authenticate_url
        self.oauth_version = oauth_version

    def to_dict(self) -> dict[str, Any]:
        return {
            "errorCode": self.status_code,
            "message": self.message,
            "attributes": {
                "oauth_provider": self.provider,
                "oauth_version": self.oauth_version,
                "oauth_authentication_url": self.authenticate_url,
            },
        }
