"""FastAPI application exposing factory resolution and SCM file access."""

from __future__ import annotations

import logging
import posixpath
import traceback
from typing import Any

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from devfactory.config import Settings, load_settings
from devfactory.credentials import CredentialRegistry, TokenSource
from devfactory.errors import BadRequest, DevFactoryError
from devfactory.factory_service import FactoryService
from devfactory.logging import configure_logging
from devfactory.scm_service import ScmService
from devfactory.token_store import TokenStore, open_token_store
from devfactory.transport import Transport

logger = logging.getLogger(__name__)

UNAUTHORIZED_BODY = {"error": "Unauthorized", "message": "Authentication required"}
MISSING_PARAMETERS_MESSAGE = "Factory build parameters required"


class FactoryResolverRequest(BaseModel):
    """Body of ``POST /api/factory/resolver``; unknown keys pass through to resolvers."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    url: str | None = None
    validate_factory: bool = Field(default=False, alias="validate")
    error_code: str | None = None


class HealthResponse(BaseModel):
    status: str


def create_app(
    settings: Settings | None = None,
    transport: Transport | None = None,
    token_store: TokenStore | None = None,
    token_source: TokenSource | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Defaults to ``load_settings()``.
        transport: Outbound HTTP transport. Built from *settings* when omitted.
        token_store: Where personal access tokens are kept.
        token_source: Collaborator that issues a token for an SCM server
            origin during token refresh. Defaults to the caller's own bearer
            token.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    transport = transport or Transport.from_settings(settings)

    scm_service = ScmService(settings, transport)
    factory_service = FactoryService(settings, scm_service)
    registry_args: dict[str, Any] = {}
    if token_source is not None:
        registry_args["token_source"] = token_source
    credentials = CredentialRegistry(
        token_store or open_token_store(settings.token_store),
        scm_service.api_client_for,
        **registry_args,
    )

    app = FastAPI(title="devfactory", version="1.0.0")
    app.state.settings = settings
    app.state.scm_service = scm_service
    app.state.factory_service = factory_service
    app.state.credentials = credentials

    @app.exception_handler(DevFactoryError)
    async def devfactory_error_handler(_: Request, exc: DevFactoryError) -> JSONResponse:
        content = exc.to_dict()
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message, exc_info=exc)
            if settings.dev_mode:
                content["details"] = "".join(traceback.format_exception(exc))
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_validation_error(exc).to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_: Request, exc: Exception) -> JSONResponse:
        logger.error("Unexpected error", exc_info=exc)
        content: dict[str, Any] = {"error": "Internal Server Error", "message": str(exc)}
        if settings.dev_mode:
            content["details"] = "".join(traceback.format_exception(exc))
        return JSONResponse(status_code=500, content=content)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/api/factory/resolver")
    def resolve_factory(
        payload: FactoryResolverRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        params = payload.model_dump(by_alias=True, exclude_defaults=True)
        context = credentials.context(authorization)
        descriptor = factory_service.resolve_factory(params, context)
        return descriptor.to_dict()

    @app.post("/api/factory/token/refresh", status_code=204)
    def refresh_token(
        url: str | None = Query(default=None),
        authorization: str | None = Header(default=None),
    ) -> Response:
        if not authorization:
            return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
        factory_service.refresh_token(url, credentials.context(authorization))
        return Response(status_code=204)

    @app.get("/api/scm/resolve")
    def resolve_scm_file(
        repository: str | None = Query(default=None),
        file: str | None = Query(default=None),
        authorization: str | None = Header(default=None),
    ) -> Response:
        if not authorization:
            return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
        if not repository:
            raise BadRequest("Repository parameter is required")
        if not file:
            raise BadRequest("File parameter is required")
        context = credentials.context(authorization)
        content = scm_service.resolve_file(repository, file, context.authorization_for(repository))
        filename = posixpath.basename(file.rstrip("/")) or file
        return Response(
            content=content,
            media_type="application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


def _validation_error(exc: RequestValidationError) -> BadRequest:
    """Turn a request validation failure into the API's 400 error."""
    errors = exc.errors()
    if not errors or any(
        err.get("type") == "missing" and tuple(err.get("loc", ())) == ("body",) for err in errors
    ):
        return BadRequest(MISSING_PARAMETERS_MESSAGE)
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
    return BadRequest(f"Invalid value for '{field}': {first.get('msg', 'invalid')}")
