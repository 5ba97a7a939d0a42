"""Factory resolution and token refresh."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from devfactory.config import Settings
from devfactory.credentials import ResolutionContext
from devfactory.errors import BadRequest, NoMatchingResolver
from devfactory.factory_resolvers import (
    ACCESS_DENIED,
    AUTHORIZATION_PARAMETER,
    ERROR_CODE_PARAMETER,
    URL_PARAMETER,
    DirectLinkResolver,
    FactoryParametersResolver,
    RepositoryLinkResolver,
)
from devfactory.models import Link, ProjectDescriptor, ProviderType
from devfactory.oauth import detect_provider, normalize_ssh_url
from devfactory.scm_service import ScmService, server_origin

logger = logging.getLogger(__name__)

NOT_RESOLVABLE_MESSAGE = (
    "Cannot build factory with any of the provided parameters. "
    "Please check parameters correctness, and resend query."
)
SUPPORTED_SHAPES_HINT = (
    "Supported URLs are a direct link to a devfile (ending with {names}) "
    "or a GitHub, GitLab, Bitbucket or Azure DevOps repository URL."
)


class FactoryService:
    """Selects a resolver by priority and finalises the descriptor."""

    def __init__(self, settings: Settings, scm_service: ScmService):
        self.settings = settings
        self.scm_service = scm_service
        self.resolvers: list[FactoryParametersResolver] = []
        self.register_resolver(
            DirectLinkResolver(scm_service.transport, settings.api_endpoint, settings.devfile_filenames)
        )
        self.register_resolver(RepositoryLinkResolver(scm_service))

    def register_resolver(self, resolver: FactoryParametersResolver) -> None:
        self.resolvers.append(resolver)
        # stable sort keeps registration order within a tier
        self.resolvers.sort(key=lambda r: r.priority, reverse=True)

    def _select(self, params: Mapping[str, Any]) -> FactoryParametersResolver | None:
        for resolver in self.resolvers:
            try:
                if resolver.accept(params):
                    return resolver
            except Exception:
                logger.warning("Resolver %s failed in accept()", resolver.name, exc_info=True)
        return None

    def resolve_factory(
        self,
        params: Mapping[str, Any],
        context: ResolutionContext | None = None,
    ) -> ProjectDescriptor:
        """Build a ProjectDescriptor from request parameters.

        Args:
            params: ``url`` plus optional ``validate``, ``error_code`` and
                ``authorization`` entries.
            context: Caller credentials. When *params* carries no
                authorization, a token stored for the URL's SCM server is
                used, then the caller's own Authorization header.

        Raises:
            BadRequest: empty parameters or an unparseable devfile.
            NoMatchingResolver: no resolver accepts the parameters.
            AuthenticationRequired: the repository needs an OAuth flow.
        """
        if not params:
            raise BadRequest("Factory build parameters required")
        params = dict(params)
        url = params.get(URL_PARAMETER)
        if context is not None and not params.get(AUTHORIZATION_PARAMETER):
            authorization = context.authorization_for(url if isinstance(url, str) else None)
            if authorization:
                params[AUTHORIZATION_PARAMETER] = authorization

        if params.get(ERROR_CODE_PARAMETER) == ACCESS_DENIED and url and context is not None:
            provider = detect_provider(url)
            if provider is not ProviderType.GENERIC:
                context.rejections.store(provider.value)

        resolver = self._select(params)
        if resolver is None:
            message = NOT_RESOLVABLE_MESSAGE
            if url:
                names = ", ".join(self.settings.devfile_filenames)
                message = f"{message} {SUPPORTED_SHAPES_HINT.format(names=names)}"
            raise NoMatchingResolver(message)

        logger.info("Resolving factory for %s with %s resolver", url, resolver.name)
        descriptor = resolver.create_factory(params)

        if _truthy(params.get("validate")):
            self.validate(descriptor)
        return self.inject_links(descriptor, url)

    @staticmethod
    def validate(descriptor: ProjectDescriptor) -> None:
        if not descriptor.version:
            raise BadRequest("Factory version is required")

    def inject_links(self, descriptor: ProjectDescriptor, url: str | None) -> ProjectDescriptor:
        """Prepend a self link unless the resolver already supplied one."""
        if not url or any(link.rel == "self" for link in descriptor.links):
            return descriptor
        href = f"{self.settings.api_endpoint}/api/factory/resolver?url={quote(url, safe='')}"
        descriptor.links.insert(0, Link(rel="self", href=href))
        return descriptor

    def refresh_token(self, url: str | None, context: ResolutionContext) -> None:
        """Make sure the caller holds a token for the provider hosting *url*."""
        if not url:
            raise BadRequest("Factory url required")
        provider = detect_provider(url)
        if provider is ProviderType.GENERIC:
            logger.info("No OAuth provider for %s; nothing to refresh", url)
            return
        if context.rejections.is_stored(provider.value):
            logger.info("Authorisation for %s was declined; skipping token refresh", provider.value)
            return

        scm_server_url = server_origin(normalize_ssh_url(url))
        if self.settings.force_refresh_token:
            context.tokens.force_refresh(scm_server_url, context.authorization)
        else:
            context.tokens.get_and_store(scm_server_url, context.authorization)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)
