"""Tests for FactoryService."""

from unittest import mock

import pytest
import responses

from devfactory.config import Settings
from devfactory.credentials import CredentialRegistry
from devfactory.errors import AuthenticationRequired, BadRequest, NoMatchingResolver
from devfactory.factory_resolvers import FactoryParametersResolver
from devfactory.factory_service import NOT_RESOLVABLE_MESSAGE, FactoryService
from devfactory.models import Link, ProjectDescriptor, ResolverPriority
from devfactory.scm_service import ScmService
from devfactory.token_store import MemoryTokenStore
from devfactory.transport import Transport

API = "http://che.example.com"
DEVFILE = "schemaVersion: 2.2.0\n"


def _service(**kwargs) -> FactoryService:
    settings = Settings(api_endpoint=API, **kwargs)
    return FactoryService(settings, ScmService(settings, Transport()))


def _registry(service: FactoryService, token_source=None) -> CredentialRegistry:
    kwargs = {"token_source": token_source} if token_source else {}
    return CredentialRegistry(MemoryTokenStore(), service.scm_service.api_client_for, **kwargs)


class _StaticResolver(FactoryParametersResolver):
    name = "static"

    def __init__(self, priority, descriptor=None, accepts=True, explode=False):
        self.priority = priority
        self.descriptor = descriptor or ProjectDescriptor(devfile={"schemaVersion": "2.2.0"})
        self.accepts = accepts
        self.explode = explode

    def accept(self, params):
        if self.explode:
            raise RuntimeError("broken accept")
        return self.accepts

    def create_factory(self, params):
        return self.descriptor


class TestRegistration:
    def test_sorted_by_priority(self):
        service = _service()
        low = _StaticResolver(ResolverPriority.LOWEST)
        service.register_resolver(low)
        priorities = [r.priority for r in service.resolvers]
        assert priorities == sorted(priorities, reverse=True)
        assert service.resolvers[-1] is low
        assert service.resolvers[0].name == "raw-url"

    def test_accept_errors_are_skipped(self):
        service = _service()
        service.resolvers = []
        service.register_resolver(_StaticResolver(ResolverPriority.HIGHEST, explode=True))
        fallback = _StaticResolver(ResolverPriority.LOWEST)
        service.register_resolver(fallback)
        descriptor = service.resolve_factory({"url": "https://example.com/x"})
        assert descriptor is fallback.descriptor


class TestResolveFactory:
    def test_empty_params(self):
        with pytest.raises(BadRequest, match="Factory build parameters required"):
            _service().resolve_factory({})

    def test_no_resolver_with_url_names_shapes(self):
        with pytest.raises(NoMatchingResolver) as exc_info:
            _service().resolve_factory({"url": "https://example.com/team/app"})
        message = exc_info.value.message
        assert message.startswith(NOT_RESOLVABLE_MESSAGE)
        assert "devfile.yaml" in message
        assert "repository URL" in message

    def test_no_resolver_without_url(self):
        with pytest.raises(NoMatchingResolver) as exc_info:
            _service().resolve_factory({"something": "else"})
        assert exc_info.value.message == NOT_RESOLVABLE_MESSAGE

    @responses.activate
    def test_direct_link_scenario(self):
        url = "https://example.com/devfile.yaml"
        responses.add(responses.GET, url, body=DEVFILE)
        data = _service().resolve_factory({"url": url}).to_dict()
        assert len(responses.calls) == 1
        assert data["v"] == "4.0"
        assert data["links"] == [
            {
                "rel": "self",
                "href": f"{API}/api/factory/resolver?url=https%3A%2F%2Fexample.com%2Fdevfile.yaml",
                "method": "GET",
            }
        ]

    @responses.activate
    def test_repository_scenario_prepends_self_link(self):
        raw = "https://raw.githubusercontent.com/eclipse-che/che-dashboard/HEAD"
        responses.add(responses.GET, f"{raw}/devfile.yaml", body=DEVFILE)
        descriptor = _service().resolve_factory(
            {"url": "https://github.com/eclipse-che/che-dashboard"}
        )
        rels = [link.rel for link in descriptor.links]
        assert rels[0] == "self"
        assert rels.count("self") == 1
        assert len(rels) == 5
        assert [c.request.url for c in responses.calls] == [f"{raw}/devfile.yaml"]

    def test_existing_self_link_kept(self):
        own = Link(rel="self", href="http://elsewhere")
        service = _service()
        service.register_resolver(
            _StaticResolver(
                ResolverPriority.HIGHEST + 1,
                ProjectDescriptor(devfile={"schemaVersion": "2.2.0"}, links=[own]),
            )
        )
        descriptor = service.resolve_factory({"url": "https://example.com/x"})
        assert descriptor.links == [own]

    def test_validate_requires_version(self):
        service = _service()
        service.register_resolver(
            _StaticResolver(
                ResolverPriority.HIGHEST + 1,
                ProjectDescriptor(devfile={}, version=""),
            )
        )
        with pytest.raises(BadRequest, match="version"):
            service.resolve_factory({"url": "https://example.com/x", "validate": "true"})
        # validation is opt-in
        service.resolve_factory({"url": "https://example.com/x"})

    @responses.activate
    def test_context_authorization_forwarded(self):
        url = "https://example.com/devfile.yaml"
        responses.add(responses.GET, url, body=DEVFILE)
        service = _service()
        context = _registry(service).context("Bearer abc")
        service.resolve_factory({"url": url}, context)
        assert responses.calls[0].request.headers["Authorization"] == "Bearer abc"

    @responses.activate
    def test_authentication_propagates(self):
        raw = "https://raw.githubusercontent.com/o/r/HEAD"
        responses.add(responses.GET, f"{raw}/devfile.yaml", status=404)
        with pytest.raises(AuthenticationRequired):
            _service().resolve_factory({"url": "https://github.com/o/r"})

    @responses.activate
    def test_access_denied_records_rejection(self):
        raw = "https://raw.githubusercontent.com/o/r/HEAD"
        responses.add(responses.GET, f"{raw}/devfile.yaml", status=404)
        service = _service()
        context = _registry(service).context(None)
        descriptor = service.resolve_factory(
            {"url": "https://github.com/o/r", "error_code": "access_denied"}, context
        )
        assert descriptor.source == "repo"
        assert context.rejections.is_stored("github")


class TestRefreshToken:
    def test_url_required(self):
        service = _service()
        with pytest.raises(BadRequest):
            service.refresh_token(None, _registry(service).context("Bearer x"))

    def test_skips_declined_provider(self):
        service = _service()
        context = _registry(service).context("Bearer x")
        context.rejections.store("github")
        with mock.patch.object(context.tokens, "get_and_store") as get_and_store:
            service.refresh_token("https://github.com/o/r", context)
        get_and_store.assert_not_called()

    def test_lazy_store_by_default(self):
        service = _service()
        context = _registry(service).context("Bearer x")
        with mock.patch.object(context.tokens, "get_and_store") as get_and_store, \
             mock.patch.object(context.tokens, "force_refresh") as force_refresh:
            service.refresh_token("https://github.com/o/r", context)
        get_and_store.assert_called_once_with("https://github.com", "Bearer x")
        force_refresh.assert_not_called()

    def test_force_refresh_setting(self):
        service = _service(force_refresh_token=True)
        context = _registry(service).context("Bearer x")
        with mock.patch.object(context.tokens, "force_refresh") as force_refresh:
            service.refresh_token("git@gitlab.com:g/p.git", context)
        force_refresh.assert_called_once_with("https://gitlab.com", "Bearer x")

    def test_generic_host_is_ignored(self):
        service = _service()
        context = _registry(service).context("Bearer x")
        with mock.patch.object(context.tokens, "get_and_store") as get_and_store:
            service.refresh_token("https://example.com/team/app", context)
        get_and_store.assert_not_called()

    @responses.activate
    def test_rejected_caller_token_requires_authentication(self):
        responses.add(responses.GET, "https://api.github.com/user", status=401)
        service = _service()
        context = _registry(service).context("Bearer x")
        with pytest.raises(AuthenticationRequired) as exc_info:
            service.refresh_token("https://github.com/o/r", context)
        assert exc_info.value.provider == "github"

    @responses.activate
    def test_stores_token_from_source(self):
        responses.add(responses.GET, "https://api.github.com/user", json={"login": "me"})
        service = _service()
        registry = _registry(service, token_source=lambda server, authorization: "issued-token")
        context = registry.context("Bearer x")
        service.refresh_token("https://github.com/o/r", context)
        assert context.tokens.get_token("https://github.com") == "issued-token"

    @responses.activate
    def test_stores_caller_token_by_default(self):
        responses.add(responses.GET, "https://api.github.com/user", json={"login": "me"})
        service = _service()
        context = _registry(service).context("Bearer gh-token")
        service.refresh_token("https://github.com/o/r", context)
        assert context.tokens.get_token("https://github.com") == "gh-token"
        assert responses.calls[0].request.headers["Authorization"] == "token gh-token"


class TestStoredTokens:
    @responses.activate
    def test_stored_token_used_for_discovery(self):
        raw = "https://raw.githubusercontent.com/o/r/HEAD"
        responses.add(responses.GET, f"{raw}/devfile.yaml", body=DEVFILE)
        service = _service()
        registry = _registry(service)
        context = registry.context("Bearer che-session")
        context.tokens.store.save(f"{context.subject.user_id}|https://github.com", "stored-pat")
        service.resolve_factory({"url": "https://github.com/o/r"}, context)
        assert responses.calls[0].request.headers["Authorization"] == "Bearer stored-pat"

    @responses.activate
    def test_caller_header_without_stored_token(self):
        raw = "https://raw.githubusercontent.com/o/r/HEAD"
        responses.add(responses.GET, f"{raw}/devfile.yaml", body=DEVFILE)
        service = _service()
        context = _registry(service).context("Bearer che-session")
        service.resolve_factory({"url": "https://github.com/o/r"}, context)
        assert responses.calls[0].request.headers["Authorization"] == "Bearer che-session"
