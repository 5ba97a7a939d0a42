"""Tests for the factory parameter resolvers."""

from urllib.parse import parse_qs, urlparse

import pytest
import responses

from devfactory.config import Settings
from devfactory.errors import AuthenticationRequired, BadRequest
from devfactory.factory_resolvers import (
    DirectLinkResolver,
    RepositoryLinkResolver,
    branch_from_url,
    parse_devfile,
    repository_name,
    scm_side_file_links,
)
from devfactory.models import ResolverPriority
from devfactory.scm_service import ScmService
from devfactory.transport import Transport

API = "http://che.example.com"
FILENAMES = ("devfile.yaml", ".devfile.yaml")
RAW = "https://raw.githubusercontent.com/eclipse-che/che-dashboard/HEAD"
DEVFILE = "schemaVersion: 2.2.0\nmetadata:\n  name: dashboard\n"


def _direct() -> DirectLinkResolver:
    return DirectLinkResolver(Transport(), API, FILENAMES)


def _repository() -> RepositoryLinkResolver:
    return RepositoryLinkResolver(ScmService(Settings(api_endpoint=API), Transport()))


class TestParseDevfile:
    def test_json(self):
        assert parse_devfile(b'{"schemaVersion": "2.2.0"}', "x") == {"schemaVersion": "2.2.0"}

    def test_yaml(self):
        assert parse_devfile(DEVFILE, "x")["metadata"] == {"name": "dashboard"}

    def test_api_version_marker(self):
        assert parse_devfile("apiVersion: 1.0.0\n", "x") == {"apiVersion": "1.0.0"}

    def test_missing_marker(self):
        with pytest.raises(BadRequest, match="missing schemaVersion"):
            parse_devfile("metadata: {}\n", "x")

    def test_not_a_mapping(self):
        with pytest.raises(BadRequest, match="JSON or YAML"):
            parse_devfile("- a\n- b\n", "x")

    def test_invalid_yaml(self):
        with pytest.raises(BadRequest, match="JSON or YAML"):
            parse_devfile("key: [unclosed\n", "x")

    def test_empty(self):
        with pytest.raises(BadRequest, match="Empty content"):
            parse_devfile(b"  \n", "https://example.com/devfile.yaml")


class TestUrlHelpers:
    def test_branch_from_tree(self):
        assert branch_from_url("https://github.com/o/r/tree/dev") == "dev"

    def test_branch_from_blob(self):
        assert branch_from_url("https://github.com/o/r/blob/main/devfile.yaml") == "main"

    def test_no_branch(self):
        assert branch_from_url("https://github.com/o/r") is None

    def test_repository_name(self):
        assert repository_name("https://github.com/o/che-dashboard.git") == "che-dashboard"
        assert repository_name("https://github.com/o") == "factory"

    def test_side_file_links(self):
        links = scm_side_file_links(API + "/", "https://github.com/o/r")
        assert [link.rel for link in links] == [
            "devfile.yaml content",
            ".che/che-editor.yaml content",
            ".che/che-theia-plugins.yaml content",
            ".vscode/extensions.json content",
        ]
        href = urlparse(links[1].href)
        assert href.path == "/api/scm/resolve"
        assert parse_qs(href.query) == {
            "repository": ["https://github.com/o/r"],
            "file": [".che/che-editor.yaml"],
        }
        assert all(link.method == "GET" for link in links)


class TestDirectLinkAccept:
    def test_priority(self):
        assert _direct().priority is ResolverPriority.HIGHEST

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/devfile.yaml",
            "https://example.com/path/DEVFILE.YAML?token=1#frag",
            "https://github.com/user/repo/blob/main/devfile.yaml",
            "https://example.com/.devfile.yaml",
        ],
    )
    def test_accepts_devfile_links(self, url):
        assert _direct().accept({"url": url})

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"url": ""},
            {"url": 42},
            {"url": "https://github.com/user/repo"},
            {"url": "https://example.com/devfile.yml"},
            {"url": "file:///tmp/devfile.yaml"},
        ],
    )
    def test_rejects_other_input(self, params):
        assert not _direct().accept(params)


class TestDirectLinkCreate:
    @responses.activate
    def test_fetches_exactly_once(self):
        url = "https://example.com/devfile.yaml"
        responses.add(responses.GET, url, body=DEVFILE)
        descriptor = _direct().create_factory({"url": url})
        assert len(responses.calls) == 1
        assert responses.calls[0].request.url == url
        assert descriptor.devfile["schemaVersion"] == "2.2.0"
        assert descriptor.name == "devfile"
        assert descriptor.source == "devfile.yaml"
        assert descriptor.links == []
        assert descriptor.scm_info is None

    @responses.activate
    def test_forwards_authorization(self):
        url = "https://example.com/devfile.yaml"
        responses.add(responses.GET, url, body=DEVFILE)
        _direct().create_factory({"url": url, "authorization": "Bearer t"})
        assert responses.calls[0].request.headers["Authorization"] == "Bearer t"

    @responses.activate
    def test_http_error(self):
        url = "https://example.com/devfile.yaml"
        responses.add(responses.GET, url, status=404)
        with pytest.raises(BadRequest, match="HTTP 404"):
            _direct().create_factory({"url": url})

    @responses.activate
    def test_provider_auth_error(self):
        url = "https://raw.githubusercontent.com/o/r/HEAD/devfile.yaml"
        responses.add(responses.GET, url, status=401)
        with pytest.raises(AuthenticationRequired):
            _direct().create_factory({"url": url})

    @responses.activate
    def test_invalid_document(self):
        url = "https://example.com/devfile.yaml"
        responses.add(responses.GET, url, body="just text")
        with pytest.raises(BadRequest):
            _direct().create_factory({"url": url})


class TestRepositoryLinkAccept:
    def test_priority(self):
        assert _repository().priority is ResolverPriority.DEFAULT

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/eclipse-che/che-dashboard",
            "https://github.com/eclipse-che/che-dashboard.git",
            "git@github.com:eclipse-che/che-dashboard.git",
            "https://gitlab.com/group/subgroup/project/-/tree/release-7",
            "https://bitbucket.org/ws/repo",
            "https://dev.azure.com/org/project/_git/repo",
        ],
    )
    def test_accepts_repository_links(self, url):
        assert _repository().accept({"url": url})

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/user/repo/blob/main/devfile.yaml",
            "https://github.com/user/repo/blob/main/.devfile.yaml?plain=1",
            "https://example.com/team/app",
            "",
        ],
    )
    def test_rejects(self, url):
        assert not _repository().accept({"url": url})


class TestRepositoryLinkCreate:
    @responses.activate
    def test_discovers_devfile(self):
        responses.add(responses.GET, f"{RAW}/devfile.yaml", status=404)
        responses.add(responses.GET, f"{RAW}/.devfile.yaml", body=DEVFILE)
        descriptor = _repository().create_factory(
            {"url": "https://github.com/eclipse-che/che-dashboard.git", "authorization": "Bearer t"}
        )
        assert descriptor.devfile["metadata"]["name"] == "dashboard"
        assert descriptor.name == "che-dashboard"
        assert descriptor.source == "devfile.yaml"
        assert descriptor.scm_info.clone_url == "https://github.com/eclipse-che/che-dashboard.git"
        assert descriptor.scm_info.provider_name == "github"
        assert len(descriptor.links) == 4

    @responses.activate
    def test_missing_devfile_gives_minimal_descriptor(self):
        responses.add(responses.GET, "https://raw.githubusercontent.com/o/r/dev/devfile.yaml", status=404)
        responses.add(responses.GET, "https://raw.githubusercontent.com/o/r/dev/.devfile.yaml", status=404)
        descriptor = _repository().create_factory(
            {"url": "https://github.com/o/r/tree/dev", "authorization": "Bearer t"}
        )
        data = descriptor.to_dict()
        assert data["source"] == "repo"
        assert data["devfile"] == {"schemaVersion": "2.3.0"}
        assert data["scm_info"] == {
            "clone_url": "https://github.com/o/r/tree/dev",
            "scm_provider": "github",
            "branch": "dev",
        }
        assert len(data["links"]) == 4
        assert "name" not in data

    @responses.activate
    def test_authentication_is_re_raised(self):
        responses.add(responses.GET, f"{RAW}/devfile.yaml", status=404)
        with pytest.raises(AuthenticationRequired):
            _repository().create_factory({"url": "https://github.com/eclipse-che/che-dashboard"})

    @responses.activate
    def test_access_denied_gives_minimal_descriptor(self):
        responses.add(responses.GET, f"{RAW}/devfile.yaml", status=404)
        descriptor = _repository().create_factory(
            {"url": "https://github.com/eclipse-che/che-dashboard", "error_code": "access_denied"}
        )
        assert descriptor.source == "repo"

    @responses.activate
    def test_unparseable_devfile(self):
        responses.add(responses.GET, f"{RAW}/devfile.yaml", body="metadata: {}\n")
        with pytest.raises(BadRequest, match="missing schemaVersion"):
            _repository().create_factory({"url": "https://github.com/eclipse-che/che-dashboard"})
