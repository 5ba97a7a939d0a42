"""Tests for the two-stage transport."""

from pathlib import Path
from unittest import mock

import certifi
import pytest
import requests
import responses

from devfactory.config import Settings
from devfactory.errors import Communication
from devfactory.transport import Transport, build_ca_bundle, collect_certificates

URL = "https://git.internal/raw/devfile.yaml"


class TestGet:
    @responses.activate
    def test_first_attempt_succeeds(self):
        responses.add(responses.GET, URL, body="schemaVersion: 2.2.0", status=200)
        resp = Transport().get(URL)
        assert resp.status_code == 200
        assert len(responses.calls) == 1

    @responses.activate
    def test_status_is_not_retried(self):
        responses.add(responses.GET, URL, status=404)
        resp = Transport().get(URL)
        assert resp.status_code == 404
        assert len(responses.calls) == 1

    @responses.activate
    def test_transport_error_retried_with_verified_session(self):
        responses.add(responses.GET, URL, body=requests.exceptions.SSLError("self signed"))
        responses.add(responses.GET, URL, body="ok", status=200)
        resp = Transport().get(URL)
        assert resp.text == "ok"
        assert len(responses.calls) == 2

    @responses.activate
    def test_both_attempts_fail(self):
        responses.add(responses.GET, URL, body=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(Communication, match="Request to .* failed"):
            Transport().get(URL)

    @responses.activate
    def test_sends_headers(self):
        responses.add(responses.GET, URL, status=200)
        Transport().get(URL, headers={"Authorization": "Bearer t"})
        sent = responses.calls[0].request.headers
        assert sent["Authorization"] == "Bearer t"
        assert sent["User-Agent"] == "devfactory/1.0"


def _ok() -> requests.Response:
    resp = requests.Response()
    resp.status_code = 200
    return resp


class TestVerifyIsPerRequest:
    @pytest.fixture(autouse=True)
    def env_bundle(self, monkeypatch):
        monkeypatch.setenv("REQUESTS_CA_BUNDLE", "/etc/ssl/certs/env-bundle.pem")
        monkeypatch.setenv("CURL_CA_BUNDLE", "/etc/ssl/certs/env-bundle.pem")

    def test_first_attempt_stays_unverified(self):
        transport = Transport(ca_bundle="/custom/bundle.pem")
        with mock.patch.object(transport.unverified, "send", return_value=_ok()) as send:
            transport.get(URL)
        assert send.call_args.kwargs["verify"] is False

    def test_retry_uses_mounted_bundle(self):
        transport = Transport(ca_bundle="/custom/bundle.pem")
        with mock.patch.object(
            transport.unverified, "send", side_effect=requests.exceptions.SSLError("self signed")
        ), mock.patch.object(transport.verified, "send", return_value=_ok()) as send:
            assert transport.get(URL).status_code == 200
        assert send.call_args.kwargs["verify"] == "/custom/bundle.pem"


class TestSessions:
    def test_verification_modes(self):
        transport = Transport(ca_bundle="/tmp/bundle.pem")
        assert transport.unverified.verify is False
        assert transport.verified.verify == "/tmp/bundle.pem"

    def test_default_verified_session_uses_system_roots(self):
        assert Transport().verified.verify is True

    def test_from_settings_without_certs(self, tmp_path):
        settings = Settings(self_signed_cert_path=str(tmp_path / "missing"), request_timeout=3)
        transport = Transport.from_settings(settings)
        assert transport.timeout == 3
        assert transport.verified.verify is True


class TestCertificates:
    def test_missing_directory(self, tmp_path):
        assert collect_certificates(tmp_path / "nope") == []

    def test_collects_nested(self, tmp_path):
        (tmp_path / "a.crt").write_bytes(b"CERT-A")
        nested = tmp_path / "sub" / "deeper"
        nested.mkdir(parents=True)
        (nested / "b.pem").write_bytes(b"CERT-B")
        assert sorted(collect_certificates(tmp_path)) == [b"CERT-A", b"CERT-B"]

    def test_depth_limit(self, tmp_path):
        path = tmp_path
        for level in range(6):
            path = path / f"l{level}"
        path.mkdir(parents=True)
        (path / "too-deep.pem").write_bytes(b"DEEP")
        assert collect_certificates(tmp_path) == []

    def test_bundle_includes_certifi_roots(self, tmp_path):
        certs = tmp_path / "certs"
        certs.mkdir()
        (certs / "ca.pem").write_bytes(b"EXTRA-CERT")
        bundle = build_ca_bundle(certs, tmp_path / "bundle.pem")
        data = Path(bundle).read_bytes()
        assert data.startswith(Path(certifi.where()).read_bytes())
        assert data.endswith(b"EXTRA-CERT")

    def test_no_bundle_without_certs(self, tmp_path):
        assert build_ca_bundle(tmp_path) is None

    def test_bundle_path_is_reused(self, tmp_path):
        certs = tmp_path / "certs"
        certs.mkdir()
        (certs / "ca.pem").write_bytes(b"FIRST")
        target = tmp_path / "out" / "bundle.pem"
        target.parent.mkdir()
        assert build_ca_bundle(certs, target) == str(target)
        (certs / "ca.pem").write_bytes(b"SECOND")
        assert build_ca_bundle(certs, target) == str(target)
        assert target.read_bytes().endswith(b"SECOND")
        assert [p.name for p in target.parent.iterdir()] == ["bundle.pem"]
