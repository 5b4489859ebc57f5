"""
Tests for health-check probing and discovery passes.
"""

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from serverscout.errors import (
    NoCandidateReachable,
    ProbeDnsFailure,
    ProbeError,
    ProbeProtocolError,
    ProbeRefused,
    ProbeTimeout,
)
from serverscout.models import Candidate, Endpoint, ErrorKind, Origin
from serverscout.prober import Prober

from conftest import FakeResponse, FakeSession


def _candidate(host, port=5000, origin=Origin.STATIC_LIST):
    return Candidate(Endpoint("http", host, port, "/api/"), origin)


class TestProbeClassification:
    """Test how single probes are judged."""

    def test_http_200_json_is_reachable(self):
        session = FakeSession({"10.0.0.5": FakeResponse(200, {"status": "OK", "version": "1.0.0"})})
        result = Prober(session=session).probe(_candidate("10.0.0.5"))

        assert result.reachable
        assert result.error_kind is None
        assert result.status_code == 200
        assert result.server_version == "1.0.0"

    def test_request_shape(self):
        """GET the fixed health path with the timeout and no redirects."""
        session = FakeSession({"10.0.0.5": FakeResponse()})
        Prober(session=session, timeout=1.5).probe(_candidate("10.0.0.5"))

        call = session.calls[0]
        assert call["url"] == "http://10.0.0.5:5000/api/health"
        assert call["timeout"] == 1.5
        assert call["allow_redirects"] is False
        assert call["headers"]["User-Agent"].startswith("serverscout/")

    def test_redirect_is_protocol_error(self):
        session = FakeSession({"10.0.0.5": FakeResponse(
            302, text="", headers={"Location": "http://portal.example/login"}
        )})
        result = Prober(session=session).probe(_candidate("10.0.0.5"))

        assert not result.reachable
        assert result.error_kind == ErrorKind.PROTOCOL
        assert result.status_code == 302

    def test_non_200_is_protocol_error(self):
        for status in (204, 404, 500, 503):
            session = FakeSession({"10.0.0.5": FakeResponse(status)})
            result = Prober(session=session).probe(_candidate("10.0.0.5"))
            assert result.error_kind == ErrorKind.PROTOCOL
            assert result.status_code == status

    def test_html_200_is_protocol_error(self):
        """A captive portal answering 200 with a login page is not a server."""
        page = "<html><head><title>Hotel WiFi Login</title></head><body><form></form></body></html>"
        session = FakeSession({"10.0.0.5": FakeResponse(200, text=page, headers={"Content-Type": "text/html"})})
        result = Prober(session=session).probe(_candidate("10.0.0.5"))

        assert not result.reachable
        assert result.error_kind == ErrorKind.PROTOCOL

    def test_non_json_200_without_version(self):
        session = FakeSession({"10.0.0.5": FakeResponse(200, text="OK", headers={"Content-Type": "text/plain"})})
        result = Prober(session=session).probe(_candidate("10.0.0.5"))
        assert result.reachable
        assert result.server_version is None

    def test_refused(self):
        result = Prober(session=FakeSession()).probe(_candidate("10.0.0.5"))
        assert not result.reachable
        assert result.error_kind == ErrorKind.REFUSED

    def test_timeout(self):
        session = FakeSession({"10.0.0.5": requests.exceptions.ReadTimeout("read timed out")})
        assert Prober(session=session).probe(_candidate("10.0.0.5")).error_kind == ErrorKind.TIMEOUT

    def test_connect_timeout_is_timeout_not_refused(self):
        """ConnectTimeout is also a ConnectionError; it must still count as a timeout."""
        session = FakeSession({"10.0.0.5": requests.exceptions.ConnectTimeout("connect timed out")})
        assert Prober(session=session).probe(_candidate("10.0.0.5")).error_kind == ErrorKind.TIMEOUT

    def test_dns_failure_from_cause(self):
        error = requests.exceptions.ConnectionError("Max retries exceeded")
        error.__cause__ = socket.gaierror(-2, "Name or service not known")
        session = FakeSession({"server.lan": error})
        result = Prober(session=session).probe(_candidate("server.lan"))
        assert result.error_kind == ErrorKind.DNS

    def test_dns_failure_from_message(self):
        error = requests.exceptions.ConnectionError(
            "HTTPConnectionPool(host='server.lan', port=5000): Max retries exceeded "
            "(Caused by NameResolutionError(\"Failed to resolve 'server.lan'\"))"
        )
        session = FakeSession({"server.lan": error})
        assert Prober(session=session).probe(_candidate("server.lan")).error_kind == ErrorKind.DNS

    def test_other_request_errors_are_unknown(self):
        session = FakeSession({"10.0.0.5": requests.exceptions.TooManyRedirects("loop")})
        assert Prober(session=session).probe(_candidate("10.0.0.5")).error_kind == ErrorKind.UNKNOWN

    def test_error_classes_cover_every_kind(self):
        kinds = [cls.kind for cls in (ProbeTimeout, ProbeRefused, ProbeDnsFailure, ProbeProtocolError, ProbeError)]
        assert sorted(kinds) == sorted(
            [ErrorKind.TIMEOUT, ErrorKind.REFUSED, ErrorKind.DNS, ErrorKind.PROTOCOL, ErrorKind.UNKNOWN]
        )

    def test_probe_metrics_recorded(self, isolated_logger):
        session = FakeSession({"10.0.0.5": FakeResponse()})
        prober = Prober(session=session)
        prober.probe(_candidate("10.0.0.5"))
        prober.probe(_candidate("10.0.0.6"))

        metrics = isolated_logger.get_metrics()
        assert metrics["probes_attempted"] == 2
        assert metrics["probes_reachable"] == 1
        assert metrics["errors_by_kind"] == {"refused": 1}

    def test_test_connection(self):
        session = FakeSession({"10.0.0.5": FakeResponse()})
        prober = Prober(session=session)
        assert prober.test_connection(Endpoint("http", "10.0.0.5", 5000)) is True
        assert prober.test_connection(Endpoint("http", "10.0.0.6", 5000)) is False


class TestDiscoveryPass:
    """Test first_reachable over many candidates."""

    def test_first_reachable_in_precedence_order(self):
        """A slow high-precedence server beats a fast low-precedence one."""
        session = FakeSession(
            responses={"10.0.0.2": FakeResponse(), "10.0.0.3": FakeResponse()},
            delays={"10.0.0.2": 0.2},
        )
        prober = Prober(session=session, max_workers=4)
        candidates = [_candidate("10.0.0.1"), _candidate("10.0.0.2"), _candidate("10.0.0.3")]

        result = prober.first_reachable(candidates)

        assert result.endpoint.host == "10.0.0.2"

    def test_none_reachable_raises(self):
        prober = Prober(session=FakeSession(), max_workers=2)
        candidates = [_candidate(f"10.0.0.{i}") for i in range(1, 6)]

        with pytest.raises(NoCandidateReachable) as exc_info:
            prober.first_reachable(candidates)

        assert exc_info.value.attempted == 5
        assert exc_info.value.errors_by_kind == {"refused": 5}

    def test_empty_candidates(self):
        with pytest.raises(NoCandidateReachable) as exc_info:
            Prober(session=FakeSession()).first_reachable([])
        assert exc_info.value.attempted == 0

    def test_bounded_concurrency(self):
        hosts = [f"10.0.0.{i}" for i in range(1, 13)]
        session = FakeSession(delays={h: 0.05 for h in hosts})
        prober = Prober(session=session, max_workers=3)

        with pytest.raises(NoCandidateReachable):
            prober.first_reachable(_candidate(h) for h in hosts)

        assert session.max_in_flight <= 3
        assert len(session.calls) == 12

    def test_stops_submitting_after_winner(self):
        hosts = [f"10.0.0.{i}" for i in range(1, 21)]
        session = FakeSession({"10.0.0.1": FakeResponse()})
        prober = Prober(session=session, max_workers=2)

        result = prober.first_reachable(_candidate(h) for h in hosts)

        assert result.endpoint.host == "10.0.0.1"
        assert len(session.calls) <= 2

    def test_should_continue_halts_pass(self):
        hosts = [f"10.0.0.{i}" for i in range(1, 21)]
        session = FakeSession()
        prober = Prober(session=session, max_workers=1)
        budget = [3]

        def should_continue():
            budget[0] -= 1
            return budget[0] >= 0

        with pytest.raises(NoCandidateReachable):
            prober.first_reachable((_candidate(h) for h in hosts), should_continue=should_continue)

        assert len(session.calls) == 3


class _HealthHandler(BaseHTTPRequestHandler):
    mode = "ok"

    def do_GET(self):
        if self.path != "/api/health":
            self.send_response(404)
            self.end_headers()
            return
        if self.mode == "redirect":
            self.send_response(302)
            self.send_header("Location", "/login")
            self.end_headers()
            return
        body = json.dumps({"status": "OK", "version": "1.0.0"}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def health_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _HealthHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    _HealthHandler.mode = "ok"


@pytest.fixture
def local_session():
    session = requests.Session()
    session.trust_env = False  # No proxies for loopback
    yield session
    session.close()


class TestAgainstLocalServer:
    """Test with a real HTTP server on loopback."""

    def test_live_server(self, health_server, local_session):
        port = health_server.server_address[1]
        result = Prober(session=local_session).probe(_candidate("127.0.0.1", port))
        assert result.reachable
        assert result.server_version == "1.0.0"

    def test_redirect_not_followed(self, health_server, local_session):
        _HealthHandler.mode = "redirect"
        port = health_server.server_address[1]
        result = Prober(session=local_session).probe(_candidate("127.0.0.1", port))
        assert not result.reachable
        assert result.status_code == 302
        assert result.error_kind == ErrorKind.PROTOCOL

    def test_closed_port_is_refused(self, local_session):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]
        result = Prober(session=local_session, timeout=1.0).probe(_candidate("127.0.0.1", port))
        assert not result.reachable
        assert result.error_kind == ErrorKind.REFUSED
