"""
Pytest configuration and shared fixtures.
"""

import json
import threading
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import pytest
import requests

from serverscout.config import Settings
from serverscout.logger import get_logger, reset_logger
from serverscout.models import DeviceNetwork
from serverscout.prober import Prober
from serverscout.storage import EndpointCache, MemoryStore


class FakeResponse:
    """Just enough of ``requests.Response`` for the prober."""

    def __init__(self, status_code: int = 200, body: Optional[dict] = None, text: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.headers = headers or {"Content-Type": "application/json"}
        if text is None:
            text = json.dumps(body if body is not None else {"status": "OK", "version": "1.0.0"})
        self.text = text

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    Hosts listed in ``responses`` answer with that response; every other host
    refuses the connection. ``delays`` slows individual hosts down and
    ``on_request`` runs before a host answers.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None, delays: Optional[Dict[str, float]] = None,
                 on_request=None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.on_request = on_request
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def get(self, url, timeout=None, allow_redirects=True, headers=None):
        host = urlparse(url).hostname
        with self._lock:
            self.calls.append({"url": url, "timeout": timeout, "allow_redirects": allow_redirects,
                               "headers": headers})
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if host in self.delays:
                time.sleep(self.delays[host])
            if self.on_request is not None:
                self.on_request(host)
            answer = self.responses.get(host)
            if answer is None:
                raise requests.exceptions.ConnectionError(
                    f"HTTPConnectionPool(host='{host}'): Max retries exceeded "
                    "(Caused by NewConnectionError: [Errno 111] Connection refused)"
                )
            if isinstance(answer, BaseException):
                raise answer
            return answer
        finally:
            with self._lock:
                self.in_flight -= 1

    def probed_hosts(self):
        return [urlparse(c["url"]).hostname for c in self.calls]


@pytest.fixture(autouse=True)
def isolated_logger(tmp_path):
    """Route all logging to a temporary directory, with fresh metrics per test."""
    reset_logger()
    logger = get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield logger
    reset_logger()


@pytest.fixture
def settings() -> Settings:
    """Small, fast configuration: one static host, no real store."""
    return Settings(
        static_hosts=("10.0.0.5",),
        default_url="http://192.168.1.100:5000/api/",
        store=":memory:",
        probe_timeout=0.5,
        max_workers=4,
    )


@pytest.fixture
def cache() -> EndpointCache:
    return EndpointCache(MemoryStore())


@pytest.fixture
def no_network():
    return lambda: DeviceNetwork(transport="unknown", ip=None, connected=False)


def make_prober(settings: Settings, session: FakeSession) -> Prober:
    return Prober.from_settings(settings, session=session)
