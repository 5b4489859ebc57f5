"""
Reachability probing against the backend health-check endpoint.

The only protocol contract with the server: ``GET /api/health`` answers
HTTP 200 on a live, compatible backend. Redirects are never followed, so a
captive portal bouncing requests to its login page cannot pass as a server.
"""

import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional

import requests
from bs4 import BeautifulSoup

from . import __version__
from .errors import (
    NoCandidateReachable,
    ProbeDnsFailure,
    ProbeError,
    ProbeProtocolError,
    ProbeRefused,
    ProbeTimeout,
)
from .logger import get_logger
from .models import Candidate, Endpoint, Origin, ProbeResult

DEFAULT_TIMEOUT = 2.0
DEFAULT_MAX_WORKERS = 6

DNS_FAILURE_KEYWORDS = [
    "nameresolutionerror",
    "failed to resolve",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
]


def _is_dns_failure(exc: BaseException) -> bool:
    """Walk the exception chain looking for a name-resolution failure."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if type(exc).__name__ in ("gaierror", "NameResolutionError"):
            return True
        text = str(exc).lower()
        if any(keyword in text for keyword in DNS_FAILURE_KEYWORDS):
            return True
        exc = exc.__cause__ or exc.__context__
    return False


def _portal_title(resp) -> Optional[str]:
    """Return a page title when a 200 answer is an HTML page rather than the health document."""
    content_type = (resp.headers.get("Content-Type") or "").lower()
    body = resp.text or ""
    if "html" not in content_type and not body.lstrip().startswith("<"):
        return None
    soup = BeautifulSoup(body, "html.parser")
    title = soup.find("title")
    if title and title.get_text(strip=True):
        return title.get_text(strip=True)
    return "untitled HTML page"


def _server_version(resp) -> Optional[str]:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("version") is not None:
        return str(payload["version"])
    return None


class Prober:
    """Health-checks candidates, singly or as a bounded-concurrency discovery pass."""

    def __init__(
        self,
        health_path: str = "/api/health",
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = None,
        logger=None,
    ):
        self.health_path = health_path
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self.session = session or requests.Session()
        self.user_agent = user_agent or f"serverscout/{__version__}"
        self.logger = logger or get_logger()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "Prober":
        return cls(
            health_path=settings.health_path,
            timeout=settings.probe_timeout,
            max_workers=settings.max_workers,
            user_agent=settings.user_agent,
            **kwargs,
        )

    def _fetch_health(self, url: str, timeout: float):
        """
        GET the health URL and insist on a plain HTTP 200.

        Raises:
            ProbeTimeout, ProbeRefused, ProbeDnsFailure, ProbeProtocolError,
            or ProbeError for anything unclassified.
        """
        try:
            resp = self.session.get(
                url,
                timeout=timeout,
                allow_redirects=False,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            )
        # ConnectTimeout is also a ConnectionError, so timeouts go first
        except requests.exceptions.Timeout as e:
            raise ProbeTimeout(url, str(e)) from e
        except requests.exceptions.ConnectionError as e:
            if _is_dns_failure(e):
                raise ProbeDnsFailure(url, str(e)) from e
            raise ProbeRefused(url, str(e)) from e
        except requests.exceptions.RequestException as e:
            raise ProbeError(url, str(e)) from e

        if resp.status_code != 200:
            location = resp.headers.get("Location")
            detail = f"HTTP {resp.status_code}" + (f" -> {location}" if location else "")
            raise ProbeProtocolError(url, detail, status_code=resp.status_code)

        title = _portal_title(resp)
        if title is not None:
            raise ProbeProtocolError(url, f"HTML page '{title}'", status_code=resp.status_code)
        return resp

    def probe(self, candidate: Candidate, timeout: Optional[float] = None) -> ProbeResult:
        """Health-check one candidate. Never raises for network reasons."""
        url = candidate.endpoint.health_url(self.health_path)
        started = time.monotonic()
        try:
            resp = self._fetch_health(url, timeout or self.timeout)
        except ProbeError as e:
            elapsed = time.monotonic() - started
            self.logger.record_probe(False, e.kind)
            self.logger.debug("Probe failed", url=url, kind=e.kind, detail=e.detail[:200])
            return ProbeResult(
                candidate=candidate,
                reachable=False,
                error_kind=e.kind,
                status_code=e.status_code,
                elapsed=elapsed,
            )

        elapsed = time.monotonic() - started
        self.logger.record_probe(True)
        version = _server_version(resp)
        self.logger.debug("Probe succeeded", url=url, elapsed=round(elapsed, 3), version=version)
        return ProbeResult(
            candidate=candidate,
            reachable=True,
            status_code=resp.status_code,
            elapsed=elapsed,
            server_version=version,
        )

    def test_connection(self, endpoint: Endpoint) -> bool:
        """Direct health check for manual "test connection" actions."""
        return self.probe(Candidate(endpoint, Origin.MANUAL)).reachable

    def first_reachable(
        self,
        candidates: Iterable[Candidate],
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> ProbeResult:
        """
        Run one discovery pass over ``candidates``.

        At most ``max_workers`` probes are in flight. Results are consumed in
        candidate order, so the winner is the highest-precedence reachable
        candidate, not the fastest one to answer.

        Raises:
            NoCandidateReachable: If every candidate failed or the pass was
                told to stop before finding one.
        """
        source = iter(candidates)
        window = deque()
        errors_by_kind: Dict[str, int] = {}
        attempted = 0
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="serverscout-probe")

        def fill():
            while len(window) < self.max_workers:
                if should_continue is not None and not should_continue():
                    return
                candidate = next(source, None)
                if candidate is None:
                    return
                window.append(pool.submit(self.probe, candidate))

        try:
            fill()
            while window:
                result = window.popleft().result()
                attempted += 1
                if result.reachable:
                    return result
                errors_by_kind[result.error_kind] = errors_by_kind.get(result.error_kind, 0) + 1
                fill()
            raise NoCandidateReachable(attempted, errors_by_kind)
        finally:
            for future in window:
                future.cancel()
            pool.shutdown(wait=False)
