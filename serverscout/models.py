"""
Value types shared by the candidate source, prober and resolver.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

DEFAULT_PORTS = {"http": 80, "https": 443}


class Provenance:
    """Where the currently resolved endpoint came from."""

    FORCED = "forced"
    MANUAL = "manual"
    CACHE = "cache"
    PROBED = "probed"
    DEFAULT = "default"


class Origin:
    """Tag attached to each candidate handed to the prober."""

    MANUAL = "manual"
    CACHED = "cached"
    NETWORK_RANGE = "network-range"
    STATIC_LIST = "static-list"
    FORCED = "forced"


class ErrorKind:
    """Classification of a failed probe."""

    TIMEOUT = "timeout"
    REFUSED = "refused"
    DNS = "dns"
    PROTOCOL = "protocol"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Endpoint:
    """An immutable backend location, renderable as a base URL."""

    scheme: str
    host: str
    port: Optional[int] = None
    path_prefix: str = "/api/"

    @property
    def origin(self) -> str:
        netloc = self.host
        if self.port is not None and DEFAULT_PORTS.get(self.scheme) != self.port:
            netloc = f"{self.host}:{self.port}"
        return f"{self.scheme}://{netloc}"

    @property
    def base_url(self) -> str:
        return f"{self.origin}{self.path_prefix}"

    def health_url(self, health_path: str = "/api/health") -> str:
        if not health_path.startswith("/"):
            health_path = "/" + health_path
        return f"{self.origin}{health_path}"

    @classmethod
    def from_url(cls, url: str) -> "Endpoint":
        """
        Parse a base URL such as ``http://10.0.0.5:5000/api/``.

        Raises:
            ValueError: If the URL has no scheme or host.
        """
        parsed = urlparse(url.strip())
        if parsed.scheme not in DEFAULT_PORTS or not parsed.hostname:
            raise ValueError(f"Not an http(s) base URL: {url!r}")
        path = parsed.path or "/"
        if not path.endswith("/"):
            path += "/"
        return cls(
            scheme=parsed.scheme,
            host=parsed.hostname,
            port=parsed.port,
            path_prefix=path,
        )

    def __str__(self) -> str:
        return self.base_url


@dataclass(frozen=True)
class Candidate:
    """An endpoint proposed for reachability testing, tagged with its origin."""

    endpoint: Endpoint
    origin: str


@dataclass(frozen=True)
class ProbeResult:
    candidate: Candidate
    reachable: bool
    error_kind: Optional[str] = None
    status_code: Optional[int] = None
    elapsed: float = 0.0
    server_version: Optional[str] = None

    @property
    def endpoint(self) -> Endpoint:
        return self.candidate.endpoint


@dataclass(frozen=True)
class ResolutionState:
    """The single authoritative answer handed out by the resolver."""

    endpoint: Endpoint
    provenance: str
    generation: int
    resolved_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class DeviceNetwork:
    """Best-effort snapshot of the device's current network attachment."""

    transport: str = "unknown"  # wifi, cellular, ethernet, unknown
    ip: Optional[str] = None
    wifi_name: Optional[str] = None
    connected: bool = True
