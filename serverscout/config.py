"""
Runtime configuration.

Every value can be overridden with a ``SERVERSCOUT_*`` environment variable
(or a ``.env`` file in the working directory):

    SERVERSCOUT_PORT              backend port for guessed hosts (5000)
    SERVERSCOUT_SCHEME            http or https (http)
    SERVERSCOUT_PATH_PREFIX       API prefix of the base URL (/api/)
    SERVERSCOUT_HEALTH_PATH       health-check path (/api/health)
    SERVERSCOUT_DEFAULT_URL       hard default returned before discovery
    SERVERSCOUT_FORCED_URL        pin every resolution to this URL
    SERVERSCOUT_STATIC_HOSTS      comma-separated historical hosts
    SERVERSCOUT_FALLBACK_PORTS    comma-separated extra ports for static hosts
    SERVERSCOUT_LAST_OCTETS       prioritised last octets for subnet guesses
    SERVERSCOUT_SCAN_START/END    sequential last-octet scan range (2..20)
    SERVERSCOUT_PROBE_TIMEOUT     seconds per health check (2.0)
    SERVERSCOUT_MAX_WORKERS       probes in flight per pass (6, max 8)
    SERVERSCOUT_REVALIDATE_ATTEMPTS  probes of a cached endpoint (2)
    SERVERSCOUT_STORE             JSON path or sqlite:/// URL
    SERVERSCOUT_LOG_LEVEL         DEBUG, INFO, ... (INFO)
    SERVERSCOUT_LOG_DIR           log file directory (logs)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from .env import load_env
from .models import Endpoint

ENV_PREFIX = "SERVERSCOUT_"

# Addresses the backend has historically been reachable at: developer
# machines, home routers and phone hotspots.
DEFAULT_STATIC_HOSTS: Tuple[str, ...] = (
    "192.168.29.2",
    "192.168.29.100",
    "192.168.1.100",
    "192.168.0.100",
    "10.0.0.100",
    "172.20.10.1",
    "192.168.43.1",
    "192.168.1.28",
    "192.168.1.1",
    "192.168.0.1",
    "10.0.0.1",
    "172.20.10.2",
    "192.168.43.2",
)

DEFAULT_LAST_OCTETS: Tuple[int, ...] = (1, 100, 10, 50, 101, 254)

MAX_WORKERS_CEILING = 8


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    port: int = 5000
    scheme: str = "http"
    path_prefix: str = "/api/"
    health_path: str = "/api/health"
    default_url: str = "http://192.168.1.100:5000/api/"
    forced_url: Optional[str] = None
    static_hosts: Tuple[str, ...] = DEFAULT_STATIC_HOSTS
    fallback_ports: Tuple[int, ...] = ()
    last_octets: Tuple[int, ...] = DEFAULT_LAST_OCTETS
    scan_start: int = 2
    scan_end: int = 20
    probe_timeout: float = 2.0
    max_workers: int = 6
    revalidate_attempts: int = 2
    store: str = "data/serverscout.json"
    log_level: str = "INFO"
    log_dir: str = "logs"
    user_agent: Optional[str] = None

    def __post_init__(self):
        if not 1 <= self.max_workers <= MAX_WORKERS_CEILING:
            object.__setattr__(
                self, "max_workers", max(1, min(self.max_workers, MAX_WORKERS_CEILING))
            )
        if self.probe_timeout <= 0:
            raise ValueError("probe_timeout must be positive")
        if self.scan_start > self.scan_end:
            raise ValueError("scan_start must not exceed scan_end")

    @property
    def default_endpoint(self) -> Endpoint:
        return Endpoint.from_url(self.default_url)

    @property
    def forced_endpoint(self) -> Optional[Endpoint]:
        return Endpoint.from_url(self.forced_url) if self.forced_url else None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, load_dotenv_file: bool = True) -> "Settings":
        """
        Build settings from ``SERVERSCOUT_*`` variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        if environ is None:
            if load_dotenv_file:
                load_env()
            environ = os.environ

        def get(name: str) -> Optional[str]:
            value = environ.get(ENV_PREFIX + name)
            return value.strip() if value is not None and value.strip() != "" else None

        def get_int(name: str) -> Optional[int]:
            value = get(name)
            if value is None:
                return None
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}")

        def get_int_list(name: str) -> Optional[Tuple[int, ...]]:
            value = get(name)
            if value is None:
                return None
            try:
                return tuple(int(part) for part in _split_csv(value))
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name} must be a comma-separated list of integers")

        kwargs = {}
        for name, attr in (("SCHEME", "scheme"), ("PATH_PREFIX", "path_prefix"),
                           ("HEALTH_PATH", "health_path"), ("DEFAULT_URL", "default_url"),
                           ("FORCED_URL", "forced_url"), ("STORE", "store"),
                           ("LOG_LEVEL", "log_level"), ("LOG_DIR", "log_dir")):
            value = get(name)
            if value is not None:
                kwargs[attr] = value

        for name, attr in (("PORT", "port"), ("SCAN_START", "scan_start"),
                           ("SCAN_END", "scan_end"), ("MAX_WORKERS", "max_workers"),
                           ("REVALIDATE_ATTEMPTS", "revalidate_attempts")):
            value = get_int(name)
            if value is not None:
                kwargs[attr] = value

        for name, attr in (("FALLBACK_PORTS", "fallback_ports"), ("LAST_OCTETS", "last_octets")):
            value = get_int_list(name)
            if value is not None:
                kwargs[attr] = value

        hosts = get("STATIC_HOSTS")
        if hosts is not None:
            kwargs["static_hosts"] = _split_csv(hosts)

        timeout = get("PROBE_TIMEOUT")
        if timeout is not None:
            try:
                kwargs["probe_timeout"] = float(timeout)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}PROBE_TIMEOUT must be a number, got {timeout!r}")

        return cls(**kwargs)
