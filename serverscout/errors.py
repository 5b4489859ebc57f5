"""
Exception taxonomy for endpoint resolution.

Only ``InvalidOverrideFormat`` is meant to reach an operator. Probe errors are
folded into ``ProbeResult.error_kind`` and ``NoCandidateReachable`` is caught
by the resolver, which falls back to the cached or default endpoint.
"""

from typing import Dict, Optional

from .models import ErrorKind


class ServerScoutError(Exception):
    """Base class for all serverscout errors."""
    pass


class NoCandidateReachable(ServerScoutError):
    """Raised when a discovery pass finds no live backend."""

    def __init__(self, attempted: int, errors_by_kind: Optional[Dict[str, int]] = None):
        self.attempted = attempted
        self.errors_by_kind = dict(errors_by_kind or {})
        summary = ", ".join(f"{k}={v}" for k, v in sorted(self.errors_by_kind.items()))
        super().__init__(
            f"No reachable server among {attempted} candidates"
            + (f" ({summary})" if summary else "")
        )


class ProbeError(ServerScoutError):
    """A single health-check request failed."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, url: str, detail: str = "", status_code: Optional[int] = None):
        self.url = url
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{self.kind}: {url}" + (f" ({detail})" if detail else ""))


class ProbeTimeout(ProbeError):
    kind = ErrorKind.TIMEOUT


class ProbeRefused(ProbeError):
    kind = ErrorKind.REFUSED


class ProbeDnsFailure(ProbeError):
    kind = ErrorKind.DNS


class ProbeProtocolError(ProbeError):
    kind = ErrorKind.PROTOCOL


class InvalidOverrideFormat(ServerScoutError, ValueError):
    """Operator supplied something that is not a usable server address."""

    def __init__(self, value: str, errors):
        self.value = value
        self.errors = list(errors)
        super().__init__(f"Invalid server address {value!r}: " + "; ".join(self.errors))


class StoreError(ServerScoutError):
    """A persistent store could not be written."""
    pass
