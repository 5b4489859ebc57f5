"""
Candidate generation.

Produces endpoint guesses in precedence order. The ordering is a ranking
heuristic: it puts the likeliest backend locations first so a discovery pass
finds them early, but offers no guarantee that any guess is live.
"""

from typing import Iterable, Iterator, List, Optional

from .config import Settings
from .errors import InvalidOverrideFormat, StoreError
from .logger import get_logger
from .models import Candidate, Endpoint, Origin
from .normalize import endpoint_for_host, is_usable_device_ip, network_prefix
from .schema import override_endpoint
from .storage import EndpointCache

LOOPBACK_HOST = "127.0.0.1"


class CandidateSource:
    def __init__(self, settings: Settings, cache: Optional[EndpointCache] = None, logger=None):
        self.settings = settings
        self.cache = cache
        self.logger = logger or get_logger()

    def candidates(
        self,
        device_ip: Optional[str] = None,
        include_cached: bool = True,
        exclude: Iterable[Endpoint] = (),
    ) -> Iterator[Candidate]:
        """
        Yield candidates in precedence order, each endpoint at most once.

        Endpoints in ``exclude`` are never yielded, whatever section would
        produce them.

        Every call returns a fresh generator, so a sequence can be restarted
        by calling again. Cache reads happen lazily, on first iteration.
        """
        seen = set(exclude)
        for candidate in self._ordered(device_ip, include_cached):
            if candidate.endpoint in seen:
                continue
            seen.add(candidate.endpoint)
            yield candidate

    def network_range_hosts(self, device_ip: Optional[str]) -> List[str]:
        """Same-subnet guesses: gateway-likely octets first, then a short sequential scan."""
        if not is_usable_device_ip(device_ip):
            return []
        prefix = network_prefix(device_ip)
        own_octet = int(device_ip.strip().split(".")[-1])

        octets: List[int] = []
        for octet in list(self.settings.last_octets) + list(
            range(self.settings.scan_start, self.settings.scan_end + 1)
        ):
            if 0 < octet < 255 and octet != own_octet and octet not in octets:
                octets.append(octet)
        return [f"{prefix}.{octet}" for octet in octets]

    def _endpoint(self, host: str, port: Optional[int] = None) -> Endpoint:
        return endpoint_for_host(
            host,
            scheme=self.settings.scheme,
            port=self.settings.port if port is None else port,
            path_prefix=self.settings.path_prefix,
        )

    def _stored(self, read, default):
        """Read from the cache, treating an unreadable store as empty."""
        if self.cache is None:
            return default
        try:
            return read()
        except StoreError as e:
            self.logger.warning("Store unreadable, skipping stored candidates", error=str(e))
            return default

    def _ordered(self, device_ip: Optional[str], include_cached: bool) -> Iterator[Candidate]:
        manual = self._stored(lambda: self.cache.get_manual(), None)
        if manual:
            try:
                yield Candidate(override_endpoint(manual, self.settings), Origin.MANUAL)
            except InvalidOverrideFormat as e:
                self.logger.warning("Ignoring stored manual server", value=manual, error=str(e))

        if include_cached:
            cached = self._stored(lambda: self.cache.get(), None)
            if cached is not None:
                yield Candidate(cached, Origin.CACHED)

        for host in self.network_range_hosts(device_ip):
            yield Candidate(self._endpoint(host), Origin.NETWORK_RANGE)

        static_hosts = list(self._stored(lambda: self.cache.host_history(), []))
        static_hosts += [h for h in self.settings.static_hosts if h not in static_hosts]
        for host in static_hosts:
            yield Candidate(self._endpoint(host), Origin.STATIC_LIST)

        for port in self.settings.fallback_ports:
            for host in static_hosts:
                yield Candidate(self._endpoint(host, port), Origin.STATIC_LIST)

        yield Candidate(self._endpoint(LOOPBACK_HOST), Origin.STATIC_LIST)
