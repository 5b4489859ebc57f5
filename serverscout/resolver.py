"""
Endpoint resolution policy.

``Resolver.resolve()`` always answers immediately from the highest-precedence
source available:

    forced endpoint  >  manual override  >  cached endpoint  >  hard default

and, when the answer is only provisional, schedules a background discovery
pass whose probe-confirmed winner is written to the cache for the next call.
Every override or reset bumps a generation token; a pass started under an
older token drops its result instead of writing it.
"""

import threading
from typing import Callable, Optional, Union

from .candidates import CandidateSource
from .config import Settings
from .errors import NoCandidateReachable, StoreError
from .logger import get_logger
from .models import Candidate, DeviceNetwork, Endpoint, Origin, ProbeResult, Provenance, ResolutionState
from .network import detect_device_network
from .prober import Prober
from .retry import is_transient_failure, retry_until
from .scheduler import Scheduler, ThreadScheduler
from .schema import override_endpoint
from .storage import EndpointCache, open_store


class Resolver:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[EndpointCache] = None,
        prober: Optional[Prober] = None,
        candidate_source: Optional[CandidateSource] = None,
        scheduler: Optional[Scheduler] = None,
        network_provider: Optional[Callable[[], DeviceNetwork]] = None,
        logger=None,
        retry_delay: float = 0.5,
    ):
        self.settings = settings or Settings()
        self.logger = logger or get_logger()
        self.cache = cache or EndpointCache(open_store(self.settings.store))
        self.prober = prober or Prober.from_settings(self.settings, logger=self.logger)
        self.candidate_source = candidate_source or CandidateSource(self.settings, self.cache, logger=self.logger)
        self.scheduler = scheduler or ThreadScheduler(logger=self.logger)
        self.network_provider = network_provider or detect_device_network
        self.retry_delay = retry_delay

        # Configuration errors surface here, never from resolve()
        self._default = self.settings.default_endpoint
        self._forced = self.settings.forced_endpoint

        self._lock = threading.RLock()
        self._generation = 0
        self._armed_generation: Optional[int] = None
        self._state: Optional[ResolutionState] = None
        self._device_network: Optional[DeviceNetwork] = None
        self._manual: Optional[Endpoint] = self._load_manual()

    # Public API

    @property
    def state(self) -> Optional[ResolutionState]:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def resolve(self) -> Endpoint:
        """Return the endpoint to use right now. Never blocks on probing, never raises."""
        revalidate = None
        with self._lock:
            if self._forced is not None:
                return self._settle(self._forced, Provenance.FORCED).endpoint
            if self._manual is not None:
                return self._settle(self._manual, Provenance.MANUAL).endpoint

            state = self._state
            if (
                state is not None
                and state.provenance == Provenance.PROBED
                and state.generation == self._generation
            ):
                return state.endpoint

            cached = self._read_cache()
            if cached is not None:
                endpoint = self._settle(cached, Provenance.CACHE).endpoint
                revalidate = cached
            else:
                endpoint = self._settle(self._default, Provenance.DEFAULT).endpoint
            generation = self._arm()

        if generation is not None:
            self._submit(generation, revalidate)
        return endpoint

    def override(self, value: str) -> Endpoint:
        """
        Pin resolution to an operator-supplied address. No probing happens.

        Raises:
            InvalidOverrideFormat: If ``value`` is not a usable address.
        """
        endpoint = override_endpoint(value, self.settings)
        with self._lock:
            self._generation += 1
            self._manual = endpoint
            try:
                self.cache.set_manual(value.strip())
                self.cache.set(endpoint)
            except StoreError as e:
                self.logger.error("Could not persist manual server", error=str(e))
            self._state = ResolutionState(endpoint, Provenance.MANUAL, self._generation)
        self.logger.info("Manual server set", endpoint=endpoint.base_url, generation=self._generation)
        return endpoint

    def clear_override(self) -> None:
        """Drop the override and the cached endpoint; the next resolve() starts from the default."""
        self._forget(clear_history=False)
        self.logger.info("Manual server cleared", generation=self._generation)

    def reset(self) -> None:
        """Like clear_override(), and also forget every host that ever answered."""
        self._forget(clear_history=True)
        self.logger.info("Network configuration reset", generation=self._generation)

    def refresh(self) -> None:
        """Start a new discovery pass now, superseding any pass in flight."""
        with self._lock:
            if self._forced is not None or self._manual is not None:
                return
            self._generation += 1
            generation = self._arm()
            revalidate = self._read_cache()
        if generation is not None:
            self._submit(generation, revalidate)

    def on_network_changed(self, network: DeviceNetwork) -> None:
        """Connectivity changed: rediscover against the new network unless pinned."""
        with self._lock:
            self._device_network = network
        self.logger.info(
            "Network changed",
            connected=network.connected,
            transport=network.transport,
            ip=network.ip,
            wifi=network.wifi_name,
        )
        if not network.connected:
            self.logger.warning("Network is disconnected, keeping current endpoint")
            return
        self.refresh()

    def test_connection(self, endpoint: Union[Endpoint, str]) -> bool:
        """Health-check an endpoint (or operator-typed address) on demand."""
        if isinstance(endpoint, str):
            endpoint = override_endpoint(endpoint, self.settings)
        return self.prober.test_connection(endpoint)

    def discover_now(self) -> Optional[ProbeResult]:
        """Run one full discovery pass on the calling thread and return the winner, if any."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._armed_generation = generation
        return self._discover(generation, revalidate=None)

    def close(self) -> None:
        self.scheduler.shutdown(wait=False)

    # Internals

    def _load_manual(self) -> Optional[Endpoint]:
        try:
            value = self.cache.get_manual()
        except StoreError as e:
            self.logger.error("Could not read manual server", error=str(e))
            return None
        if not value:
            return None
        try:
            return override_endpoint(value, self.settings)
        except ValueError as e:
            self.logger.warning("Ignoring stored manual server", value=value, error=str(e))
            return None

    def _read_cache(self) -> Optional[Endpoint]:
        try:
            return self.cache.get()
        except StoreError as e:
            self.logger.error("Could not read cached endpoint", error=str(e))
            return None

    def _settle(self, endpoint: Endpoint, provenance: str) -> ResolutionState:
        state = self._state
        if (
            state is None
            or state.endpoint != endpoint
            or state.provenance != provenance
            or state.generation != self._generation
        ):
            state = ResolutionState(endpoint, provenance, self._generation)
            self._state = state
            self.logger.info("Resolved endpoint", endpoint=endpoint.base_url, provenance=provenance)
        return state

    def _forget(self, clear_history: bool) -> None:
        with self._lock:
            self._generation += 1
            self._manual = None
            self._state = None
            try:
                self.cache.clear_manual()
                self.cache.clear()
                if clear_history:
                    self.cache.clear_history()
            except StoreError as e:
                self.logger.error("Could not clear stored endpoint", error=str(e))

    def _arm(self) -> Optional[int]:
        """Claim the current generation for one discovery pass; None if already claimed."""
        if self._armed_generation == self._generation:
            return None
        self._armed_generation = self._generation
        return self._generation

    def _submit(self, generation: int, revalidate: Optional[Endpoint]) -> None:
        self.scheduler.submit(
            lambda: self._discover(generation, revalidate),
            name=f"discovery-{generation}",
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _current_network(self) -> DeviceNetwork:
        if self._device_network is not None:
            return self._device_network
        network = self.network_provider()
        self.logger.debug("Device network", transport=network.transport, ip=network.ip, wifi=network.wifi_name)
        return network

    def _discover(self, generation: int, revalidate: Optional[Endpoint]) -> Optional[ProbeResult]:
        self.logger.record_pass("started")

        if revalidate is not None:
            result = retry_until(
                lambda: self.prober.probe(Candidate(revalidate, Origin.CACHED)),
                accept=lambda r: r.reachable,
                should_retry=is_transient_failure,
                max_retries=max(0, self.settings.revalidate_attempts - 1),
                base_delay=self.retry_delay,
            )
            if result.reachable:
                self._commit(generation, result)
                return result
            self.logger.info(
                "Cached endpoint not answering, scanning",
                endpoint=revalidate.base_url,
                kind=result.error_kind,
            )

        network = self._current_network()
        try:
            result = self.prober.first_reachable(
                self.candidate_source.candidates(
                    network.ip,
                    include_cached=revalidate is None,
                    exclude=(revalidate,) if revalidate is not None else (),
                ),
                should_continue=lambda: self._is_current(generation),
            )
        except NoCandidateReachable as e:
            if not self._is_current(generation):
                self.logger.record_pass("discarded")
                self.logger.info("Discovery pass superseded", generation=generation)
                return None
            self.logger.record_pass("empty")
            self.logger.warning("No server found, keeping current endpoint", detail=str(e))
            return None

        self._commit(generation, result)
        return result

    def _commit(self, generation: int, result: ProbeResult) -> bool:
        """Write a probe-confirmed endpoint to the cache unless the pass is stale or resolution is pinned."""
        endpoint = result.endpoint
        with self._lock:
            if not self._is_current(generation) or self._manual is not None or self._forced is not None:
                self.logger.record_pass("discarded")
                self.logger.info(
                    "Discarding discovery result",
                    endpoint=endpoint.base_url,
                    generation=generation,
                    current=self._generation,
                )
                return False
            try:
                self.cache.set(endpoint)
                self.cache.record_host(endpoint.host)
                self.logger.record_cache_write()
            except StoreError as e:
                self.logger.error("Could not cache discovered endpoint", error=str(e))
            self._state = ResolutionState(endpoint, Provenance.PROBED, generation)
        self.logger.record_pass("succeeded")
        self.logger.info(
            "Server found",
            endpoint=endpoint.base_url,
            origin=result.candidate.origin,
            elapsed=round(result.elapsed, 3),
            version=result.server_version,
        )
        return True


# Process-wide handle for callers that want one shared resolver
_resolver: Optional[Resolver] = None
_resolver_lock = threading.Lock()


def initialize(settings: Optional[Settings] = None, **kwargs) -> Resolver:
    """Create the process-wide resolver, replacing any previous one."""
    global _resolver
    with _resolver_lock:
        if _resolver is not None:
            _resolver.close()
        _resolver = Resolver(settings=settings or Settings.from_env(), **kwargs)
        return _resolver


def get_resolver() -> Resolver:
    if _resolver is None:
        raise RuntimeError("serverscout is not initialized; call initialize() first")
    return _resolver


def teardown() -> None:
    global _resolver
    with _resolver_lock:
        if _resolver is not None:
            _resolver.close()
        _resolver = None
