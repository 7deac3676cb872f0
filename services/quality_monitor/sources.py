"""
Metric sources for the monitored system.

A source samples one dimension and returns a plain dict of raw values. The
collector owns timeouts, fallbacks and snapshot assembly; sources only measure.
"""
import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import aiohttp
import psutil


logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when a metric source cannot produce a sample."""
    pass


class MetricSource(ABC):
    """Samples one dimension of the monitored system."""

    name: str = "unknown"

    @abstractmethod
    async def sample(self) -> Dict[str, Any]:
        """Return raw values for this dimension."""


class SimulatedSource(MetricSource):
    """
    Source producing healthy production baselines with jitter.

    Values can be pinned with ``inject`` to rehearse a breach, and the next
    samples can be made to fail with ``inject_failure``.

    Usage:
        source = SimulatedPerformanceSource(seed=7)
        source.inject(hub_load_time=1250.0)   # sustained hub breach
        ...
        source.clear()                        # condition clears
    """

    ranges: Dict[str, Tuple[float, float]] = {}

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)
        self._overrides: Dict[str, float] = {}
        self._failure: Optional[Exception] = None

    def inject(self, **values: float) -> None:
        """Pin signals to fixed values until cleared."""
        unknown = set(values) - set(self.ranges)
        if unknown:
            raise ValueError(f"Unknown {self.name} signals: {sorted(unknown)}")
        self._overrides.update(values)

    def inject_failure(self, error: Optional[Exception] = None) -> None:
        """Make every sample fail until cleared."""
        self._failure = error or SourceError(f"{self.name} source unavailable")

    def clear(self, *signals: str) -> None:
        """Clear injected values (all when no signal is named) and failures."""
        if signals:
            for signal in signals:
                self._overrides.pop(signal, None)
        else:
            self._overrides.clear()
        self._failure = None

    async def sample(self) -> Dict[str, Any]:
        if self._failure is not None:
            raise self._failure

        values = {
            signal: self._random.uniform(low, high)
            for signal, (low, high) in self.ranges.items()
        }
        values.update(self._overrides)
        return values


class SimulatedPerformanceSource(SimulatedSource):
    name = "performance"
    ranges = {
        "hub_load_time": (650.0, 750.0),
        "world_transition_time": (1200.0, 1400.0),
        "memory_usage": (240.0, 250.0),
        "response_time": (80.0, 120.0),
        "throughput": (95.0, 105.0),
    }


class SimulatedComplianceSource(SimulatedSource):
    name = "compliance"
    ranges = {
        "gdpr_compliance": (98.0, 100.0),
        "cultural_adaptation": (96.0, 100.0),
        "municipal_standards": (99.0, 100.0),
        "accessibility": (97.0, 100.0),
    }


class SimulatedReliabilitySource(SimulatedSource):
    name = "reliability"
    ranges = {
        "uptime": (99.95, 100.0),
        "error_rate": (0.0, 0.1),
        "recovery_time": (50.0, 150.0),
    }


class HttpProbePerformanceSource(MetricSource):
    """
    Measures performance of a live deployment.

    Hub and world transition latency are timed GETs of the given URLs,
    response time is the mean of ``probes`` health-check GETs and throughput
    is the rate those probes completed at. Memory is the resident set size of
    the service process ``pid`` read through psutil.
    """

    name = "performance"

    def __init__(
        self,
        hub_url: str,
        transition_url: str,
        health_url: str,
        pid: Optional[int] = None,
        probes: int = 5,
        request_timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        if probes < 1:
            raise ValueError("probes must be at least 1")
        self.hub_url = hub_url
        self.transition_url = transition_url
        self.health_url = health_url
        self.pid = pid
        self.probes = probes
        self.request_timeout = request_timeout
        self._session = session

    async def sample(self) -> Dict[str, Any]:
        if self._session is not None:
            return await self._probe(self._session)

        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._probe(session)

    async def _probe(self, session) -> Dict[str, Any]:
        hub_load_time = await self._timed_get(session, self.hub_url)
        world_transition_time = await self._timed_get(session, self.transition_url)

        latencies = [await self._timed_get(session, self.health_url) for _ in range(self.probes)]
        elapsed_seconds = sum(latencies) / 1000

        return {
            "hub_load_time": hub_load_time,
            "world_transition_time": world_transition_time,
            "memory_usage": self._memory_mb(),
            "response_time": sum(latencies) / len(latencies),
            "throughput": len(latencies) / elapsed_seconds if elapsed_seconds > 0 else float(len(latencies)),
        }

    async def _timed_get(self, session, url: str) -> float:
        """GET ``url`` and return the elapsed time in milliseconds."""
        start = time.perf_counter()
        try:
            async with session.get(url) as response:
                await response.read()
                if response.status >= 400:
                    raise SourceError(f"GET {url} returned HTTP {response.status}")
        except aiohttp.ClientError as e:
            raise SourceError(f"GET {url} failed: {e}") from e
        # Clamp so a sub-resolution response never reports zero latency
        return max((time.perf_counter() - start) * 1000, 0.001)

    def _memory_mb(self) -> float:
        try:
            process = psutil.Process(self.pid) if self.pid else psutil.Process()
            with process.oneshot():
                return process.memory_info().rss / (1024 * 1024)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise SourceError(f"Cannot read memory of pid {self.pid}: {e}") from e
