"""
HTTP latency measurement against an endpoint's trace URL.

Probe flow::

    1. GET  {trace_url}?cb={unique}     (no-cache headers)
    2. Stop the clock when the response headers arrive.
    3. Sleep the inter-probe delay, repeat.

Probes are strictly sequential: running them concurrently would queue them
behind each other and measure that queueing instead of the path.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import aiohttp

from .constants import (
    COMMON_HEADERS,
    DEFAULT_PROBE_COUNT,
    DEFAULT_PROBE_DELAY_MS,
    DEFAULT_PROBE_TIMEOUT_MS,
    PROBE_PENALTY_MS,
)
from .models import ServerEndpoint, cache_busted
from .stats import reduce_probes

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ProbeResult:
    """Raw probes and their reduction for one endpoint."""

    samples: List[float] = field(default_factory=list)
    failures: int = 0
    latency_ms: int = 0
    jitter_ms: int = 0

    def calculate(self) -> None:
        self.latency_ms, self.jitter_ms = reduce_probes(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 1) for s in self.samples],
            "failures": self.failures,
            "latency_ms": self.latency_ms,
            "jitter_ms": self.jitter_ms,
        }


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------

class ProbeSampler:
    """Sequential round-trip probing of one trace endpoint."""

    def __init__(
        self,
        timeout_ms: float = DEFAULT_PROBE_TIMEOUT_MS,
        penalty_ms: float = PROBE_PENALTY_MS,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.penalty_ms = penalty_ms

    # -- Public -------------------------------------------------------------

    async def measure(
        self,
        endpoint: ServerEndpoint,
        probe_count: int = DEFAULT_PROBE_COUNT,
        inter_probe_delay_ms: float = DEFAULT_PROBE_DELAY_MS,
        cancel: Optional[asyncio.Event] = None,
    ) -> Tuple[int, int]:
        """Return ``(latency_ms, jitter_ms)`` for *endpoint*."""
        result = await self.sample(endpoint, probe_count, inter_probe_delay_ms, cancel)
        return result.latency_ms, result.jitter_ms

    async def sample(
        self,
        endpoint: ServerEndpoint,
        probe_count: int = DEFAULT_PROBE_COUNT,
        inter_probe_delay_ms: float = DEFAULT_PROBE_DELAY_MS,
        cancel: Optional[asyncio.Event] = None,
    ) -> ProbeResult:
        """Issue *probe_count* probes and return the full :class:`ProbeResult`.

        Setting *cancel* aborts the probe in flight and skips the rest; the
        result then holds only the probes that completed.
        """
        result = ProbeResult()

        async with self.open_session() as session:
            for i in range(probe_count):
                if cancel is not None and cancel.is_set():
                    break
                rtt = await self._probe_unless_cancelled(session, endpoint.trace_url, cancel)
                if cancel is not None and cancel.is_set():
                    break
                if rtt is None:
                    result.failures += 1
                    rtt = self.penalty_ms
                result.samples.append(rtt)
                if i < probe_count - 1:
                    await self._pause(inter_probe_delay_ms / 1000, cancel)

        if cancel is not None and cancel.is_set():
            logger.debug("Probing %s cancelled after %d probes",
                         endpoint.trace_url, len(result.samples))

        result.calculate()
        if result.failures:
            logger.info(
                "%d of %d probes to %s failed", result.failures, probe_count, endpoint.trace_url
            )
        return result

    def open_session(self) -> aiohttp.ClientSession:
        """A session suited to probing: one connection, short timeouts."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
        connector = aiohttp.TCPConnector(limit=1, force_close=False)
        return aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            connector=connector,
            timeout=timeout,
        )

    async def probe_once(self, session: aiohttp.ClientSession, url: str) -> Optional[float]:
        """Time one request to *url* in ms, or ``None`` if it was unreachable.

        Any HTTP status counts as a completed round trip; the body is drained
        but not inspected.
        """
        start = time.perf_counter()
        try:
            async with session.get(cache_busted(url), allow_redirects=False) as resp:
                elapsed = (time.perf_counter() - start) * 1000
                await resp.read()
        except asyncio.TimeoutError:
            logger.debug("Probe to %s timed out", url)
            return None
        except (aiohttp.ClientError, OSError) as exc:
            logger.debug("Probe to %s failed: %s", url, exc)
            return None
        return elapsed

    # -- Internals ----------------------------------------------------------

    async def _probe_unless_cancelled(
        self,
        session: aiohttp.ClientSession,
        url: str,
        cancel: Optional[asyncio.Event],
    ) -> Optional[float]:
        """Run :meth:`probe_once`, abandoning it as soon as *cancel* is set."""
        if cancel is None:
            return await self.probe_once(session, url)

        probe = asyncio.ensure_future(self.probe_once(session, url))
        stopper = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({probe, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not probe.done():
                probe.cancel()
        if probe.cancelled() or not probe.done():
            await asyncio.gather(probe, return_exceptions=True)
            return None
        return probe.result()

    @staticmethod
    async def _pause(seconds: float, cancel: Optional[asyncio.Event]) -> None:
        """Sleep *seconds*, or less if *cancel* is set meanwhile."""
        if cancel is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
