"""
Multi-stream throughput test for one direction.

Design mirrors a browser speed test: N parallel HTTP streams share one
aiohttp session, a sampler coroutine reads the running byte total every
``sample_interval_ms``, samples inside the warm-up window are shown but not
kept, and the final figure is a high percentile of the kept samples.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import aiohttp

from .aggregator import ByteCounter, SampleAggregator
from .config import TestConfig
from .constants import (
    COMMON_HEADERS,
    CONNECT_TIMEOUT_SECONDS,
    SOCK_READ_TIMEOUT_SECONDS,
)
from .models import Direction, RateSample, ServerEndpoint
from .stats import ConnectionStats
from .worker import ThroughputWorker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, float], None]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ThroughputResult:
    """Outcome of one direction's phase."""

    direction: Direction
    speed_mbps: float = 0.0
    bytes_total: int = 0
    duration_ms: float = 0.0
    samples: List[RateSample] = field(default_factory=list)
    connections: List[ConnectionStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "speed_mbps": round(self.speed_mbps, 2),
            "bytes_total": self.bytes_total,
            "duration_ms": round(self.duration_ms, 2),
            "samples": [round(s.rate_mbps, 2) for s in self.samples],
            "connections": [c.to_dict() for c in self.connections],
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class ThroughputTester:
    """
    Parallel throughput tester for a single phase.

    A tester instance is good for exactly one run: the byte counter and the
    sample sequence it creates belong to that run and are discarded with it.
    """

    def __init__(self, payload_factory: Callable[[int], bytes] = os.urandom) -> None:
        self.payload_factory = payload_factory
        self._used = False

    async def run(
        self,
        direction: Direction,
        endpoint: ServerEndpoint,
        config: TestConfig,
        cancel: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> float:
        """Run the phase and return the reduced rate in Mbps."""
        result = await self.measure(direction, endpoint, config, cancel, on_progress)
        return result.speed_mbps

    async def measure(
        self,
        direction: Direction,
        endpoint: ServerEndpoint,
        config: TestConfig,
        cancel: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ThroughputResult:
        if self._used:
            raise RuntimeError("ThroughputTester instances are single-use")
        self._used = True

        config.validate()
        streams = config.streams_for(direction)
        duration_s = config.duration_ms / 1000

        counter = ByteCounter()
        aggregator = SampleAggregator(config.warmup_ms, config.percentile)
        # Workers only see this event; the caller's ``cancel`` ends the wait early.
        stop = asyncio.Event()

        payload = None
        if direction is Direction.UPLOAD:
            payload = self.payload_factory(config.upload_payload_bytes)

        logger.info(
            "Starting %s phase: %d streams, %.1f s, warm-up %d ms",
            direction.value, streams, duration_s, config.warmup_ms,
        )

        start_time = time.perf_counter()
        end_time = start_time + duration_s

        # -- Sampler --------------------------------------------------------

        async def _sampler() -> None:
            interval = config.sample_interval_ms / 1000
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass

                now = time.perf_counter()
                elapsed_ms = (now - start_time) * 1000
                sample = aggregator.tick(elapsed_ms, counter.total)
                if sample is not None and on_progress:
                    prog = min(elapsed_ms / config.duration_ms, 1.0) * 100
                    on_progress(prog, sample.rate_mbps)

        # -- Orchestration --------------------------------------------------

        connector = aiohttp.TCPConnector(
            limit=streams,
            limit_per_host=streams,
            force_close=False,
            enable_cleanup_closed=True,
        )
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=CONNECT_TIMEOUT_SECONDS,
            sock_read=SOCK_READ_TIMEOUT_SECONDS,
        )
        headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        if direction is Direction.UPLOAD:
            headers["Content-Type"] = "application/octet-stream"

        workers: List[ThroughputWorker] = []
        async with aiohttp.ClientSession(
            headers=headers,
            connector=connector,
            timeout=timeout,
        ) as session:
            workers = [
                ThroughputWorker(session, worker_id=i, payload=payload)
                for i in range(streams)
            ]
            tasks = [
                asyncio.create_task(w.run(direction, endpoint, end_time, counter.add, stop))
                for w in workers
            ]
            sampler = asyncio.create_task(_sampler())

            try:
                await self._wait_deadline(end_time, cancel)
            finally:
                stop.set()
                for t in tasks:
                    t.cancel()
                outcomes = await asyncio.gather(*tasks, return_exceptions=True)
                try:
                    await sampler
                except asyncio.CancelledError:
                    pass
                bytes_total = counter.seal()

        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning("%s worker ended with an error: %r", direction.value, outcome)

        result = ThroughputResult(
            direction=direction,
            speed_mbps=aggregator.reduce(),
            bytes_total=bytes_total,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            samples=aggregator.samples,
            connections=[w.stats for w in workers],
        )
        logger.info(
            "%s phase finished: %.2f Mbps from %d bytes",
            direction.value.capitalize(), result.speed_mbps, result.bytes_total,
        )
        return result

    # -- Internals ----------------------------------------------------------

    @staticmethod
    async def _wait_deadline(end_time: float, cancel: Optional[asyncio.Event]) -> None:
        """Sleep until *end_time*, or until *cancel* is set if given."""
        remaining = end_time - time.perf_counter()
        if remaining <= 0:
            return
        if cancel is None:
            await asyncio.sleep(remaining)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=remaining)
            logger.info("Phase cancelled before its deadline")
        except asyncio.TimeoutError:
            pass
