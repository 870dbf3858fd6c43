"""
Ambient connection health while no test is running.

The monitor fires one single-shot latency probe every
``monitor_interval_ms`` and keeps the latest reading for display.  It has an
explicit ``start()``/``stop()`` lifecycle; the phase state machine stops it
when a run begins and starts it again when the run ends, so probes never
compete with throughput streams for bandwidth.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

import aiohttp

from .latency import ProbeSampler
from .stats import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReading:
    """One idle-time probe."""

    ping_ms: Optional[int]
    jitter_ms: int
    connected: bool
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


HealthListener = Callable[[HealthReading], None]


class LiveHealthMonitor:
    """Periodic single-probe latency display for an idle state machine."""

    def __init__(
        self,
        machine,  # noqa: ANN001 (PhaseStateMachine)
        interval_ms: Optional[float] = None,
        sampler: Optional[ProbeSampler] = None,
    ) -> None:
        self.machine = machine
        self.interval_ms = interval_ms or machine.config.monitor_interval_ms
        self.sampler = sampler or ProbeSampler(timeout_ms=machine.config.probe_timeout_ms)

        self.live_ping_ms = 0
        self.live_jitter_ms = 0
        self.connected = True
        self.last_reading: Optional[HealthReading] = None

        self._listeners: List[HealthListener] = []
        self._task: Optional[asyncio.Task] = None
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin periodic probing.  Calling it while running does nothing."""
        if self.running:
            return
        logger.debug("Health monitor started (every %d ms)", self.interval_ms)
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop probing and abort any probe in flight."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Health monitor stopped")

    def subscribe(self, listener: HealthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- Probing ------------------------------------------------------------

    async def tick(self) -> Optional[HealthReading]:
        """Probe once, unless a test phase is active.

        Returns the new reading, or ``None`` when the tick was skipped.
        """
        if not self.machine.phase.at_rest:
            return None

        url = self.machine.endpoint.trace_url
        if self._session is not None:
            rtt = await self.sampler.probe_once(self._session, url)
        else:
            async with self.sampler.open_session() as session:
                rtt = await self.sampler.probe_once(session, url)

        # A run may have started while the probe was in flight.
        if not self.machine.phase.at_rest:
            return None

        if rtt is None:
            self.connected = False
            reading = HealthReading(ping_ms=None, jitter_ms=self.live_jitter_ms, connected=False)
        else:
            ping = round_half_up(rtt)
            self.live_jitter_ms = abs(ping - self.live_ping_ms) if self.live_ping_ms > 0 else 0
            self.live_ping_ms = ping
            self.connected = True
            reading = HealthReading(ping_ms=ping, jitter_ms=self.live_jitter_ms, connected=True)

        self.last_reading = reading
        for listener in list(self._listeners):
            try:
                listener(reading)
            except Exception:
                logger.exception("Health listener %r failed", listener)
        return reading

    async def _loop(self) -> None:
        self._session = self.sampler.open_session()
        try:
            while True:
                await self.tick()
                await asyncio.sleep(self.interval_ms / 1000)
        finally:
            session, self._session = self._session, None
            await session.close()
