"""
Phase sequencing for a full test run.

::

    IDLE -> PING -> DOWNLOAD -> TRANSITION -> UPLOAD -> COMPLETE
      ^                                                    |
      +----------------- start() again --------------------+

The state machine is the engine's context object: it owns the live values
(phase, progress, gauge, latest figures) and publishes every change as an
:class:`~engine.models.EngineEvent` to subscribers, so front ends never poke
at shared variables.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from .config import TestConfig
from .constants import RATE_HISTORY_POINTS, RATE_HISTORY_SPACING_MS
from .errors import TestAborted
from .latency import ProbeSampler
from .models import (
    Direction,
    EngineEvent,
    EventKind,
    RateSample,
    ServerEndpoint,
    TestPhase,
    TestResult,
)
from .throughput import ThroughputTester

logger = logging.getLogger(__name__)

Listener = Callable[[EngineEvent], None]
TesterFactory = Callable[[], ThroughputTester]


class PhaseStateMachine:
    """Runs PING, DOWNLOAD, TRANSITION and UPLOAD in order for one endpoint.

    Only one run can be active at a time: :meth:`start` is a no-op unless the
    machine is IDLE or COMPLETE.  Every run ends either in COMPLETE with a
    :class:`TestResult` or back in IDLE with an ABORTED event.
    """

    def __init__(
        self,
        endpoint: ServerEndpoint,
        config: Optional[TestConfig] = None,
        probe_sampler: Optional[ProbeSampler] = None,
        tester_factory: TesterFactory = ThroughputTester,
    ) -> None:
        self.endpoint = endpoint
        self.config = config or TestConfig()
        self.probe_sampler = probe_sampler or ProbeSampler(
            timeout_ms=self.config.probe_timeout_ms,
            penalty_ms=self.config.probe_penalty_ms,
        )
        self.tester_factory = tester_factory
        self.monitor = None  # LiveHealthMonitor, see attach_monitor()

        self._phase = TestPhase.IDLE
        self.progress = 0.0
        self.gauge_value = 0.0
        self.latency_ms = 0
        self.jitter_ms = 0
        self.download_mbps = 0.0
        self.upload_mbps = 0.0
        self.last_result: Optional[TestResult] = None
        self.rate_history: Dict[Direction, Deque[RateSample]] = {
            d: deque(maxlen=RATE_HISTORY_POINTS) for d in Direction
        }

        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None
        self._cancel: Optional[asyncio.Event] = None
        self._last_history_ms = 0.0

    # -- Observable surface -------------------------------------------------

    @property
    def phase(self) -> TestPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return not self._phase.at_rest

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for engine events.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def attach_monitor(self, monitor) -> None:  # noqa: ANN001 (LiveHealthMonitor)
        """Let the machine pause *monitor* for the duration of every run."""
        self.monitor = monitor

    # -- Control ------------------------------------------------------------

    def start(self) -> Optional[asyncio.Task]:
        """Begin a run and return its task, or ``None`` if one is already active.

        The phase moves to PING before this returns, so a second call made
        right after is already rejected.
        """
        if not self._phase.at_rest:
            logger.debug("start() ignored while in %s", self._phase.value)
            return None

        self._cancel = asyncio.Event()
        self._reset_live_values()
        self._set_phase(TestPhase.PING)
        self._task = asyncio.create_task(self._run(self._cancel))
        return self._task

    async def run(self) -> Optional[TestResult]:
        """Start a run and wait for its result.

        Returns ``None`` without doing anything if a run is already active.
        Raises :class:`TestAborted` if the run was unwound.
        """
        task = self.start()
        if task is None:
            return None
        return await task

    def cancel(self) -> bool:
        """Ask the active run to stop.  Returns False if nothing is running."""
        if self._cancel is None or self._phase.at_rest:
            return False
        logger.info("Cancelling run in %s", self._phase.value)
        self._cancel.set()
        return True

    # -- Run ----------------------------------------------------------------

    async def _run(self, cancel: asyncio.Event) -> TestResult:
        monitor = self.monitor
        resume_monitor = monitor is not None and monitor.running
        try:
            if resume_monitor:
                await monitor.stop()
            return await self._sequence(cancel)
        except asyncio.CancelledError:
            self._abort(None, "run task cancelled")
            raise
        except TestAborted as exc:
            self._abort(exc, exc.reason)
            raise
        except Exception as exc:
            logger.exception("Run failed during %s", self._phase.value)
            self._abort(exc, f"test aborted: {exc}")
            raise TestAborted(f"test aborted: {exc}") from exc
        finally:
            if resume_monitor:
                monitor.start()

    async def _sequence(self, cancel: asyncio.Event) -> TestResult:
        config = self.config.validate()

        logger.info("Probing latency to %s", self.endpoint.name or self.endpoint.trace_url)
        self.latency_ms, self.jitter_ms = await self.probe_sampler.measure(
            self.endpoint, config.probe_count, config.probe_delay_ms, cancel=cancel,
        )
        logger.info("Latency %d ms, jitter %d ms", self.latency_ms, self.jitter_ms)
        self._check_cancel(cancel)

        self.download_mbps = await self._throughput(Direction.DOWNLOAD, config, cancel)
        self._check_cancel(cancel)

        self._set_phase(TestPhase.TRANSITION, progress=100.0)
        try:
            await asyncio.wait_for(cancel.wait(), timeout=config.transition_ms / 1000)
        except asyncio.TimeoutError:
            pass
        self._check_cancel(cancel)

        self.upload_mbps = await self._throughput(Direction.UPLOAD, config, cancel)
        self._check_cancel(cancel)

        result = TestResult(
            download_mbps=self.download_mbps,
            upload_mbps=self.upload_mbps,
            latency_ms=self.latency_ms,
            jitter_ms=self.jitter_ms,
        )
        self.last_result = result
        self._set_phase(TestPhase.COMPLETE, progress=100.0)
        self._publish(EngineEvent(EventKind.COMPLETE, TestPhase.COMPLETE, progress=100.0,
                                  result=result))
        logger.info(
            "Run complete: down %.2f Mbps, up %.2f Mbps",
            result.download_mbps, result.upload_mbps,
        )
        return result

    async def _throughput(
        self,
        direction: Direction,
        config: TestConfig,
        cancel: asyncio.Event,
    ) -> float:
        phase = direction.phase
        self._set_phase(phase)
        self._last_history_ms = -RATE_HISTORY_SPACING_MS
        tester = self.tester_factory()

        def _on_progress(progress: float, rate_mbps: float) -> None:
            if self._phase is not phase:
                return
            self.progress = progress
            self.gauge_value = rate_mbps
            if direction is Direction.DOWNLOAD:
                self.download_mbps = rate_mbps
            else:
                self.upload_mbps = rate_mbps
            self._record_history(direction, progress / 100 * config.duration_ms, rate_mbps)
            self._publish(EngineEvent(EventKind.PROGRESS, phase, progress=progress,
                                      rate_mbps=rate_mbps))

        return await tester.run(direction, self.endpoint, config, cancel=cancel,
                                on_progress=_on_progress)

    # -- Internals ----------------------------------------------------------

    @staticmethod
    def _check_cancel(cancel: asyncio.Event) -> None:
        if cancel.is_set():
            raise TestAborted("cancelled")

    def _set_phase(self, phase: TestPhase, progress: float = 0.0) -> None:
        logger.debug("Phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self.progress = progress
        self.gauge_value = 0.0
        self._publish(EngineEvent(EventKind.PHASE, phase, progress=progress))

    def _reset_live_values(self) -> None:
        self.latency_ms = 0
        self.jitter_ms = 0
        self.download_mbps = 0.0
        self.upload_mbps = 0.0
        for history in self.rate_history.values():
            history.clear()

    def _record_history(self, direction: Direction, elapsed_ms: float, rate_mbps: float) -> None:
        if elapsed_ms - self._last_history_ms < RATE_HISTORY_SPACING_MS:
            return
        self._last_history_ms = elapsed_ms
        self.rate_history[direction].append(RateSample(elapsed_ms=elapsed_ms, rate_mbps=rate_mbps))

    def _abort(self, error: Optional[BaseException], reason: str) -> None:
        logger.error("Run aborted in %s: %s", self._phase.value, reason)
        self._set_phase(TestPhase.IDLE)
        self._publish(EngineEvent(EventKind.ABORTED, TestPhase.IDLE, error=error))

    def _publish(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Engine listener %r failed on %s", listener, event.kind.value)
