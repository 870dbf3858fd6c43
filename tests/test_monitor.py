"""Tests for engine.monitor -- idle health probing."""

import asyncio
import unittest
from types import SimpleNamespace

from engine.config import TestConfig
from engine.models import ServerEndpoint, TestPhase
from engine.monitor import LiveHealthMonitor

ENDPOINT = ServerEndpoint(
    id="test",
    name="Test",
    download_url="http://test.invalid/down",
    upload_url="http://test.invalid/up",
    trace_url="http://test.invalid/trace",
)


class FakeSession:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()


class FakeSampler:
    """Hands out queued round-trip times; ``None`` means the probe failed."""

    def __init__(self, rtts=None, default=20.0, on_probe=None):
        self.rtts = list(rtts or [])
        self.default = default
        self.on_probe = on_probe
        self.sessions = []
        self.urls = []

    def open_session(self):
        session = FakeSession()
        self.sessions.append(session)
        return session

    async def probe_once(self, session, url):
        self.urls.append(url)
        await asyncio.sleep(0)
        if self.on_probe:
            self.on_probe()
        return self.rtts.pop(0) if self.rtts else self.default


def _machine(phase=TestPhase.IDLE):
    return SimpleNamespace(phase=phase, endpoint=ENDPOINT, config=TestConfig())


class TestTick(unittest.IsolatedAsyncioTestCase):
    async def test_idle_tick_probes(self):
        sampler = FakeSampler([20.4])
        monitor = LiveHealthMonitor(_machine(), sampler=sampler)
        reading = await monitor.tick()
        self.assertEqual(reading.ping_ms, 20)
        self.assertEqual(reading.jitter_ms, 0)
        self.assertTrue(reading.connected)
        self.assertEqual(sampler.urls, [ENDPOINT.trace_url])
        # One-off ticks use a throwaway session
        self.assertTrue(sampler.sessions[0].closed)

    async def test_jitter_is_difference_from_last(self):
        monitor = LiveHealthMonitor(_machine(), sampler=FakeSampler([20.0, 25.5, 21.0]))
        await monitor.tick()
        second = await monitor.tick()
        self.assertEqual((second.ping_ms, second.jitter_ms), (26, 6))
        third = await monitor.tick()
        self.assertEqual((third.ping_ms, third.jitter_ms), (21, 5))
        self.assertEqual(monitor.live_ping_ms, 21)
        self.assertEqual(monitor.live_jitter_ms, 5)

    async def test_skipped_while_running(self):
        for phase in (TestPhase.PING, TestPhase.DOWNLOAD, TestPhase.TRANSITION, TestPhase.UPLOAD):
            sampler = FakeSampler()
            monitor = LiveHealthMonitor(_machine(phase), sampler=sampler)
            self.assertIsNone(await monitor.tick())
            self.assertEqual(sampler.urls, [])

    async def test_runs_after_complete(self):
        monitor = LiveHealthMonitor(_machine(TestPhase.COMPLETE), sampler=FakeSampler())
        self.assertIsNotNone(await monitor.tick())

    async def test_failure_marks_disconnected(self):
        monitor = LiveHealthMonitor(_machine(), sampler=FakeSampler([30.0, None, 32.0]))
        await monitor.tick()
        failed = await monitor.tick()
        self.assertFalse(failed.connected)
        self.assertIsNone(failed.ping_ms)
        self.assertFalse(monitor.connected)
        recovered = await monitor.tick()
        self.assertTrue(recovered.connected)
        self.assertEqual(recovered.jitter_ms, 2)

    async def test_run_started_mid_probe_discards_reading(self):
        machine = _machine()

        def _start_run():
            machine.phase = TestPhase.PING

        monitor = LiveHealthMonitor(machine, sampler=FakeSampler(on_probe=_start_run))
        self.assertIsNone(await monitor.tick())
        self.assertIsNone(monitor.last_reading)
        self.assertEqual(monitor.live_ping_ms, 0)

    async def test_listeners(self):
        monitor = LiveHealthMonitor(_machine(), sampler=FakeSampler())
        readings = []
        unsubscribe = monitor.subscribe(readings.append)
        first = await monitor.tick()
        unsubscribe()
        second = await monitor.tick()
        self.assertEqual(len(readings), 1)
        self.assertIs(readings[0], first)
        self.assertIs(monitor.last_reading, second)

    async def test_listener_error_logged(self):
        monitor = LiveHealthMonitor(_machine(), sampler=FakeSampler())

        def _bad(reading):
            raise RuntimeError("display broke")

        monitor.subscribe(_bad)
        with self.assertLogs("engine.monitor", level="ERROR"):
            reading = await monitor.tick()
        self.assertIsNotNone(reading)


class TestLifecycle(unittest.IsolatedAsyncioTestCase):
    async def test_interval_defaults_to_config(self):
        machine = _machine()
        machine.config = TestConfig(monitor_interval_ms=1234)
        monitor = LiveHealthMonitor(machine, sampler=FakeSampler())
        self.assertEqual(monitor.interval_ms, 1234)

    async def test_start_stop(self):
        sampler = FakeSampler()
        monitor = LiveHealthMonitor(_machine(), interval_ms=10, sampler=sampler)
        readings = []
        monitor.subscribe(readings.append)

        self.assertFalse(monitor.running)
        monitor.start()
        monitor.start()
        self.assertTrue(monitor.running)
        await asyncio.sleep(0.1)
        await monitor.stop()

        self.assertFalse(monitor.running)
        self.assertGreater(len(readings), 1)
        # The loop shares one session and closes it on stop
        self.assertEqual(len(sampler.sessions), 1)
        self.assertTrue(sampler.sessions[0].closed)

        count = len(readings)
        await asyncio.sleep(0.05)
        self.assertEqual(len(readings), count)

    async def test_stop_when_not_running(self):
        monitor = LiveHealthMonitor(_machine(), sampler=FakeSampler())
        await monitor.stop()
        self.assertFalse(monitor.running)

    async def test_restart(self):
        sampler = FakeSampler()
        monitor = LiveHealthMonitor(_machine(), interval_ms=10, sampler=sampler)
        monitor.start()
        await asyncio.sleep(0.03)
        await monitor.stop()
        monitor.start()
        await asyncio.sleep(0.03)
        await monitor.stop()
        self.assertEqual(len(sampler.sessions), 2)


if __name__ == "__main__":
    unittest.main()
