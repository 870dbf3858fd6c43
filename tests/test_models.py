"""Unit tests for engine.models -- endpoints, phases and results."""

import dataclasses
import unittest
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from engine.models import (
    Direction,
    ServerEndpoint,
    TestPhase,
    TestResult,
    cache_busted,
)


class TestServerEndpoint(unittest.TestCase):
    SAMPLE = {
        "id": "edge-1",
        "name": "Test Edge",
        "location": "Berlin",
        "download_url": "https://speed.test.com/down?bytes=1000",
        "upload_url": "https://speed.test.com/up",
        "trace_url": "https://speed.test.com/trace",
    }

    def test_from_dict(self):
        e = ServerEndpoint.from_dict(self.SAMPLE)
        self.assertEqual(e.id, "edge-1")
        self.assertEqual(e.name, "Test Edge")
        self.assertEqual(e.trace_url, "https://speed.test.com/trace")

    def test_from_dict_defaults(self):
        e = ServerEndpoint.from_dict({"id": 7})
        self.assertEqual(e.id, "7")
        self.assertEqual(e.download_url, "")
        self.assertEqual(e.location, "")

    def test_to_dict_roundtrip(self):
        e = ServerEndpoint.from_dict(self.SAMPLE)
        self.assertEqual(ServerEndpoint.from_dict(e.to_dict()), e)

    def test_immutable(self):
        e = ServerEndpoint.from_dict(self.SAMPLE)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            e.download_url = "https://elsewhere"


class TestCacheBusted(unittest.TestCase):
    def test_unique_per_call(self):
        url = "https://speed.test.com/up"
        self.assertNotEqual(cache_busted(url), cache_busted(url))

    def test_keeps_existing_query(self):
        busted = cache_busted("https://speed.test.com/down?bytes=1000")
        query = parse_qs(urlsplit(busted).query)
        self.assertEqual(query["bytes"], ["1000"])
        self.assertIn("cb", query)

    def test_replaces_existing_buster(self):
        busted = cache_busted("https://speed.test.com/down?cb=old")
        query = parse_qs(urlsplit(busted).query)
        self.assertEqual(len(query["cb"]), 1)
        self.assertNotEqual(query["cb"], ["old"])


class TestTestPhase(unittest.TestCase):
    def test_at_rest(self):
        self.assertTrue(TestPhase.IDLE.at_rest)
        self.assertTrue(TestPhase.COMPLETE.at_rest)
        for phase in (TestPhase.PING, TestPhase.DOWNLOAD, TestPhase.TRANSITION, TestPhase.UPLOAD):
            self.assertFalse(phase.at_rest)

    def test_direction_phase(self):
        self.assertIs(Direction.DOWNLOAD.phase, TestPhase.DOWNLOAD)
        self.assertIs(Direction.UPLOAD.phase, TestPhase.UPLOAD)


class TestTestResult(unittest.TestCase):
    def test_to_dict(self):
        ts = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
        r = TestResult(download_mbps=94.567, upload_mbps=40.0, latency_ms=22,
                       jitter_ms=1, produced_at=ts)
        d = r.to_dict()
        self.assertEqual(d["timestamp"], "2025-01-15T10:30:00+00:00")
        self.assertEqual(d["ping"], 22)
        self.assertEqual(d["jitter"], 1)
        self.assertEqual(d["download"]["speed_mbps"], 94.57)
        self.assertEqual(d["upload"]["speed_mbps"], 40.0)

    def test_produced_at_defaults_to_now(self):
        r = TestResult(download_mbps=0, upload_mbps=0, latency_ms=0, jitter_ms=0)
        self.assertIsNotNone(r.produced_at.tzinfo)

    def test_immutable(self):
        r = TestResult(download_mbps=1, upload_mbps=1, latency_ms=1, jitter_ms=1)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            r.download_mbps = 2


if __name__ == "__main__":
    unittest.main()
