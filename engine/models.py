"""
Data models shared by every engine component.

Endpoints and results are frozen dataclasses: the engine receives an
endpoint from outside and hands a finished result back, and neither may be
changed in between.
"""
from __future__ import annotations

import enum
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .constants import CACHE_BUST_PARAM


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class TestPhase(enum.Enum):
    """One discrete stage of the test lifecycle."""

    __test__ = False

    IDLE = "IDLE"
    PING = "PING"
    DOWNLOAD = "DOWNLOAD"
    TRANSITION = "TRANSITION"
    UPLOAD = "UPLOAD"
    COMPLETE = "COMPLETE"

    @property
    def at_rest(self) -> bool:
        """True when a new run may start from this phase."""
        return self in (TestPhase.IDLE, TestPhase.COMPLETE)


class Direction(enum.Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"

    @property
    def phase(self) -> TestPhase:
        return TestPhase.DOWNLOAD if self is Direction.DOWNLOAD else TestPhase.UPLOAD


class EventKind(enum.Enum):
    PHASE = "phase"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ABORTED = "aborted"


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

_bust_counter = itertools.count()


def cache_busted(url: str) -> str:
    """Return *url* with a unique ``cb`` query parameter appended.

    Existing query parameters are kept; an existing ``cb`` is replaced.
    """
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
             if k != CACHE_BUST_PARAM]
    query.append((CACHE_BUST_PARAM, f"{time.time_ns()}{next(_bust_counter)}"))
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class ServerEndpoint:
    """A resolved test endpoint: where to download, upload and probe."""

    id: str
    name: str
    download_url: str
    upload_url: str
    trace_url: str
    location: str = ""

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> ServerEndpoint:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            download_url=data.get("download_url", ""),
            upload_url=data.get("upload_url", ""),
            trace_url=data.get("trace_url", ""),
            location=data.get("location", ""),
        )

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "download_url": self.download_url,
            "upload_url": self.upload_url,
            "trace_url": self.trace_url,
        }


# ---------------------------------------------------------------------------
# Samples and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateSample:
    """Instantaneous rate observed at one cadence tick of a phase."""

    elapsed_ms: float
    rate_mbps: float
    retained: bool = False


@dataclass(frozen=True)
class TestResult:
    """Consolidated outcome of one full run."""

    __test__ = False

    download_mbps: float
    upload_mbps: float
    latency_ms: float
    jitter_ms: float
    produced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.produced_at.isoformat(),
            "ping": self.latency_ms,
            "jitter": self.jitter_ms,
            "download": {"speed_mbps": round(self.download_mbps, 2)},
            "upload": {"speed_mbps": round(self.upload_mbps, 2)},
        }


@dataclass(frozen=True)
class EngineEvent:
    """Notification published by the phase state machine to subscribers."""

    kind: EventKind
    phase: TestPhase
    progress: float = 0.0
    rate_mbps: float = 0.0
    result: Optional[TestResult] = None
    error: Optional[BaseException] = None
