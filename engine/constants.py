"""
Shared constants used across all engine modules.

Centralises magic numbers, default headers, and tunables so they live in
exactly one place.  Everything a caller may want to change per run is also a
field on :class:`engine.config.TestConfig`; the values here are its defaults.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = "velocity-speedtest/0.1 (+aiohttp)"

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Cache-Control": "no-cache, no-store",
    "Pragma": "no-cache",
}

CACHE_BUST_PARAM = "cb"

# ---------------------------------------------------------------------------
# Default endpoint (Cloudflare's public speed test edge)
# ---------------------------------------------------------------------------

DEFAULT_ENDPOINT = {
    "id": "cloudflare-global",
    "name": "Cloudflare Edge",
    "location": "Global Anycast",
    "download_url": "https://speed.cloudflare.com/__down?bytes=50000000",
    "upload_url": "https://speed.cloudflare.com/__up",
    "trace_url": "https://speed.cloudflare.com/cdn-cgi/trace",
}

# ---------------------------------------------------------------------------
# Connection limits
# ---------------------------------------------------------------------------

MIN_STREAMS = 1
MAX_STREAMS = 32
DEFAULT_STREAMS = 4

# ---------------------------------------------------------------------------
# Timing (milliseconds)
# ---------------------------------------------------------------------------

DEFAULT_DURATION_MS = 8000
MIN_DURATION_MS = 500
MAX_DURATION_MS = 300_000

DEFAULT_WARMUP_MS = 1200        # samples at or before this are display-only
DEFAULT_SAMPLE_INTERVAL_MS = 50
DEFAULT_TRANSITION_MS = 1200    # settle pause between download and upload
DEFAULT_MONITOR_INTERVAL_MS = 3000

# ---------------------------------------------------------------------------
# Latency probing
# ---------------------------------------------------------------------------

DEFAULT_PROBE_COUNT = 6
MIN_PROBE_COUNT = 1
MAX_PROBE_COUNT = 100
DEFAULT_PROBE_DELAY_MS = 150
DEFAULT_PROBE_TIMEOUT_MS = 5000
PROBE_PENALTY_MS = 999.0        # recorded for an unreachable probe

# ---------------------------------------------------------------------------
# Data transfer
# ---------------------------------------------------------------------------

CHUNK_SIZE = 64 * 1024
UPLOAD_PAYLOAD_SIZE = 1024 * 1024   # generated once per upload phase
RETRY_DELAY_SECONDS = 0.016         # one frame between failed attempts
CONNECT_TIMEOUT_SECONDS = 5.0
SOCK_READ_TIMEOUT_SECONDS = 5.0

# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------

DEFAULT_PERCENTILE = 0.8

# Live-rate history kept for charting
RATE_HISTORY_POINTS = 30
RATE_HISTORY_SPACING_MS = 200
