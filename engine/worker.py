"""
A single throughput stream.

Each worker loops over requests until the deadline passes or the stop event
is set, reporting transferred bytes through a callback.  A broken request
only ends the current iteration; the worker starts a fresh one right away.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

import aiohttp

from .constants import CHUNK_SIZE, RETRY_DELAY_SECONDS
from .models import Direction, ServerEndpoint, cache_busted
from .stats import ConnectionStats

logger = logging.getLogger(__name__)

OnBytes = Callable[[int], object]


class ThroughputWorker:
    """One concurrent download or upload stream.

    The worker owns only its :class:`ConnectionStats`; it never looks at
    other workers or at the shared total.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        worker_id: int = 0,
        payload: Optional[bytes] = None,
        chunk_size: int = CHUNK_SIZE,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self.session = session
        self.payload = payload
        self.chunk_size = chunk_size
        self.retry_delay = retry_delay
        self.stats = ConnectionStats(id=worker_id)

    async def run(
        self,
        direction: Direction,
        endpoint: ServerEndpoint,
        deadline: float,
        on_bytes: OnBytes,
        cancel: asyncio.Event,
    ) -> ConnectionStats:
        """Transfer until ``time.perf_counter() >= deadline`` or *cancel* is set.

        Cancelling the task running this coroutine aborts the in-flight
        request immediately.
        """
        if direction is Direction.UPLOAD and not self.payload:
            raise ValueError("upload workers need a payload")

        self.stats.direction = direction.value
        t0 = time.perf_counter()

        try:
            while not cancel.is_set() and time.perf_counter() < deadline:
                self.stats.requests += 1
                try:
                    if direction is Direction.DOWNLOAD:
                        await self._download_once(endpoint, deadline, on_bytes, cancel)
                    else:
                        await self._upload_once(endpoint, on_bytes)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                    self.stats.failures += 1
                    if cancel.is_set() or time.perf_counter() >= deadline:
                        break
                    logger.debug(
                        "Worker %d %s request failed, restarting: %s",
                        self.stats.id, direction.value, exc,
                    )
                    await asyncio.sleep(self.retry_delay)
        finally:
            self.stats.duration_ms = (time.perf_counter() - t0) * 1000
            self.stats.calculate()

        return self.stats

    # -- Internals ----------------------------------------------------------

    async def _download_once(
        self,
        endpoint: ServerEndpoint,
        deadline: float,
        on_bytes: OnBytes,
        cancel: asyncio.Event,
    ) -> None:
        url = cache_busted(endpoint.download_url)
        async with self.session.get(url) as resp:
            resp.raise_for_status()
            while not cancel.is_set() and time.perf_counter() < deadline:
                chunk = await resp.content.read(self.chunk_size)
                if not chunk:
                    break
                n = len(chunk)
                self.stats.bytes_transferred += n
                on_bytes(n)

    async def _upload_once(self, endpoint: ServerEndpoint, on_bytes: OnBytes) -> None:
        url = cache_busted(endpoint.upload_url)
        async with self.session.post(url, data=self.payload) as resp:
            # Status and body are irrelevant; only the completed send counts.
            await resp.read()
        n = len(self.payload)
        self.stats.bytes_transferred += n
        on_bytes(n)
