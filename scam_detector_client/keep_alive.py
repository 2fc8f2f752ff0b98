"""
Keep-alive pinger
=================
Keeps the analysis backend from falling asleep while a user session is
active. Pings the root endpoint every ``KEEP_ALIVE_INTERVAL`` seconds, which
is 80% of the host's sleep threshold.

Pings are fire-and-forget: a failed ping is logged and the schedule carries
on. Start and stop are idempotent and safe to toggle rapidly.
"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from loguru import logger

from scam_detector_client import config

Ping = Callable[[], Awaitable[Any]]


class KeepAliveScheduler:
    def __init__(
        self,
        base_url: Optional[str] = None,
        interval: float = config.KEEP_ALIVE_INTERVAL,
        timeout: float = config.KEEP_ALIVE_TIMEOUT,
        ping: Optional[Ping] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.interval = interval
        self.timeout = timeout
        self._ping = ping or self._ping_server
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._active = False
        self._task: Optional[asyncio.Task] = None
        self._last_ping: Optional[float] = None
        self.ping_count = 0
        self.failure_count = 0
        self.logger = logger

    def start(self) -> None:
        """Begin pinging; must be called from a running event loop"""
        with self._lock:
            if self._active:
                return
            loop = asyncio.get_running_loop()
            self._active = True
            self._last_ping = self._clock()
            self._task = loop.create_task(self._run(), name="keep-alive")
        self.logger.info(
            f"[KEEP-ALIVE] Started for {self.base_url} (interval={self.interval:.0f}s)"
        )

    def stop(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            task, self._task = self._task, None
        if task is not None:
            task.cancel()
        self.logger.info("[KEEP-ALIVE] Stopped")

    async def shutdown(self) -> None:
        """Stop and wait for the background task to finish"""
        task = self._task
        self.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def is_running(self) -> bool:
        return self._active

    def time_since_last_ping(self) -> Optional[float]:
        """Seconds since the last successful ping, or None if never started"""
        if self._last_ping is None:
            return None
        return self._clock() - self._last_ping

    async def _run(self) -> None:
        while True:
            await self._ping_once()
            await asyncio.sleep(self.interval)

    async def _ping_once(self) -> None:
        self.ping_count += 1
        try:
            await self._ping()
        except Exception as e:
            self.failure_count += 1
            self.logger.warning(f"[KEEP-ALIVE] Ping failed: {e!r}")
            return
        self._last_ping = self._clock()
        self.logger.debug(f"[KEEP-ALIVE] Pinged {self.base_url}/")

    async def _ping_server(self) -> None:
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(f"{self.base_url}/") as response:
                response.raise_for_status()
                await response.read()


keep_alive_scheduler = KeepAliveScheduler()
