"""Best-effort readiness signals for a backend that sleeps when idle.

None of these calls is a precondition for submitting work: they exist so the
caller can pick a sensible message ("ready", "warming up", "cold start")
before a real request goes out. They never raise: transport errors and
failing progress listeners are logged and absorbed.
"""

import asyncio
import math
import time
from typing import Any, Callable, Optional

import aiohttp
from loguru import logger

from scam_detector_client import config
from scam_detector_client.models import ApiStatus, ProgressEvent, ProgressStage, ServiceStatus

ProgressSink = Callable[[ProgressEvent], Any]
WakeupCallback = Callable[[str, int], Any]

# Probe failures worth absorbing: anything the transport can throw at us
PROBE_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


class StatusProbe:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = config.STATUS_TIMEOUT,
        warm_threshold: float = config.WARM_THRESHOLD,
        cold_start_estimate: int = config.COLD_START_ESTIMATE,
        wakeup_timeout: float = config.WAKEUP_TIMEOUT,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.warm_threshold = warm_threshold
        self.cold_start_estimate = cold_start_estimate
        self.wakeup_timeout = wakeup_timeout
        self._clock = clock or time.monotonic
        self.logger = logger

    async def _timed_request(self, method: str, timeout: float) -> float:
        """Issue a request to the root endpoint and return its round-trip time"""
        url = f"{self.base_url}/"
        start_time = self._clock()
        client_timeout = aiohttp.ClientTimeout(total=timeout)

        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(method, url) as response:
                response.raise_for_status()
                await response.read()

        return self._clock() - start_time

    async def check_status(self, progress_sink: Optional[ProgressSink] = None) -> ServiceStatus:
        """Classify the backend as warm, warming or cold.

        A quick answer means warm. A slow but successful answer means the host
        just woke up; the estimate scales with how slow it was. No answer
        within the short timeout means cold.
        """
        _notify(progress_sink, ProgressStage.checking, "Checking if analysis server is awake...", 10)

        try:
            response_time = await self._timed_request("HEAD", self.timeout)
        except PROBE_ERRORS as e:
            self.logger.warning(f"Analysis server looks cold: {e!r}")
            _notify(
                progress_sink,
                ProgressStage.cold,
                "Server appears to be in cold start mode. This may take up to a minute.",
                20,
            )
            return ServiceStatus(
                is_ready=False, cold_start_estimate_seconds=self.cold_start_estimate
            )

        if response_time < self.warm_threshold:
            _notify(progress_sink, ProgressStage.ready, "Server is ready and running.", 100)
            estimate = 0
        else:
            _notify(
                progress_sink,
                ProgressStage.warming,
                "Server is starting up but responding slowly.",
                40,
            )
            estimate = math.ceil(response_time * 1.5)

        self.logger.debug(f"Status probe answered in {response_time:.3f}s")
        return ServiceStatus(
            is_ready=True,
            cold_start_estimate_seconds=estimate,
            response_time=response_time,
        )

    async def check_api_status(self) -> ApiStatus:
        """Check whether the API is awake without trying to wake it"""
        try:
            response_time = await self._timed_request("HEAD", self.timeout)
        except PROBE_ERRORS as e:
            self.logger.debug(f"API status check failed: {e!r}")
            return ApiStatus(
                is_awake=False,
                response_time_ms=-1,
                message="API appears to be in cold start mode or unavailable.",
            )

        if response_time < config.FAST_THRESHOLD:
            message = "API is awake and fully operational."
        else:
            message = "API is operational but may be in warm-up mode."
        return ApiStatus(
            is_awake=True, response_time_ms=response_time * 1000, message=message
        )

    async def wake_up(self, callback: Optional[WakeupCallback] = None) -> ApiStatus:
        """Send a full request so the host starts booting before the user needs it"""
        _report(callback, "Attempting to wake up API service...", 10)

        try:
            response_time = await self._timed_request("GET", self.wakeup_timeout)
        except PROBE_ERRORS as e:
            self.logger.warning(f"Failed to wake up API service: {e!r}")
            _report(callback, "Failed to wake up API service", 0)
            return ApiStatus(
                is_awake=False,
                response_time_ms=-1,
                message="Unable to wake up the API service. It may be temporarily unavailable.",
            )

        _report(callback, "API service is now awake!", 100)
        self.logger.info(f"API service woke up in {response_time:.2f}s")
        if response_time < self.warm_threshold:
            message = "API is awake and responding quickly."
        else:
            message = (
                "API is now awake but was in cold start mode. "
                "It should respond faster for subsequent requests."
            )
        return ApiStatus(
            is_awake=True, response_time_ms=response_time * 1000, message=message
        )


def _notify(sink: Optional[ProgressSink], stage: ProgressStage, message: str, percent: int):
    if sink is None:
        return
    try:
        sink(ProgressEvent(stage=stage, message=message, percent=percent))
    except Exception:
        logger.exception(f"Progress sink failed on {stage.value}")


def _report(callback: Optional[WakeupCallback], message: str, percent: int):
    if callback is None:
        return
    try:
        callback(message, percent)
    except Exception:
        logger.exception("Wake-up progress callback failed")
