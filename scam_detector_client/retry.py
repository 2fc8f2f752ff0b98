import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from scam_detector_client.errors import (
    DeadlineExceeded,
    NonRetryable,
    RetriesExhausted,
    classify_error,
)
from scam_detector_client.models import (
    ClassifiedError,
    ProgressEvent,
    ProgressStage,
    RetryPolicy,
)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
ProgressSink = Callable[[ProgressEvent], Any]

# Percent range shared out between attempts; 100 is reserved for success
FIRST_PERCENT = 10
LAST_PERCENT = 90


class _Interrupted(Exception):
    """The deadline passed or the caller cancelled while an attempt was running"""


class _ProgressReporter:
    """Keeps percent non-decreasing within one orchestrated call"""

    def __init__(self, sink: Optional[ProgressSink], max_attempts: int):
        self.sink = sink
        self.band = (LAST_PERCENT - FIRST_PERCENT) / max_attempts
        self.percent = 0

    def emit(self, stage: ProgressStage, message: str, percent: Optional[int] = None):
        if percent is not None:
            self.percent = max(self.percent, min(int(percent), 100))
        if self.sink is not None:
            self.sink(ProgressEvent(stage=stage, message=message, percent=self.percent))

    def attempt_started(self, attempt: int) -> None:
        if attempt == 1:
            message = "Connecting to analysis server..."
        else:
            message = f"Server is waking up (attempt {attempt}). Retrying now..."
        self.emit(ProgressStage.connecting, message, self._position(attempt, 0.0))

    def waiting(self, stage: ProgressStage, attempt: int, fraction: float, remaining: float):
        message = (
            f"Server is waking up (attempt {attempt}). "
            f"Waiting {remaining:.0f} seconds..."
        )
        self.emit(stage, message, self._position(attempt, fraction))

    def _position(self, attempt: int, fraction: float) -> float:
        return FIRST_PERCENT + (attempt - 1 + fraction) * self.band


class RetryOrchestrator:
    """Runs a fallible coroutine under a RetryPolicy.

    ``clock`` and ``sleep`` default to the monotonic clock and asyncio.sleep;
    tests swap in a fake pair to control time.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self.logger = logger

    async def execute(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy] = None,
        progress_sink: Optional[ProgressSink] = None,
        *,
        wait_stage: ProgressStage = ProgressStage.waiting,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Invoke ``operation`` until it succeeds or the policy gives up.

        Raises NonRetryable as soon as a failure is not worth retrying,
        DeadlineExceeded once ``max_total_wait`` passes (or ``cancel_event``
        is set) and RetriesExhausted when every attempt failed.
        """
        policy = policy or RetryPolicy()
        progress = _ProgressReporter(progress_sink, policy.max_attempts)
        start_time = self._clock()
        deadline = start_time + policy.max_total_wait
        last_error: Optional[ClassifiedError] = None
        last_exc: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            if self._interrupted(deadline, cancel_event):
                raise self._deadline_exceeded(progress, last_error, attempt - 1) from last_exc

            progress.attempt_started(attempt)
            try:
                result = await self._run_attempt(operation, deadline, cancel_event)
            except _Interrupted:
                raise self._deadline_exceeded(progress, last_error, attempt) from last_exc
            except Exception as exc:
                error = classify_error(exc)
                last_error, last_exc = error, exc
                self.logger.warning(
                    f"Attempt {attempt}/{policy.max_attempts} failed: "
                    f"{error.category.value} {error.status or ''} {error.detail}".rstrip()
                )

                if self._interrupted(deadline, cancel_event):
                    raise self._deadline_exceeded(progress, error, attempt) from exc

                if not policy.should_retry(error):
                    self.logger.error(f"Giving up on non-retryable error: {error.message}")
                    raise NonRetryable(error, attempt) from exc

                if attempt < policy.max_attempts:
                    delay = policy.compute_delay(attempt)
                    self.logger.debug(f"Retrying in {delay:.2f}s")
                    completed = await self._wait(
                        delay, attempt, deadline, policy, progress, wait_stage, cancel_event
                    )
                    if not completed:
                        raise self._deadline_exceeded(progress, error, attempt) from exc
            else:
                progress.emit(ProgressStage.finalizing, "Analysis complete.", 100)
                return result

        self.logger.error(f"All {policy.max_attempts} attempts failed")
        raise RetriesExhausted(last_error, policy.max_attempts) from last_exc

    async def _run_attempt(
        self,
        operation: Operation,
        deadline: float,
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """Await one attempt, abandoning it if the deadline or a cancel arrives first"""
        task = asyncio.ensure_future(operation())
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=max(deadline - self._clock(), 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise _Interrupted()
        return task.result()

    async def _wait(
        self,
        delay: float,
        attempt: int,
        deadline: float,
        policy: RetryPolicy,
        progress: _ProgressReporter,
        stage: ProgressStage,
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Back off for ``delay`` seconds, ticking progress as time passes.

        Returns False when the deadline or a cancel cut the wait short.
        """
        wait_start = self._clock()
        wait_end = min(wait_start + delay, deadline)

        while True:
            now = self._clock()
            if now >= wait_end:
                break
            if cancel_event is not None and cancel_event.is_set():
                return False
            await self._sleep(min(policy.progress_interval, wait_end - now))
            elapsed = self._clock() - wait_start
            fraction = min(elapsed / delay, 1.0) if delay > 0 else 1.0
            progress.waiting(stage, attempt, fraction, max(delay - elapsed, 0.0))

        return wait_start + delay <= deadline and not (
            cancel_event is not None and cancel_event.is_set()
        )

    def _interrupted(self, deadline: float, cancel_event: Optional[asyncio.Event]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return self._clock() > deadline

    def _deadline_exceeded(
        self,
        progress: _ProgressReporter,
        error: Optional[ClassifiedError],
        attempts: int,
    ) -> DeadlineExceeded:
        self.logger.error(f"Deadline exceeded after {attempts} attempt(s)")
        progress.emit(
            ProgressStage.timeout, "Server is taking unusually long to respond."
        )
        return DeadlineExceeded(error, attempts)
