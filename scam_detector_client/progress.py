import asyncio
import threading
from typing import Any, Callable, Optional

from loguru import logger

from scam_detector_client.models import ProgressEvent, ProgressStage

ProgressCallback = Callable[[ProgressEvent], Any]


class ProgressChannel:
    """Relays progress events to at most one listener.

    Subscribing replaces the current listener. Events published while nobody
    listens are dropped. A listener that raises is logged and never breaks
    the publisher.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriber: Optional[ProgressCallback] = None
        self._pending: set[asyncio.Task] = set()
        self.logger = logger

    @property
    def has_subscriber(self) -> bool:
        with self._lock:
            return self._subscriber is not None

    def subscribe(self, callback: ProgressCallback) -> None:
        with self._lock:
            self._subscriber = callback

    def unsubscribe(self) -> None:
        with self._lock:
            self._subscriber = None

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscriber = self._subscriber
        if subscriber is None:
            return

        try:
            result = subscriber(event)
        except Exception:
            self.logger.exception(f"Progress subscriber failed on {event.stage.value}")
            return

        if asyncio.iscoroutine(result):
            self._schedule(result)

    def emit(self, stage: ProgressStage, message: str, percent: int) -> None:
        self.publish(ProgressEvent(stage=stage, message=message, percent=percent))

    __call__ = publish

    def _schedule(self, coro) -> None:
        """Run a coroutine subscriber in the background on the current loop"""
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            self.logger.warning("Dropped async progress subscriber: no running loop")
            return
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.opt(exception=task.exception()).error(
                "Async progress subscriber failed"
            )
