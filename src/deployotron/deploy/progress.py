"""Progress notification delivery.

The orchestrator hands events to a :class:`ProgressChannel`, which queues them
and delivers them to the real sink from a background task. A slow or failing
sink therefore never stalls or fails a deployment run.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from types import TracebackType
from typing import Protocol, runtime_checkable

from deployotron.lib.logging_config import get_logger
from deployotron.models.deployment import ProgressEvent

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 256


@runtime_checkable
class ProgressSink(Protocol):
    """Receiver of progress events (sync or async ``publish``)."""

    def publish(self, event: ProgressEvent) -> None | Awaitable[None]:
        """Receive one event."""
        ...


class NullProgressSink:
    """Sink that discards every event."""

    def publish(self, event: ProgressEvent) -> None:
        return None


class ProgressChannel:
    """Queue-backed, fire-and-forget handoff to a progress sink.

    Events are delivered in publish order. Usage::

        async with ProgressChannel(sink) as channel:
            await orchestrator_factory(channel).run(project_id)

    Leaving the context drains every queued event before returning.
    """

    def __init__(self, sink: ProgressSink, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize)
        self._task: asyncio.Task[None] | None = None
        self.dropped = 0

    def publish(self, event: ProgressEvent) -> None:
        """Enqueue an event without blocking; drop it if the queue is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Progress queue full, dropping event {event.step} "
                f"({event.progress_percent}%) for {event.deployment_id}"
            )

    def start(self) -> None:
        """Start the background delivery task."""
        if self._task is None:
            self._task = asyncio.create_task(self._drain(), name="progress-channel")

    async def close(self) -> None:
        """Deliver all queued events, then stop the delivery task."""
        if self._task is None:
            return
        await self._queue.put(None)
        await self._task
        self._task = None

    async def __aenter__(self) -> ProgressChannel:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                result = self._sink.publish(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    f"Progress sink failed on event {event.step} for "
                    f"{event.deployment_id}",
                    exc_info=True,
                )
