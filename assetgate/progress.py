"""Upload progress notifications.

Progress is delivered best-effort: each subscriber gets a bounded queue
that is fed without ever waiting. When a queue is full the event is
dropped, so a slow or absent listener cannot slow an upload down.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from enum import Enum

from pydantic import BaseModel

from .types import OperationId

logger = logging.getLogger(__name__)


class UploadPhase(str, Enum):
    """Phase reported in progress events."""

    STARTING = "starting"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadPhase.COMPLETED, UploadPhase.FAILED)


class UploadProgressEvent(BaseModel):
    """Point-in-time progress of one upload operation."""

    operation_id: OperationId
    bytes_sent: int
    total_bytes: int | None = None
    percentage: int | None = None
    phase: UploadPhase
    error: str | None = None

    @classmethod
    def create(
        cls,
        operation_id: str,
        bytes_sent: int,
        total_bytes: int | None,
        phase: UploadPhase,
        error: str | None = None,
    ) -> UploadProgressEvent:
        percentage = None
        if total_bytes:
            percentage = min(100, round(bytes_sent * 100 / total_bytes))
        elif total_bytes == 0 and phase == UploadPhase.COMPLETED:
            percentage = 100
        return cls(
            operation_id=operation_id,
            bytes_sent=bytes_sent,
            total_bytes=total_bytes,
            percentage=percentage,
            phase=phase,
            error=error,
        )


class ProgressChannel:
    """Bounded, non-blocking queue of progress events."""

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue[UploadProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: UploadProgressEvent) -> bool:
        """Enqueue without waiting. Returns False if the event was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(
                "Progress channel full, dropping event",
                extra={"operation_id": event.operation_id, "dropped": self.dropped},
            )
            return False
        return True

    async def get(self) -> UploadProgressEvent:
        return await self._queue.get()

    def get_nowait(self) -> UploadProgressEvent:
        return self._queue.get_nowait()

    def drain(self) -> list[UploadProgressEvent]:
        """Take every queued event."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def qsize(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[UploadProgressEvent]:
        """Yield events until a terminal phase is seen."""
        while True:
            event = await self._queue.get()
            yield event
            if event.phase.is_terminal:
                return


class ProgressHub:
    """Routes progress events to subscribers by operation id."""

    def __init__(self, queue_size: int = 64):
        self._queue_size = queue_size
        self._channels: dict[str, list[ProgressChannel]] = defaultdict(list)

    def subscribe(self, operation_id: str, maxsize: int | None = None) -> ProgressChannel:
        channel = ProgressChannel(maxsize or self._queue_size)
        self._channels[operation_id].append(channel)
        return channel

    def unsubscribe(self, operation_id: str, channel: ProgressChannel) -> None:
        channels = self._channels.get(operation_id)
        if not channels:
            return
        if channel in channels:
            channels.remove(channel)
        if not channels:
            del self._channels[operation_id]

    def has_listeners(self, operation_id: str) -> bool:
        return bool(self._channels.get(operation_id))

    def publish(self, event: UploadProgressEvent) -> int:
        """Offer an event to every subscriber of its operation.

        A terminal event is the last one routed for an operation; its
        subscriptions are released afterwards. Channels keep whatever they
        already queued.

        Returns the number of channels that accepted it.
        """
        channels = self._channels.get(event.operation_id)
        if not channels:
            return 0
        accepted = sum(1 for channel in list(channels) if channel.offer(event))
        if event.phase.is_terminal:
            del self._channels[event.operation_id]
        return accepted
