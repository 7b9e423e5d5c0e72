"""Fire-and-forget completion events for the achievement system.

Key features:
- Non-blocking emission (asyncio.Queue.put_nowait())
- Graceful degradation (drop + log on queue full or sink failure)
- Pluggable delivery: Redis pub/sub, HTTP webhook or log only

A failed or dropped event never fails the progress write that produced it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import orjson
import structlog


if TYPE_CHECKING:
    from uuid import UUID

    from redis.asyncio import Redis

    from trailmark.config import Settings


logger = structlog.get_logger(__name__)


class CompletionKind(str, Enum):
    LESSON_COMPLETED = "lesson_completed"
    MODULE_COMPLETED = "module_completed"


@dataclass(frozen=True, slots=True)
class CompletionEvent:
    """A lesson or module completion transition.

    Attributes:
        user_id: Learner UUID
        kind: Which transition happened
        entity_id: Completed lesson id or module id
        module_id: Owning module id
        timestamp: When the transition was committed
    """

    user_id: UUID
    kind: CompletionKind
    entity_id: str
    module_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": str(self.user_id),
            "kind": self.kind.value,
            "entity_id": self.entity_id,
            "module_id": self.module_id,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())


# ==============================================================================
# Sinks
# ==============================================================================


class CompletionSink(Protocol):
    async def deliver(self, event: CompletionEvent) -> None: ...


class LoggingCompletionSink:
    """Writes events to the log only."""

    async def deliver(self, event: CompletionEvent) -> None:
        logger.info("completion_event", **event.to_dict())


class RedisCompletionSink:
    """Publishes events on a Redis pub/sub channel."""

    def __init__(self, redis: Redis, channel: str) -> None:
        self.redis = redis
        self.channel = channel

    async def deliver(self, event: CompletionEvent) -> None:
        await self.redis.publish(self.channel, event.to_json())


class WebhookCompletionSink:
    """POSTs events as JSON to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def deliver(self, event: CompletionEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                self.url,
                content=event.to_json(),
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()


def build_completion_sink(settings: Settings, redis: Redis | None = None) -> CompletionSink:
    """Create the sink selected by ``achievements_sink``.

    Falls back to log-only delivery when the selected transport is not
    available (no Redis client, no webhook URL).
    """
    if settings.achievements_sink == "redis":
        if redis is not None:
            return RedisCompletionSink(redis, settings.achievements_channel)
        logger.warning("completion_sink_fallback", requested="redis", reason="redis_unavailable")
    elif settings.achievements_sink == "webhook":
        if settings.achievements_webhook_url:
            return WebhookCompletionSink(
                settings.achievements_webhook_url,
                timeout=settings.achievements_webhook_timeout,
            )
        logger.warning("completion_sink_fallback", requested="webhook", reason="no_webhook_url")
    return LoggingCompletionSink()


# ==============================================================================
# Emitter
# ==============================================================================


class CompletionEventEmitter:
    """Non-blocking completion event emitter with background worker."""

    def __init__(
        self,
        sink: CompletionSink,
        queue_size: int = 1000,
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize completion event emitter.

        Args:
            sink: Delivery target
            queue_size: Maximum queue size (events dropped when full)
            poll_interval: Max seconds the worker waits before rechecking shutdown
        """
        self.sink = sink
        self.queue_size = queue_size
        self.poll_interval = poll_interval

        self._queue: asyncio.Queue[CompletionEvent] = asyncio.Queue(maxsize=queue_size)
        self._running = False
        self._worker_task: asyncio.Task | None = None

        # Counters for monitoring
        self._events_emitted = 0
        self._events_dropped = 0
        self._events_delivered = 0
        self._events_failed = 0

    @property
    def stats(self) -> dict[str, int | bool]:
        return {
            "running": self._running,
            "queue_depth": self._queue.qsize(),
            "events_emitted": self._events_emitted,
            "events_dropped": self._events_dropped,
            "events_delivered": self._events_delivered,
            "events_failed": self._events_failed,
        }

    def emit(self, event: CompletionEvent) -> bool:
        """Queue an event (fire-and-forget).

        Returns:
            True if queued, False if dropped
        """
        try:
            self._queue.put_nowait(event)
            self._events_emitted += 1
            return True
        except asyncio.QueueFull:
            self._events_dropped += 1
            logger.warning(
                "completion_event_dropped",
                kind=event.kind.value,
                entity_id=event.entity_id,
                queue_size=self.queue_size,
                dropped_total=self._events_dropped,
            )
            return False

    # ==========================================================================
    # Background Worker
    # ==========================================================================

    async def start(self) -> None:
        """Start the background worker."""
        if self._running:
            logger.warning("completion_emitter_already_running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(
            self._worker_loop(),
            name="completion_event_worker",
        )
        logger.info(
            "completion_emitter_started",
            sink=type(self.sink).__name__,
            queue_size=self.queue_size,
        )

    async def stop(self) -> None:
        """Stop the worker and deliver whatever is still queued."""
        if not self._running:
            return

        self._running = False

        if self._worker_task:
            # Let the worker finish its current delivery
            try:
                await asyncio.wait_for(self._worker_task, timeout=5.0)
            except TimeoutError:
                logger.warning("completion_worker_stop_timeout")
                self._worker_task.cancel()
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        await self._drain()

        logger.info("completion_emitter_stopped", **self.stats)

    async def _worker_loop(self) -> None:
        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=self.poll_interval)
            except TimeoutError:
                continue
            await self._deliver(event)

    async def _deliver(self, event: CompletionEvent) -> None:
        try:
            await self.sink.deliver(event)
            self._events_delivered += 1
        except Exception:
            self._events_failed += 1
            logger.exception(
                "completion_event_delivery_failed",
                kind=event.kind.value,
                entity_id=event.entity_id,
                module_id=event.module_id,
            )

    async def _drain(self) -> None:
        """Deliver remaining events during shutdown."""
        remaining = 0
        while not self._queue.empty():
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            remaining += 1
            await self._deliver(event)

        if remaining:
            logger.info("completion_events_drained", count=remaining)
