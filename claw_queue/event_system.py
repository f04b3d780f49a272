"""
Event system for the claw queue.

This module provides a publish-subscribe event system used to fan out
realtime session events (queue updates, session start/end, credit windows)
without blocking the scheduler.
"""

import asyncio
import inspect
from enum import Enum
from typing import Callable, Any, Union

from claw_queue.loggers import logger


class EventType(str, Enum):
    """
    Enumeration of realtime event types.

    These events are published when session state changes occur.
    """

    QUEUE_UPDATE = "queue-update"
    PLAYER_START = "player-start"
    CREDIT_START = "credit-start"
    PLAYER_END = "player-end"
    PLAYER_TIMEOUT = "player-timeout"


class EventPublisher:
    """
    Publisher for sending events to the event queue.

    Attributes:
        event_queue: The asyncio queue to publish events to.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue

    def publish_nowait(self, event_type: Union[EventType, str], **data: Any) -> bool:
        """
        Publish an event without suspending.

        Returns:
            False if the queue was full and the event was dropped.
        """
        event = {"type": event_type, **data}
        try:
            self.event_queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping {event_type}")
            return False


class EventConsumer:
    """
    Consumer for processing events from the event queue.

    Handles event dispatch to registered handlers based on event type.

    Attributes:
        event_queue: The asyncio queue to consume events from.
        handlers: Mapping of event types to their handler functions.
        is_consuming: Flag indicating if the consumer is active.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue
        self.handlers: dict[Union[EventType, str], list[Callable]] = {}
        self.is_consuming = False
        self._consume_task: asyncio.Task | None = None

    def register_handler(
        self,
        event_type: Union[EventType, str],
        handler: Callable,
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event type to handle.
            handler: The handler function (sync or async).
        """
        if event_type not in self.handlers:
            self.handlers[event_type] = []
        self.handlers[event_type].append(handler)

    async def _process_event(self, event: dict[str, Any]) -> None:
        """
        Process a single event by calling all registered handlers.

        Args:
            event: The event dictionary containing type and data.
        """
        event_type = event.get("type")
        if event_type not in self.handlers:
            return

        handlers = self.handlers[event_type]

        async_handlers = [h for h in handlers if inspect.iscoroutinefunction(h)]
        sync_handlers = [h for h in handlers if not inspect.iscoroutinefunction(h)]

        if async_handlers:
            results = await asyncio.gather(
                *(handler(event) for handler in async_handlers),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Event handler for {event_type} failed: {result}")

        for handler in sync_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler for {event_type} failed: {e}")

    async def _consume_loop(self) -> None:
        """Main consumption loop that processes events from the queue."""
        while self.is_consuming:
            try:
                # Use wait_for with timeout to allow checking is_consuming flag
                event = await asyncio.wait_for(
                    self.event_queue.get(),
                    timeout=0.5,
                )
                await self._process_event(event)
                self.event_queue.task_done()
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Event consumer error: {e}")

    async def start_consuming(self) -> None:
        """Start the event consumption loop."""
        if self.is_consuming:
            return

        self.is_consuming = True
        self._consume_task = asyncio.create_task(self._consume_loop())

    async def stop_consuming(self) -> None:
        """Stop processing events and cancel the consumption task."""
        self.is_consuming = False

        if self._consume_task:
            self._consume_task.cancel()
            try:
                await self._consume_task
            except asyncio.CancelledError:
                pass
            self._consume_task = None
