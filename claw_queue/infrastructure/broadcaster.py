"""
Realtime broadcaster.

Session events are put on an in-process event queue without waiting and
relayed to the WebSocket server by a background consumer, so a slow or
unreachable relay never holds up the scheduler.
"""

import asyncio
from typing import Any, Optional

from claw_queue.event_system import EventConsumer, EventPublisher, EventType
from claw_queue.loggers import logger
from claw_queue.send_to_ws import send_to_ws


DEFAULT_MAX_PENDING = 1000


class RealtimeBroadcaster:
    """
    Fire-and-forget publisher for realtime observers.

    Attributes:
        ws_url: WebSocket relay URL (default from settings).
        channel: Realtime channel name (default from settings).
    """

    def __init__(
        self,
        ws_url: Optional[str] = None,
        channel: Optional[str] = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self.ws_url = ws_url
        self.channel = channel
        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._publisher = EventPublisher(self._event_queue)
        self._consumer = EventConsumer(self._event_queue)

        for event_type in EventType:
            self._consumer.register_handler(event_type.value, self._relay)

    @property
    def pending(self) -> int:
        """Events waiting to be relayed."""
        return self._event_queue.qsize()

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Queue an event. Never raises."""
        try:
            self._publisher.publish_nowait(event, payload=payload)
        except Exception as e:
            logger.error(f"Failed to queue realtime event {event}: {e}")

    async def _relay(self, event: dict[str, Any]) -> None:
        sent = await send_to_ws(
            event["type"],
            event.get("payload"),
            ws_url=self.ws_url,
            channel=self.channel,
        )
        if not sent:
            logger.debug(f"Realtime event {event['type']} was not delivered")

    async def start(self) -> None:
        """Start relaying queued events."""
        await self._consumer.start_consuming()

    async def stop(self) -> None:
        """Stop relaying. Undelivered events are dropped."""
        await self._consumer.stop_consuming()
