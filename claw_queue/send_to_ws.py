"""
WebSocket client for sending events to the realtime relay.

This module provides utilities for sending session events
to connected WebSocket clients.
"""

import json
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

from claw_queue.configs import get_settings
from claw_queue.loggers import logger


async def send_to_ws(
    event: str,
    data: Optional[dict[str, Any]] = None,
    ws_url: Optional[str] = None,
    channel: Optional[str] = None,
) -> bool:
    """
    Send an event to the WebSocket server.

    Args:
        event: The event name/type to send.
        data: Optional dictionary of event data.
        ws_url: WebSocket URL to connect to (default from settings).
        channel: Realtime channel name (default from settings).

    Returns:
        True if the message was sent successfully, False otherwise.

    Example:
        await send_to_ws(
            event='credit-start',
            data={'participant_id': 7, 'credit_ends_at': 1760000000000},
        )
    """
    services = get_settings().services
    message = {
        "event": event,
        "channel": channel or services.realtime_channel,
        "data": data,
    }

    try:
        async with websockets.connect(ws_url or services.websocket_url) as ws:
            await ws.send(json.dumps(message))
            logger.debug(f"WebSocket message sent: {event}")
            return True
    except WebSocketException as e:
        logger.warning(f"WebSocket connection error: {e}")
        return False
    except Exception as e:
        logger.error(f"Failed to send WebSocket message: {e}")
        return False
