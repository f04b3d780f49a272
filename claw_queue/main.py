"""
Claw Queue - Main entry point.

Starts the session scheduler and serves commands received over Redis
pub/sub, publishing one response per command.
"""

import asyncio
import json
from typing import Final

from redis.asyncio import Redis

from claw_queue.application.api_facade import ClawQueueFacade
from claw_queue.application.command_handler import CommandHandler
from claw_queue.configs import get_settings
from claw_queue.loggers import logger


# =============================================================================
# Constants
# =============================================================================

settings = get_settings()
COMMAND_CHANNEL: Final[str] = settings.payment.command_channel
RESPONSE_CHANNEL: Final[str] = settings.payment.response_channel


# =============================================================================
# Redis Command Listener
# =============================================================================


async def listen_to_redis(redis: Redis, api: ClawQueueFacade) -> None:
    """
    Listen for commands on Redis pub/sub and process them.

    Args:
        redis: Redis client instance.
        api: ClawQueueFacade instance for command execution.
    """
    try:
        report = await api.start()
        logger.info(f"Boot recovery: {report}")
    except Exception as e:
        logger.error(f"Critical error during startup: {e}")
        await api.shutdown()
        return

    handler = CommandHandler(api)
    pubsub = redis.pubsub()
    await pubsub.subscribe(COMMAND_CHANNEL)
    logger.info(f"Listening for commands on channel: {COMMAND_CHANNEL}")

    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue

            raw_data = message.get("data")

            # Handle ping messages
            if raw_data == "ping":
                continue

            try:
                command = json.loads(raw_data)
                logger.info(f"Received command: {command.get('command')}")

                response = await handler.execute(command)

                await redis.publish(RESPONSE_CHANNEL, json.dumps(response))
                logger.debug(f"Response sent to {RESPONSE_CHANNEL}: {response}")

            except json.JSONDecodeError as e:
                logger.error(f"Command parsing error: {e}")
            except Exception as e:
                logger.error(f"Unexpected error processing command: {e}")
    finally:
        await pubsub.unsubscribe(COMMAND_CHANNEL)
        await api.shutdown()


# =============================================================================
# Main Entry Point
# =============================================================================


async def main() -> None:
    """
    Main entry point for the claw queue service.

    Initializes the Redis connection and starts the command listener.
    """
    redis = Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        decode_responses=settings.redis.decode_responses,
    )

    api = ClawQueueFacade.from_redis(redis, settings)

    try:
        await listen_to_redis(redis, api)
    finally:
        await redis.aclose()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")


if __name__ == "__main__":
    run()
