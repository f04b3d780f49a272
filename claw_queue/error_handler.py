"""
Command error handling utilities.

This module provides a decorator that turns the outcome of an async
service call into the uniform response dictionary sent back over Redis.
"""

from functools import wraps
from typing import Any, Callable, TypeVar

from claw_queue.core.exceptions import ClawQueueError, RedisConnectionError
from claw_queue.core.value_objects import ActionResult
from claw_queue.loggers import logger


# Type variable for generic function typing
F = TypeVar("F", bound=Callable[..., Any])


def _to_data(result: Any) -> Any:
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if isinstance(result, list):
        return [_to_data(item) for item in result]
    return result


def error_handler(success_message: str) -> Callable[[F], F]:
    """
    Decorator for handling service errors and providing unified responses.

    An ``ActionResult`` is passed through as-is so rejections keep their
    code; other return values become ``data``.

    Args:
        success_message: The message to return on successful operation.

    Returns:
        Decorated function with error handling.

    Example:
        @error_handler("Credits adjusted")
        async def admin_adjust_credits(self, participant_id: int, delta: int):
            return await self._admin.adjust_credits(participant_id, delta)
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
            try:
                result = await func(*args, **kwargs)
                if isinstance(result, ActionResult):
                    response = result.to_dict()
                    response.setdefault("message", success_message)
                    return response
                if result is not None:
                    return {
                        "success": True,
                        "message": success_message,
                        "data": _to_data(result),
                    }
                return {
                    "success": True,
                    "message": success_message,
                }
            except RedisConnectionError as e:
                logger.error(f"Redis connection error: {e}")
                return {
                    "success": False,
                    "message": f"Redis connection error: {e}",
                    "error": e.code,
                }
            except ClawQueueError as e:
                logger.warning(f"{func.__name__} failed: {e.message}")
                return {
                    "success": False,
                    "message": e.message,
                    "error": e.code,
                }
            except Exception as e:
                logger.error(f"Unexpected error in {func.__name__}: {e}")
                return {
                    "success": False,
                    "message": f"Unexpected error: {e}",
                }
        return wrapper  # type: ignore
    return decorator
