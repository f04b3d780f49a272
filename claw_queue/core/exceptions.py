"""
Custom exceptions for the claw queue.

Provides a hierarchy of typed exceptions for better error handling
and more informative error messages.
"""

from typing import Any, Optional


class ClawQueueError(Exception):
    """Base exception for all claw queue errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Optional error code for programmatic handling.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Scheduler Errors
# =============================================================================


class SchedulerError(ClawQueueError):
    """Base exception for session scheduler errors."""

    pass


class SchedulerNotReadyError(SchedulerError):
    """Boot recovery has not run yet."""

    pass


# =============================================================================
# Actuator Errors
# =============================================================================


class ActuatorError(ClawQueueError):
    """Error talking to the machine actuator."""

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.channel = channel
        if channel:
            self.details["channel"] = channel


# =============================================================================
# Payment Errors
# =============================================================================


class PaymentError(ClawQueueError):
    """Base exception for payment intake errors."""

    pass


class IntentNotFoundError(PaymentError):
    """No participant was created for the given intent."""

    pass


class InvalidAmountError(PaymentError):
    """Invalid payment amount."""

    pass


# =============================================================================
# Repository Errors
# =============================================================================


class RepositoryError(ClawQueueError):
    """Base exception for repository errors."""

    pass


class RedisConnectionError(RepositoryError):
    """Error connecting to Redis."""

    pass


class ParticipantNotFoundError(RepositoryError):
    """Requested participant not found."""

    def __init__(self, participant_id: int, **kwargs: Any) -> None:
        super().__init__(f"Participant {participant_id} not found", **kwargs)
        self.details["participant_id"] = participant_id
