"""
Core module - Foundation layer with no external dependencies.

Contains:
- Exceptions
- Interfaces (Protocols)
- Value Objects
"""

from .exceptions import (
    ClawQueueError,
    SchedulerError,
    SchedulerNotReadyError,
    ActuatorError,
    PaymentError,
    IntentNotFoundError,
    InvalidAmountError,
    RepositoryError,
    RedisConnectionError,
    ParticipantNotFoundError,
)
from .interfaces import (
    QueueStore,
    Actuator,
    Broadcaster,
    Timers,
    TimerHandle,
    TimerCallback,
)
from .value_objects import (
    ParticipantStatus,
    ControlAction,
    RejectionCode,
    EndReason,
    Participant,
    SessionSnapshot,
    ActionResult,
    credits_for_amount,
)


__all__ = [
    # Exceptions
    "ClawQueueError",
    "SchedulerError",
    "SchedulerNotReadyError",
    "ActuatorError",
    "PaymentError",
    "IntentNotFoundError",
    "InvalidAmountError",
    "RepositoryError",
    "RedisConnectionError",
    "ParticipantNotFoundError",
    # Interfaces
    "QueueStore",
    "Actuator",
    "Broadcaster",
    "Timers",
    "TimerHandle",
    "TimerCallback",
    # Value Objects
    "ParticipantStatus",
    "ControlAction",
    "RejectionCode",
    "EndReason",
    "Participant",
    "SessionSnapshot",
    "ActionResult",
    "credits_for_amount",
]
