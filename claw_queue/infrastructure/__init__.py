"""
Infrastructure layer - External dependencies and implementations.

Contains:
- Repository implementations (Redis)
- Machine actuator drivers (serial relay board)
- Realtime broadcaster (WebSocket relay)
"""

from .redis_repository import (
    RedisStateRepository,
    RedisQueueStore,
)
from .actuator import (
    SerialRelayActuator,
    DryRunActuator,
    create_actuator,
)
from .broadcaster import RealtimeBroadcaster


__all__ = [
    # Repositories
    "RedisStateRepository",
    "RedisQueueStore",
    # Actuators
    "SerialRelayActuator",
    "DryRunActuator",
    "create_actuator",
    # Broadcasting
    "RealtimeBroadcaster",
]
