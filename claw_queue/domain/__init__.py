"""
Domain layer - Session scheduling logic.

Contains:
- Active session state
- Event-loop timers
- Session scheduler
- Boot recovery
"""

from .active_session import ActiveSession
from .timers import LoopTimers, LoopTimerHandle
from .boot_recovery import BootRecovery, RecoveryReport
from .session_scheduler import SessionScheduler


__all__ = [
    "ActiveSession",
    "LoopTimers",
    "LoopTimerHandle",
    "BootRecovery",
    "RecoveryReport",
    "SessionScheduler",
]
