"""
Active Session - in-memory state of the participant holding the machine.

Never persisted. A restart discards it and boot recovery demotes the
persisted record instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from claw_queue.core.interfaces import TimerHandle
from claw_queue.core.value_objects import SessionSnapshot


@dataclass
class ActiveSession:
    """
    Holds all state for the current session.

    ``credit_seq`` is the epoch: every scheduled window captures it and a
    timer callback whose captured value differs must have no effect.
    """

    participant_id: int
    credits_remaining: int
    credit_seq: int = 0
    has_moved: bool = False
    timer_started: bool = False
    grab_used: bool = False
    credit_consumed: bool = False
    credit_ends_at: Optional[int] = None
    first_move_deadline: Optional[int] = None
    credit_timer: Optional[TimerHandle] = None
    first_move_timer: Optional[TimerHandle] = None

    def advance_epoch(self, seq: int) -> int:
        """Enter a new epoch; the consumption guard starts clear."""
        self.credit_seq = seq
        self.credit_consumed = False
        return seq

    def is_current(self, captured_seq: int) -> bool:
        return self.credit_seq == captured_seq

    def reset_cycle(self) -> None:
        """Clear per-credit flags before the next first-move window."""
        self.timer_started = False
        self.credit_ends_at = None
        self.has_moved = False
        self.grab_used = False

    def cancel_timers(self) -> None:
        """Cancel outstanding timers. Callbacks may still fire."""
        for handle in (self.credit_timer, self.first_move_timer):
            if handle is not None:
                handle.cancel()
        self.credit_timer = None
        self.first_move_timer = None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            active_id=self.participant_id,
            credit_ends_at=self.credit_ends_at,
            first_move_deadline=self.first_move_deadline,
            credits_remaining=self.credits_remaining,
        )
