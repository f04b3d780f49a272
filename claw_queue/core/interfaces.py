"""
Interfaces (Protocols) for the claw queue.

Defines contracts for the queue store, the machine actuator, the realtime
broadcaster and the timer source using Python's Protocol for structural
subtyping (duck typing with type hints).
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from claw_queue.core.value_objects import Participant, ParticipantStatus


# =============================================================================
# Queue Store
# =============================================================================


@runtime_checkable
class QueueStore(Protocol):
    """Protocol for the persisted participant ledger."""

    async def get(self, participant_id: int) -> Optional[Participant]:
        """Get a participant by id."""
        ...

    async def get_by_intent(self, intent_id: str) -> Optional[Participant]:
        """Get a participant by payment intent id."""
        ...

    async def get_by_token(self, session_token: str) -> Optional[Participant]:
        """Get a participant by session token."""
        ...

    async def get_by_payment_id(self, payment_id: str) -> Optional[Participant]:
        """Get a participant by provider payment id."""
        ...

    async def create(
        self,
        name: str,
        email: Optional[str] = None,
        amount_requested: float = 0.0,
        intent_id: Optional[str] = None,
        session_token: Optional[str] = None,
    ) -> Participant:
        """Create a participant in ``created`` status."""
        ...

    async def attach_payment(self, intent_id: str, payment_id: str) -> Optional[Participant]:
        """Record the provider payment id for an intent."""
        ...

    async def confirm_payment(
        self,
        participant_id: int,
        credits_total: int,
        amount_paid: Optional[float] = None,
        payment_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Participant:
        """Grant credits and put the participant at the end of the line."""
        ...

    async def list_queue(self) -> list[Participant]:
        """Waiting and active participants ordered by ``queued_at``."""
        ...

    async def list_by_status(self, status: ParticipantStatus) -> list[Participant]:
        """All participants with the given status ordered by ``queued_at``."""
        ...

    async def list_all(self) -> list[Participant]:
        """All participants, newest first."""
        ...

    async def set_status(self, participant_id: int, status: ParticipantStatus) -> None:
        """Set participant status."""
        ...

    async def use_one_credit(self, participant_id: int) -> int:
        """Increment used credits, clamped to the total. Returns new used count."""
        ...

    async def mark_credits_pulsed(self, participant_id: int) -> None:
        """Set the one-way pulsed flag."""
        ...

    async def requeue_to_end(self, participant_id: int) -> None:
        """Refresh the ordering timestamp and set ``waiting``."""
        ...

    async def adjust_credits(self, participant_id: int, delta: int) -> Optional[Participant]:
        """Add or subtract total credits, never below used credits."""
        ...

    async def set_credits_total(self, participant_id: int, credits_total: int) -> Optional[Participant]:
        """Set total credits, never below used credits."""
        ...

    async def set_credits_used(self, participant_id: int, credits_used: int) -> Optional[Participant]:
        """Set used credits, clamped to ``[0, credits_total]``."""
        ...

    async def delete(self, participant_id: int) -> None:
        """Delete a participant."""
        ...

    async def delete_all(self) -> None:
        """Delete every participant."""
        ...


# =============================================================================
# Machine Actuator
# =============================================================================


@runtime_checkable
class Actuator(Protocol):
    """Protocol for the machine's physical input channels."""

    async def pulse(self, channel: str, duration_ms: int) -> None:
        """Close a channel for ``duration_ms`` then open it."""
        ...

    async def press(self, channel: str) -> None:
        """Close a channel until released."""
        ...

    async def release(self, channel: str) -> None:
        """Open a channel."""
        ...

    async def release_all(self) -> None:
        """Open every channel. Safe to call repeatedly."""
        ...


# =============================================================================
# Realtime Broadcaster
# =============================================================================


@runtime_checkable
class Broadcaster(Protocol):
    """Protocol for realtime snapshot publishing. Must never raise."""

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Queue an event for observers."""
        ...


# =============================================================================
# Timers
# =============================================================================


TimerCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class TimerHandle(Protocol):
    """Handle for a scheduled timer."""

    def cancel(self) -> None:
        """Best-effort cancellation."""
        ...


@runtime_checkable
class Timers(Protocol):
    """Source of delayed callbacks."""

    def call_later(self, delay: float, callback: TimerCallback, name: str = "") -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""
        ...
