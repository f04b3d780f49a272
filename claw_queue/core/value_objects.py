"""
Value Objects for the claw queue.

Immutable objects that represent values in the domain.
Value objects are compared by value, not by identity.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional


# =============================================================================
# Enums
# =============================================================================


class ParticipantStatus(str, Enum):
    """Persisted lifecycle status of a participant."""

    CREATED = "created"   # Intent created, payment not confirmed
    WAITING = "waiting"   # Paid, in line
    ACTIVE = "active"     # Holds the machine
    DONE = "done"         # Finished, timed out or ended by an operator


class ControlAction(str, Enum):
    """Control inputs accepted from the active participant."""

    MOVE = "move"
    RELEASE = "release"
    GRAB = "grab"


class RejectionCode(str, Enum):
    """Typed reasons for rejecting an operation."""

    NO_ACTIVE_SESSION = "no_active_session"
    GRAB_ALREADY_USED = "grab_already_used"
    NOT_ACTIVE = "not_active"
    SESSION_IN_PROGRESS = "session_in_progress"
    PARTICIPANT_NOT_FOUND = "participant_not_found"
    NO_CREDITS_REMAINING = "no_credits_remaining"
    UNKNOWN_ACTION = "unknown_action"


class EndReason(str, Enum):
    """Why a session ended."""

    COMPLETED = "completed"
    NO_FIRST_MOVE = "no_first_move"
    ADMIN_END = "admin_end"
    ADMIN_STATUS_CHANGE = "admin_status_change"
    ADMIN_REQUEUE = "admin_requeue"
    ADMIN_DELETE_ACTIVE = "admin_delete_active"
    ADMIN_DELETE_ALL = "admin_delete_all"
    CREDITS_REVOKED = "credits_revoked"


# =============================================================================
# Credits
# =============================================================================


DEFAULT_MAX_CREDITS = 5


def credits_for_amount(amount: float, max_credits: int = DEFAULT_MAX_CREDITS) -> int:
    """
    Convert a paid amount into whole credits.

    One credit per full currency unit, capped at ``max_credits``. NaN,
    infinities and non-positive amounts buy nothing.

    Args:
        amount: Paid amount in currency units.
        max_credits: Upper bound on credits per payment.

    Returns:
        Number of credits granted.
    """
    if not math.isfinite(amount) or amount <= 0:
        return 0
    return min(max_credits, math.floor(amount))


# =============================================================================
# Participant
# =============================================================================


def _to_int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    return int(value)


def _to_float(value: Any, default: float = 0.0) -> float:
    if value in (None, ""):
        return default
    return float(value)


def _to_opt_str(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)


@dataclass(frozen=True)
class Participant:
    """
    Persisted participant record.

    Attributes:
        id: Participant identity.
        name: Display name.
        credits_total: Credits bought.
        credits_used: Credits consumed so far (never above credits_total).
        credits_pulsed: Whether machine credits were already pulsed once.
        status: Lifecycle status.
        queued_at: Ordering timestamp; refreshed when moved to the back.
    """

    id: int
    name: str
    credits_total: int = 0
    credits_used: int = 0
    credits_pulsed: bool = False
    status: ParticipantStatus = ParticipantStatus.CREATED
    queued_at: float = 0.0
    email: Optional[str] = None
    intent_id: Optional[str] = None
    payment_id: Optional[str] = None
    session_token: Optional[str] = None
    amount_requested: float = 0.0
    amount_paid: Optional[float] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def credits_remaining(self) -> int:
        """Credits still available to play."""
        return max(0, self.credits_total - self.credits_used)

    @property
    def is_waiting(self) -> bool:
        return self.status is ParticipantStatus.WAITING

    @property
    def is_eligible(self) -> bool:
        """Waiting with at least one credit left."""
        return self.is_waiting and self.credits_remaining > 0

    def evolve(self, **changes: Any) -> "Participant":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Participant":
        """Build a participant from a Redis hash."""
        amount_paid = data.get("amount_paid")
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            credits_total=_to_int(data.get("credits_total")),
            credits_used=_to_int(data.get("credits_used")),
            credits_pulsed=_to_int(data.get("credits_pulsed")) == 1,
            status=ParticipantStatus(data.get("status") or ParticipantStatus.CREATED.value),
            queued_at=_to_float(data.get("queued_at")),
            email=_to_opt_str(data.get("email")),
            intent_id=_to_opt_str(data.get("intent_id")),
            payment_id=_to_opt_str(data.get("payment_id")),
            session_token=_to_opt_str(data.get("session_token")),
            amount_requested=_to_float(data.get("amount_requested")),
            amount_paid=None if amount_paid in (None, "") else float(amount_paid),
            created_at=_to_float(data.get("created_at")),
            updated_at=_to_float(data.get("updated_at")),
        )

    def to_mapping(self) -> dict[str, str]:
        """Flatten into Redis hash fields (empty string for missing values)."""
        return {
            "id": str(self.id),
            "name": self.name,
            "credits_total": str(self.credits_total),
            "credits_used": str(self.credits_used),
            "credits_pulsed": "1" if self.credits_pulsed else "0",
            "status": self.status.value,
            "queued_at": repr(self.queued_at),
            "email": self.email or "",
            "intent_id": self.intent_id or "",
            "payment_id": self.payment_id or "",
            "session_token": self.session_token or "",
            "amount_requested": repr(self.amount_requested),
            "amount_paid": "" if self.amount_paid is None else repr(self.amount_paid),
            "created_at": repr(self.created_at),
            "updated_at": repr(self.updated_at),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses (no secrets)."""
        return {
            "id": self.id,
            "name": self.name,
            "credits_total": self.credits_total,
            "credits_used": self.credits_used,
            "credits_remaining": self.credits_remaining,
            "credits_pulsed": self.credits_pulsed,
            "status": self.status.value,
            "queued_at": self.queued_at,
            "amount_paid": self.amount_paid,
        }


# =============================================================================
# Session Snapshot
# =============================================================================


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Point-in-time view of the active session.

    Deadlines are epoch milliseconds, matching what realtime clients expect.
    """

    active_id: Optional[int] = None
    credit_ends_at: Optional[int] = None
    first_move_deadline: Optional[int] = None
    credits_remaining: Optional[int] = None

    @classmethod
    def idle(cls) -> "SessionSnapshot":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_id": self.active_id,
            "credit_ends_at": self.credit_ends_at,
            "first_move_deadline": self.first_move_deadline,
            "credits_remaining": self.credits_remaining,
        }


# =============================================================================
# Action Result
# =============================================================================


@dataclass(frozen=True)
class ActionResult:
    """
    Result of a scheduler operation.

    Attributes:
        success: Whether the operation was accepted.
        error: Rejection code when not accepted.
        data: Optional payload for the caller.
    """

    success: bool
    error: Optional[RejectionCode] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def rejected(cls, error: RejectionCode, **data: Any) -> "ActionResult":
        return cls(success=False, error=error, data=data)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        result: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["message"] = self.error.value
        if self.data:
            result["data"] = self.data
        return result
