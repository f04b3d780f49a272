"""
Admin Service - operator overrides on the participant queue.

Every store mutation runs through ``SessionScheduler.apply_override`` so an
override never interleaves with a session transition.
"""

from functools import partial
from typing import Optional, Union

from claw_queue.core.interfaces import QueueStore
from claw_queue.core.value_objects import (
    ActionResult,
    EndReason,
    Participant,
    ParticipantStatus,
    RejectionCode,
)
from claw_queue.domain.session_scheduler import SessionScheduler
from claw_queue.loggers import logger


def _participant_result(participant: Optional[Participant]) -> ActionResult:
    if participant is None:
        return ActionResult.rejected(RejectionCode.PARTICIPANT_NOT_FOUND)
    return ActionResult.ok(participant=participant.to_dict())


class AdminService:
    """Application service for administrative operations."""

    def __init__(self, store: QueueStore, scheduler: SessionScheduler) -> None:
        self._store = store
        self._scheduler = scheduler

    async def list_participants(self) -> list[Participant]:
        """All participants, newest first."""
        return await self._store.list_all()

    # =========================================================================
    # Credits
    # =========================================================================

    async def adjust_credits(self, participant_id: int, delta: int) -> ActionResult:
        """Add or subtract total credits (clamped to used credits)."""
        logger.info(f"Admin: adjust credits of participant {participant_id} by {delta}")
        participant = await self._scheduler.apply_override(
            partial(self._store.adjust_credits, participant_id, int(delta))
        )
        return _participant_result(participant)

    async def set_credits_total(self, participant_id: int, credits_total: int) -> ActionResult:
        logger.info(f"Admin: set total credits of participant {participant_id} to {credits_total}")
        participant = await self._scheduler.apply_override(
            partial(self._store.set_credits_total, participant_id, int(credits_total))
        )
        return _participant_result(participant)

    async def set_credits_used(self, participant_id: int, credits_used: int) -> ActionResult:
        logger.info(f"Admin: set used credits of participant {participant_id} to {credits_used}")
        participant = await self._scheduler.apply_override(
            partial(self._store.set_credits_used, participant_id, int(credits_used))
        )
        return _participant_result(participant)

    # =========================================================================
    # Queue Position and Status
    # =========================================================================

    async def requeue(self, participant_id: int) -> ActionResult:
        """
        Move a participant to the back of the line, keeping its credits.

        Ends the participant's session first if it is active.
        """
        if await self._store.get(participant_id) is None:
            return ActionResult.rejected(RejectionCode.PARTICIPANT_NOT_FOUND)

        logger.info(f"Admin: requeue participant {participant_id}")
        await self._scheduler.apply_override(
            partial(self._store.requeue_to_end, participant_id),
            participant_id=participant_id,
            end_reason=EndReason.ADMIN_REQUEUE,
        )
        return ActionResult.ok(participant_id=participant_id)

    async def set_status(
        self,
        participant_id: int,
        status: Union[ParticipantStatus, str],
    ) -> ActionResult:
        """
        Set a participant's status.

        ``active`` force-activates the participant; any other status ends
        its session first if it is the active one.

        Args:
            participant_id: Participant to change.
            status: One of ``created``, ``waiting``, ``active``, ``done``.

        Returns:
            ActionResult.
        """
        try:
            status = ParticipantStatus(status)
        except ValueError:
            return ActionResult.rejected(RejectionCode.UNKNOWN_ACTION, status=str(status))

        if status is ParticipantStatus.ACTIVE:
            return await self._scheduler.force_activate(participant_id)

        if await self._store.get(participant_id) is None:
            return ActionResult.rejected(RejectionCode.PARTICIPANT_NOT_FOUND)

        logger.info(f"Admin: set status of participant {participant_id} to {status.value}")
        await self._scheduler.apply_override(
            partial(self._store.set_status, participant_id, status),
            participant_id=participant_id,
            end_reason=EndReason.ADMIN_STATUS_CHANGE,
        )
        return ActionResult.ok(participant_id=participant_id, status=status.value)

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete(self, participant_id: int) -> ActionResult:
        if await self._store.get(participant_id) is None:
            return ActionResult.rejected(RejectionCode.PARTICIPANT_NOT_FOUND)

        logger.warning(f"Admin: delete participant {participant_id}")
        await self._scheduler.apply_override(
            partial(self._store.delete, participant_id),
            participant_id=participant_id,
            end_reason=EndReason.ADMIN_DELETE_ACTIVE,
        )
        return ActionResult.ok(participant_id=participant_id)

    async def delete_all(self) -> ActionResult:
        logger.warning("Admin: delete all participants")
        await self._scheduler.apply_override(
            self._store.delete_all,
            end_reason=EndReason.ADMIN_DELETE_ALL,
            end_any=True,
        )
        return ActionResult.ok()

    # =========================================================================
    # Session Control
    # =========================================================================

    async def end_active(
        self,
        reason: Union[EndReason, str] = EndReason.ADMIN_END,
        status: Union[ParticipantStatus, str] = ParticipantStatus.DONE,
    ) -> ActionResult:
        """End the active session; ``waiting`` puts the participant back in line."""
        try:
            status = ParticipantStatus(status)
        except ValueError:
            return ActionResult.rejected(RejectionCode.UNKNOWN_ACTION, status=str(status))
        if status not in (ParticipantStatus.DONE, ParticipantStatus.WAITING):
            return ActionResult.rejected(RejectionCode.UNKNOWN_ACTION, status=status.value)
        return await self._scheduler.force_end(reason, status)

    async def start_next(self) -> ActionResult:
        return await self._scheduler.force_start_next()

    async def force_activate(self, participant_id: int) -> ActionResult:
        return await self._scheduler.force_activate(participant_id)

    def release_all(self) -> ActionResult:
        """Open every actuator channel."""
        logger.info("Admin: release all actuator channels")
        self._scheduler.release_all()
        return ActionResult.ok()
