"""
Boot Recovery - reconciles persisted queue state after a restart.

Session timers and epochs live only in memory, so a participant that was
``active`` when the process stopped cannot be resumed safely. It goes back
to ``waiting`` and keeps its credits and its place in line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from claw_queue.core.interfaces import QueueStore
from claw_queue.core.value_objects import ParticipantStatus
from claw_queue.loggers import logger


@dataclass(frozen=True)
class RecoveryReport:
    """Participants touched by a recovery pass."""

    demoted: tuple[int, ...] = field(default_factory=tuple)
    swept: tuple[int, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"demoted": list(self.demoted), "swept": list(self.swept)}


class BootRecovery:
    """Single startup pass over the persisted queue."""

    def __init__(self, store: QueueStore) -> None:
        self._store = store

    async def run(self) -> RecoveryReport:
        """
        Demote every ``active`` participant, then sweep depleted ones.

        Returns:
            RecoveryReport listing demoted and swept participant ids.
        """
        demoted: list[int] = []
        for participant in await self._store.list_by_status(ParticipantStatus.ACTIVE):
            await self._store.set_status(participant.id, ParticipantStatus.WAITING)
            demoted.append(participant.id)
            logger.warning(f"Recovered ghost active participant {participant.id} -> waiting")

        swept: list[int] = []
        for participant in await self._store.list_by_status(ParticipantStatus.WAITING):
            if participant.credits_remaining <= 0:
                await self._store.set_status(participant.id, ParticipantStatus.DONE)
                swept.append(participant.id)

        report = RecoveryReport(demoted=tuple(demoted), swept=tuple(swept))
        logger.info(
            f"Boot recovery finished: {len(demoted)} demoted, {len(swept)} swept"
        )
        return report
