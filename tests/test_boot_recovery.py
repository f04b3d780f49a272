"""
Unit tests for boot recovery.
"""

import pytest

from claw_queue.core.value_objects import ParticipantStatus
from claw_queue.domain.boot_recovery import BootRecovery


class TestBootRecovery:
    """Demotes ghost active participants and sweeps depleted ones."""

    @pytest.mark.asyncio
    async def test_demotes_active_and_keeps_credits(self, store):
        ghost = await store.add_waiting("A", 3, used=1, pulsed=True)
        await store.set_status(ghost.id, ParticipantStatus.ACTIVE)

        report = await BootRecovery(store).run()

        restored = await store.get(ghost.id)
        assert report.demoted == (ghost.id,)
        assert restored.status is ParticipantStatus.WAITING
        assert restored.credits_used == 1
        assert restored.credits_pulsed is True
        assert restored.queued_at == ghost.queued_at

    @pytest.mark.asyncio
    async def test_sweeps_depleted_waiting(self, store):
        depleted = await store.add_waiting("A", 2, used=2)
        ok = await store.add_waiting("B", 2)

        report = await BootRecovery(store).run()

        assert report.swept == (depleted.id,)
        assert (await store.get(depleted.id)).status is ParticipantStatus.DONE
        assert (await store.get(ok.id)).status is ParticipantStatus.WAITING

    @pytest.mark.asyncio
    async def test_depleted_ghost_is_demoted_then_swept(self, store):
        ghost = await store.add_waiting("A", 1, used=1)
        await store.set_status(ghost.id, ParticipantStatus.ACTIVE)

        report = await BootRecovery(store).run()

        assert report.to_dict() == {"demoted": [ghost.id], "swept": [ghost.id]}
        assert (await store.get(ghost.id)).status is ParticipantStatus.DONE

    @pytest.mark.asyncio
    async def test_created_and_done_untouched(self, store):
        created = await store.create("A")
        done = await store.add_waiting("B", 2)
        await store.set_status(done.id, ParticipantStatus.DONE)

        report = await BootRecovery(store).run()

        assert report.demoted == ()
        assert report.swept == ()
        assert (await store.get(created.id)).status is ParticipantStatus.CREATED
        assert (await store.get(done.id)).status is ParticipantStatus.DONE
