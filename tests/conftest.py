"""
Pytest configuration for claw queue tests.

Provides in-memory collaborators for the scheduler: a queue store, a
manually fired timer source, a recording actuator and broadcaster.
"""

import itertools
from typing import Any, Optional

import pytest
import pytest_asyncio

from claw_queue.configs import SchedulerSettings
from claw_queue.core.exceptions import ActuatorError, ParticipantNotFoundError, RedisConnectionError
from claw_queue.core.interfaces import TimerCallback
from claw_queue.core.value_objects import Participant, ParticipantStatus
from claw_queue.domain.session_scheduler import SessionScheduler


# =============================================================================
# Queue Store
# =============================================================================


class InMemoryQueueStore:
    """Queue store keeping participants in a dict, ordered by a tick counter."""

    def __init__(self) -> None:
        self.participants: dict[int, Participant] = {}
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    def _tick(self) -> float:
        return float(next(self._ticks))

    def _require(self, participant_id: int) -> Participant:
        participant = self.participants.get(participant_id)
        if participant is None:
            raise ParticipantNotFoundError(participant_id)
        return participant

    def _put(self, participant: Participant) -> Participant:
        self.participants[participant.id] = participant
        return participant

    def _ordered(self) -> list[Participant]:
        return sorted(self.participants.values(), key=lambda p: p.queued_at)

    async def get(self, participant_id: int) -> Optional[Participant]:
        return self.participants.get(participant_id)

    async def get_by_intent(self, intent_id: str) -> Optional[Participant]:
        return next((p for p in self.participants.values() if p.intent_id == intent_id), None)

    async def get_by_token(self, session_token: str) -> Optional[Participant]:
        return next(
            (p for p in self.participants.values() if p.session_token == session_token),
            None,
        )

    async def get_by_payment_id(self, payment_id: str) -> Optional[Participant]:
        return next((p for p in self.participants.values() if p.payment_id == payment_id), None)

    async def create(
        self,
        name: str,
        email: Optional[str] = None,
        amount_requested: float = 0.0,
        intent_id: Optional[str] = None,
        session_token: Optional[str] = None,
    ) -> Participant:
        tick = self._tick()
        return self._put(
            Participant(
                id=next(self._ids),
                name=name,
                email=email,
                amount_requested=amount_requested,
                intent_id=intent_id,
                session_token=session_token,
                queued_at=tick,
                created_at=tick,
            )
        )

    async def attach_payment(self, intent_id: str, payment_id: str) -> Optional[Participant]:
        participant = await self.get_by_intent(intent_id)
        if participant is None:
            return None
        if participant.payment_id:
            return participant
        return self._put(participant.evolve(payment_id=payment_id))

    async def confirm_payment(
        self,
        participant_id: int,
        credits_total: int,
        amount_paid: Optional[float] = None,
        payment_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Participant:
        existing = self.participants.get(participant_id) or Participant(
            id=participant_id, name=name or ""
        )
        return self._put(
            existing.evolve(
                credits_total=credits_total,
                amount_paid=amount_paid,
                payment_id=existing.payment_id or payment_id,
                status=ParticipantStatus.WAITING,
                queued_at=self._tick(),
            )
        )

    async def list_queue(self) -> list[Participant]:
        return [
            p for p in self._ordered()
            if p.status in (ParticipantStatus.WAITING, ParticipantStatus.ACTIVE)
        ]

    async def list_by_status(self, status: ParticipantStatus) -> list[Participant]:
        return [p for p in self._ordered() if p.status is status]

    async def list_all(self) -> list[Participant]:
        return list(reversed(self._ordered()))

    async def set_status(self, participant_id: int, status: ParticipantStatus) -> None:
        self._put(self._require(participant_id).evolve(status=status))

    async def use_one_credit(self, participant_id: int) -> int:
        participant = self._require(participant_id)
        used = min(participant.credits_used + 1, participant.credits_total)
        self._put(participant.evolve(credits_used=used))
        return used

    async def mark_credits_pulsed(self, participant_id: int) -> None:
        self._put(self._require(participant_id).evolve(credits_pulsed=True))

    async def requeue_to_end(self, participant_id: int) -> None:
        self._put(
            self._require(participant_id).evolve(
                status=ParticipantStatus.WAITING,
                queued_at=self._tick(),
            )
        )

    async def adjust_credits(self, participant_id: int, delta: int) -> Optional[Participant]:
        participant = self.participants.get(participant_id)
        if participant is None:
            return None
        return await self.set_credits_total(participant_id, participant.credits_total + delta)

    async def set_credits_total(self, participant_id: int, credits_total: int) -> Optional[Participant]:
        participant = self.participants.get(participant_id)
        if participant is None:
            return None
        clamped = max(max(0, credits_total), participant.credits_used)
        return self._put(participant.evolve(credits_total=clamped))

    async def set_credits_used(self, participant_id: int, credits_used: int) -> Optional[Participant]:
        participant = self.participants.get(participant_id)
        if participant is None:
            return None
        clamped = max(0, min(credits_used, participant.credits_total))
        return self._put(participant.evolve(credits_used=clamped))

    async def delete(self, participant_id: int) -> None:
        self.participants.pop(participant_id, None)

    async def delete_all(self) -> None:
        self.participants.clear()

    # Test helper
    async def add_waiting(
        self,
        name: str,
        credits: int,
        used: int = 0,
        pulsed: bool = False,
        session_token: Optional[str] = None,
    ) -> Participant:
        participant = await self.create(name, session_token=session_token)
        participant = await self.confirm_payment(participant.id, credits)
        return self._put(participant.evolve(credits_used=used, credits_pulsed=pulsed))


class FlakyQueueStore(InMemoryQueueStore):
    """In-memory store whose calls can be told to fail a number of times."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, int] = {}

    def fail(self, method: str, times: int = 1) -> None:
        self.failures[method] = times

    def _maybe_fail(self, method: str) -> None:
        left = self.failures.get(method, 0)
        if left:
            self.failures[method] = left - 1
            raise RedisConnectionError("blip")

    async def list_queue(self) -> list[Participant]:
        self._maybe_fail("list_queue")
        return await super().list_queue()

    async def set_status(self, participant_id: int, status: ParticipantStatus) -> None:
        self._maybe_fail("set_status")
        await super().set_status(participant_id, status)

    async def use_one_credit(self, participant_id: int) -> int:
        self._maybe_fail("use_one_credit")
        return await super().use_one_credit(participant_id)


# =============================================================================
# Timers
# =============================================================================


class ManualTimerHandle:
    def __init__(self, name: str, delay: float, callback: TimerCallback) -> None:
        self.name = name
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    async def fire(self) -> None:
        """Run the callback, even if cancelled (cancellation is best-effort)."""
        await self.callback()


class ManualTimers:
    """Timer source that only fires when a test says so."""

    def __init__(self) -> None:
        self.scheduled: list[ManualTimerHandle] = []

    def call_later(self, delay: float, callback: TimerCallback, name: str = "") -> ManualTimerHandle:
        handle = ManualTimerHandle(name, delay, callback)
        self.scheduled.append(handle)
        return handle

    def pending(self, name: str) -> list[ManualTimerHandle]:
        return [h for h in self.scheduled if h.name == name and not h.cancelled]

    def last(self, name: str) -> ManualTimerHandle:
        return [h for h in self.scheduled if h.name == name][-1]


# =============================================================================
# Actuator and Broadcaster
# =============================================================================


class RecordingActuator:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.fail = fail

    def _record(self, *call: Any) -> None:
        self.calls.append(call)
        if self.fail:
            raise ActuatorError(f"{call[0]} failed")

    async def pulse(self, channel: str, duration_ms: int) -> None:
        self._record("pulse", channel, duration_ms)

    async def press(self, channel: str) -> None:
        self._record("press", channel)

    async def release(self, channel: str) -> None:
        self._record("release", channel)

    async def release_all(self) -> None:
        self._record("release_all")

    def pulses(self, channel: str) -> int:
        return sum(1 for call in self.calls if call[0] == "pulse" and call[1] == channel)


class RecordingBroadcaster:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("relay down")
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scheduler_settings():
    return SchedulerSettings(
        credit_window_s=35.0,
        first_move_window_s=15.0,
        grab_finish_window_s=7.0,
        heartbeat_interval_s=4.0,
        credit_pulse_gap_s=0.0,
        store_retry_s=1.0,
    )


@pytest.fixture
def store():
    return InMemoryQueueStore()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def actuator():
    return RecordingActuator()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def scheduler(store, actuator, broadcaster, timers, scheduler_settings, clock):
    """Recovered scheduler on top of the in-memory fakes."""
    instance = SessionScheduler(
        store,
        actuator,
        broadcaster,
        timers,
        settings=scheduler_settings,
        clock=clock,
    )
    await instance.recover()
    yield instance
    await instance.flush()
