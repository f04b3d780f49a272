"""
Session Scheduler - owns the single active session.

Selects the next participant, opens and enforces the first-move and credit
windows, detects abandonment and charges credits exactly once per window.

Every mutating entrypoint runs under one asyncio lock, so each handler is
atomic with respect to every other handler even though store writes are
awaited. Timer callbacks capture the epoch that was current when they were
scheduled and do nothing if it has moved on; cancellation is best-effort.
Actuator and broadcaster calls never block or roll back a transition.

Store failures propagate to the caller. A failed timer transition is retried
under the same epoch, and a failed end or activation schedules an activation
retry. An active session always has a live timer.
"""

from __future__ import annotations

import asyncio
import time
from functools import partial
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar, Union

from claw_queue.core.exceptions import ParticipantNotFoundError, SchedulerNotReadyError
from claw_queue.core.interfaces import Actuator, Broadcaster, QueueStore, Timers
from claw_queue.core.value_objects import (
    ActionResult,
    ControlAction,
    EndReason,
    Participant,
    ParticipantStatus,
    RejectionCode,
    SessionSnapshot,
)
from claw_queue.domain.active_session import ActiveSession
from claw_queue.domain.boot_recovery import BootRecovery, RecoveryReport
from claw_queue.event_system import EventType
from claw_queue.configs import SchedulerSettings, get_settings
from claw_queue.loggers import logger


T = TypeVar("T")

Reason = Union[EndReason, str]


def _reason_value(reason: Reason) -> str:
    return reason.value if isinstance(reason, EndReason) else str(reason)


class SessionScheduler:
    """
    Single writer for the active session and the participant queue.

    The scheduler refuses activation requests until ``recover()`` has run.
    """

    def __init__(
        self,
        store: QueueStore,
        actuator: Actuator,
        broadcaster: Broadcaster,
        timers: Timers,
        settings: Optional[SchedulerSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            store: Persisted participant ledger.
            actuator: Machine input channels.
            broadcaster: Realtime publisher.
            timers: Source of delayed callbacks.
            settings: Window lengths and pulse settings.
            clock: Wall clock in seconds, used for published deadlines.
        """
        self._store = store
        self._actuator = actuator
        self._broadcaster = broadcaster
        self._timers = timers
        self._settings = settings or get_settings().scheduler
        self._clock = clock

        self._lock = asyncio.Lock()
        self._active: Optional[ActiveSession] = None
        self._epoch = 0
        self._recovered = False
        self._background: set[asyncio.Task] = set()

        # Final statuses whose write failed, settled before the next activation
        self._unsettled: dict[int, ParticipantStatus] = {}
        self._activation_retry_pending = False

    # =========================================================================
    # State
    # =========================================================================

    @property
    def active(self) -> Optional[ActiveSession]:
        """The active session, if any. Read-only by convention."""
        return self._active

    @property
    def epoch(self) -> int:
        """Last epoch handed out. Never reset between sessions."""
        return self._epoch

    @property
    def is_ready(self) -> bool:
        return self._recovered

    def get_snapshot(self) -> SessionSnapshot:
        """Get the active participant and its live deadlines."""
        if self._active is None:
            return SessionSnapshot.idle()
        return self._active.snapshot()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def recover(self) -> Optional[RecoveryReport]:
        """
        Run boot recovery. Only the first call has any effect.

        Returns:
            RecoveryReport, or None if recovery already ran.
        """
        async with self._lock:
            if self._recovered:
                logger.warning("Boot recovery already ran, skipping")
                return None
            report = await BootRecovery(self._store).run()
            self._recovered = True
            return report

    async def flush(self) -> None:
        """Wait for outstanding actuator and broadcast tasks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _ensure_ready(self) -> None:
        if not self._recovered:
            raise SchedulerNotReadyError("Boot recovery has not run yet")

    # =========================================================================
    # Activation
    # =========================================================================

    async def activate_next(self) -> Optional[Participant]:
        """
        Activate the earliest eligible waiting participant.

        Returns:
            The activated participant, or None if a session is already
            running or nobody is eligible.
        """
        async with self._lock:
            self._ensure_ready()
            return await self._activate_next_locked()

    async def force_start_next(self) -> ActionResult:
        """Administrative ``activate_next`` that reports why nothing started."""
        async with self._lock:
            self._ensure_ready()
            if self._active is not None:
                return ActionResult.rejected(
                    RejectionCode.SESSION_IN_PROGRESS,
                    active_id=self._active.participant_id,
                )
            participant = await self._activate_next_locked()
            return ActionResult.ok(participant_id=participant.id if participant else None)

    async def force_activate(self, participant_id: int) -> ActionResult:
        """
        Activate a specific participant, bypassing queue order.

        Args:
            participant_id: Participant to activate.

        Returns:
            ActionResult; rejected if the slot is taken, the participant
            does not exist or has no credits left.
        """
        async with self._lock:
            self._ensure_ready()
            if self._active is not None:
                return ActionResult.rejected(
                    RejectionCode.SESSION_IN_PROGRESS,
                    active_id=self._active.participant_id,
                )

            await self._settle_ended_locked()
            participant = await self._store.get(participant_id)
            if participant is None:
                return ActionResult.rejected(RejectionCode.PARTICIPANT_NOT_FOUND)
            if participant.credits_remaining <= 0:
                return ActionResult.rejected(RejectionCode.NO_CREDITS_REMAINING)

            logger.info(f"Force-activating participant {participant_id}")
            await self._activate_locked(participant)
            return ActionResult.ok(participant_id=participant_id)

    async def _activate_next_locked(self) -> Optional[Participant]:
        if self._active is not None:
            return None

        try:
            await self._settle_ended_locked()
            queue = await self._store.list_queue()

            # Depleted rows are swept lazily, only when the queue is scanned
            for participant in queue:
                if participant.is_waiting and participant.credits_remaining <= 0:
                    await self._store.set_status(participant.id, ParticipantStatus.DONE)
                    logger.debug(f"Swept depleted participant {participant.id}")
        except Exception:
            self._schedule_activation_retry()
            raise

        candidate = next((p for p in queue if p.is_eligible), None)
        if candidate is None:
            await self._publish_queue_locked()
            return None

        await self._activate_locked(candidate)
        return candidate

    async def _activate_locked(self, participant: Participant) -> None:
        remaining = participant.credits_remaining
        session = ActiveSession(
            participant_id=participant.id,
            credits_remaining=remaining,
            credit_seq=self._epoch,
        )
        self._active = session
        # The first-move deadline exists before any store write
        self._open_first_move_window(session)

        await self._store.set_status(participant.id, ParticipantStatus.ACTIVE)

        # Machine credits are pulsed once per participant, never on reactivation
        if not participant.credits_pulsed:
            self._spawn(
                self._pulse_credits(remaining),
                f"credit pulses for participant {participant.id}",
            )
            await self._store.mark_credits_pulsed(participant.id)

        logger.info(
            f"Participant {participant.id} ({participant.name}) active "
            f"with {remaining} credit(s)"
        )

        await self._publish_queue_locked()
        self._emit(
            EventType.PLAYER_START,
            {
                "participant_id": participant.id,
                "name": participant.name,
                "credits_remaining": remaining,
                "first_move_deadline": session.first_move_deadline,
            },
        )

    # =========================================================================
    # Control Input
    # =========================================================================

    async def on_control_action(
        self,
        participant_id: int,
        action: Union[ControlAction, str],
        direction: Optional[str] = None,
    ) -> ActionResult:
        """
        Handle a control input from a participant.

        Args:
            participant_id: Caller identity.
            action: ``move``, ``release`` or ``grab``.
            direction: Direction channel for ``move``/``release``.

        Returns:
            ActionResult; ``not_active`` if the caller does not hold the
            session.
        """
        async with self._lock:
            session = self._active
            if session is None or session.participant_id != participant_id:
                return ActionResult.rejected(RejectionCode.NOT_ACTIVE)

            try:
                action = ControlAction(action)
            except ValueError:
                return ActionResult.rejected(RejectionCode.UNKNOWN_ACTION, action=str(action))

            if action is ControlAction.GRAB:
                return self._handle_grab_locked()

            if direction is not None and direction not in self._settings.direction_channels:
                return ActionResult.rejected(RejectionCode.UNKNOWN_ACTION, direction=direction)

            if action is ControlAction.MOVE:
                started = self._record_first_action_locked(session)
                if direction is not None:
                    self._spawn(self._actuator.press(direction), f"press {direction}")
                return ActionResult.ok(
                    credit_started=started,
                    credit_ends_at=session.credit_ends_at,
                )

            if direction is not None:
                self._spawn(self._actuator.release(direction), f"release {direction}")
            return ActionResult.ok()

    async def record_first_action(self) -> bool:
        """
        Start the credit window on the first real action of a cycle.

        Returns:
            True if a credit window was opened, False if one was already
            running or there is no session.
        """
        async with self._lock:
            if self._active is None:
                return False
            return self._record_first_action_locked(self._active)

    async def handle_grab(self) -> ActionResult:
        """
        Grab once per credit and shorten the current window.

        Returns:
            ActionResult; rejected with ``no_active_session`` or
            ``grab_already_used`` without touching the session.
        """
        async with self._lock:
            return self._handle_grab_locked()

    def _record_first_action_locked(self, session: ActiveSession) -> bool:
        if session.timer_started:
            return False
        self._start_credit_window(session, self._settings.credit_window_s)
        return True

    def _handle_grab_locked(self) -> ActionResult:
        session = self._active
        if session is None:
            return ActionResult.rejected(RejectionCode.NO_ACTIVE_SESSION)
        if session.grab_used:
            return ActionResult.rejected(RejectionCode.GRAB_ALREADY_USED)

        window = self._settings.grab_finish_window_s
        if not session.timer_started:
            self._start_credit_window(session, window)
        else:
            self._schedule_credit_expiry(session, window)
        session.grab_used = True

        # A failed grab pulse is logged only; the shortened window stands
        self._spawn(
            self._actuator.pulse(self._settings.grab_channel, self._settings.grab_pulse_ms),
            "grab pulse",
        )
        return ActionResult.ok(credit_ends_at=session.credit_ends_at)

    # =========================================================================
    # Windows and Timers
    # =========================================================================

    def _next_epoch(self) -> int:
        self._epoch += 1
        return self._epoch

    def _deadline_ms(self, window_s: float) -> int:
        return int((self._clock() + window_s) * 1000)

    def _open_first_move_window(self, session: ActiveSession) -> None:
        if session.first_move_timer is not None:
            session.first_move_timer.cancel()

        seq = session.advance_epoch(self._next_epoch())
        window = self._settings.first_move_window_s
        session.first_move_deadline = self._deadline_ms(window)
        session.first_move_timer = self._timers.call_later(
            window,
            partial(self.on_first_move_timeout, seq),
            name="first_move",
        )

    def _start_credit_window(self, session: ActiveSession, window: float) -> None:
        if session.first_move_timer is not None:
            session.first_move_timer.cancel()
            session.first_move_timer = None

        session.has_moved = True
        session.timer_started = True
        self._schedule_credit_expiry(session, window)

    def _schedule_credit_expiry(self, session: ActiveSession, window: float) -> None:
        if session.credit_timer is not None:
            session.credit_timer.cancel()

        seq = session.advance_epoch(self._next_epoch())
        session.credit_ends_at = self._deadline_ms(window)
        session.credit_timer = self._timers.call_later(
            window,
            partial(self.on_credit_timer_expiry, seq),
            name="credit",
        )

        self._emit(
            EventType.CREDIT_START,
            {
                "participant_id": session.participant_id,
                "credit_ends_at": session.credit_ends_at,
                "credits_remaining": session.credits_remaining,
            },
        )

    async def on_credit_timer_expiry(self, captured_seq: int) -> None:
        """
        End the current credit window.

        Args:
            captured_seq: Epoch captured when the window was scheduled.
        """
        async with self._lock:
            session = self._active
            if session is None or not session.is_current(captured_seq):
                logger.debug(f"Discarding stale credit timer (epoch {captured_seq})")
                return

            try:
                if not await self._consume_credit_locked(session):
                    return

                if session.credits_remaining > 0:
                    session.credit_timer = None
                    session.reset_cycle()
                    self._open_first_move_window(session)
                    await self._publish_queue_locked()
                else:
                    await self._end_session_locked(EndReason.COMPLETED)
            except Exception as e:
                self._rearm_window_locked(session, captured_seq, "credit", e)
                raise

    async def on_first_move_timeout(self, captured_seq: int) -> None:
        """
        Handle an unused first-move window.

        Ends the session if someone else is waiting, otherwise renews the
        window.

        Args:
            captured_seq: Epoch captured when the window was opened.
        """
        async with self._lock:
            session = self._active
            if session is None or not session.is_current(captured_seq) or session.has_moved:
                logger.debug(f"Discarding stale first-move timer (epoch {captured_seq})")
                return

            try:
                queue = await self._store.list_queue()
                someone_waiting = any(
                    p.is_eligible and p.id != session.participant_id for p in queue
                )

                if someone_waiting:
                    logger.info(
                        f"Participant {session.participant_id} did not move in time, ending session"
                    )
                    await self._end_session_locked(EndReason.NO_FIRST_MOVE)
                    return
            except Exception as e:
                self._rearm_window_locked(session, captured_seq, "first_move", e)
                raise

            session.first_move_timer = None
            self._open_first_move_window(session)
            await self._publish_queue_locked(queue)

    def _rearm_window_locked(
        self,
        session: ActiveSession,
        captured_seq: int,
        kind: str,
        error: Exception,
    ) -> None:
        """Retry a failed window transition later, under the same epoch."""
        if self._active is not session or not session.is_current(captured_seq):
            return

        delay = self._settings.store_retry_s
        logger.warning(
            f"{kind} window of participant {session.participant_id} failed to close "
            f"({error}), retrying in {delay}s"
        )
        if kind == "credit":
            session.credit_timer = self._timers.call_later(
                delay,
                partial(self.on_credit_timer_expiry, captured_seq),
                name="credit",
            )
        else:
            session.first_move_timer = self._timers.call_later(
                delay,
                partial(self.on_first_move_timeout, captured_seq),
                name="first_move",
            )

    async def _consume_credit_locked(self, session: ActiveSession) -> bool:
        if session.credit_consumed:
            return False

        await self._store.use_one_credit(session.participant_id)
        session.credit_consumed = True
        session.credits_remaining -= 1
        logger.info(
            f"Participant {session.participant_id} used a credit, "
            f"{session.credits_remaining} left"
        )
        return True

    # =========================================================================
    # Ending Sessions
    # =========================================================================

    async def force_end(
        self,
        reason: Reason = EndReason.ADMIN_END,
        final_status: ParticipantStatus = ParticipantStatus.DONE,
    ) -> ActionResult:
        """
        End the active session immediately.

        Args:
            reason: Reason published with ``player-end``.
            final_status: Status to persist; ``waiting`` requeues to the end.

        Returns:
            ActionResult; ``no_active_session`` if nothing is running.
        """
        async with self._lock:
            self._ensure_ready()
            if self._active is None:
                return ActionResult.rejected(RejectionCode.NO_ACTIVE_SESSION)

            participant_id = self._active.participant_id
            await self._end_session_locked(reason, final_status)
            return ActionResult.ok(participant_id=participant_id, reason=_reason_value(reason))

    async def _end_session_locked(
        self,
        reason: Reason,
        final_status: ParticipantStatus = ParticipantStatus.DONE,
        activate_next: bool = True,
    ) -> None:
        session = self._active
        if session is None:
            return

        session.cancel_timers()
        self._active = None
        self._spawn(self._actuator.release_all(), "release all")

        participant_id = session.participant_id
        try:
            await self._write_final_status(participant_id, final_status)
        except Exception:
            self._unsettled[participant_id] = final_status
            self._schedule_activation_retry()
            raise

        reason_value = _reason_value(reason)
        logger.info(f"Session of participant {participant_id} ended: {reason_value}")

        self._emit(EventType.PLAYER_END, {"participant_id": participant_id, "reason": reason_value})
        if reason_value == EndReason.NO_FIRST_MOVE.value:
            self._emit(
                EventType.PLAYER_TIMEOUT,
                {"participant_id": participant_id, "reason": reason_value},
            )

        if activate_next:
            await self._activate_next_locked()

    async def _write_final_status(self, participant_id: int, status: ParticipantStatus) -> None:
        if status is ParticipantStatus.WAITING:
            await self._store.requeue_to_end(participant_id)
        else:
            await self._store.set_status(participant_id, status)

    async def _settle_ended_locked(self) -> None:
        for participant_id, status in list(self._unsettled.items()):
            try:
                await self._write_final_status(participant_id, status)
            except ParticipantNotFoundError:
                logger.debug(f"Ended participant {participant_id} is gone, nothing to settle")
            except Exception:
                self._schedule_activation_retry()
                raise
            else:
                logger.info(f"Settled final status of participant {participant_id}: {status.value}")
            del self._unsettled[participant_id]

    def _schedule_activation_retry(self) -> None:
        if self._activation_retry_pending:
            return
        self._activation_retry_pending = True
        delay = self._settings.store_retry_s
        logger.warning(f"Store write failed, next activation attempt in {delay}s")
        self._timers.call_later(delay, self._retry_activation, name="activation_retry")

    async def _retry_activation(self) -> None:
        async with self._lock:
            self._activation_retry_pending = False
            if self._active is None:
                await self._activate_next_locked()

    # =========================================================================
    # Payments and Overrides
    # =========================================================================

    async def on_payment_confirmed(
        self,
        participant_id: int,
        credits_granted: int,
        name: Optional[str] = None,
        amount_paid: Optional[float] = None,
        payment_id: Optional[str] = None,
    ) -> Participant:
        """
        Put a paid participant in line and try to start a session.

        Duplicate confirmations leave the record untouched.

        Args:
            participant_id: Participant that paid.
            credits_granted: Credits bought.
            name: Display name, used if the record does not exist yet.
            amount_paid: Paid amount.
            payment_id: Provider payment id.

        Returns:
            The stored participant.
        """
        async with self._lock:
            self._ensure_ready()

            existing = await self._store.get(participant_id)
            if existing is not None and existing.status is not ParticipantStatus.CREATED:
                logger.info(f"Duplicate payment confirmation for participant {participant_id}")
                return existing

            participant = await self._store.confirm_payment(
                participant_id,
                credits_granted,
                amount_paid=amount_paid,
                payment_id=payment_id,
                name=name,
            )
            logger.info(
                f"Participant {participant_id} joined the queue with {credits_granted} credit(s)"
            )

            if self._active is None:
                await self._activate_next_locked()
            else:
                await self._publish_queue_locked()
            return participant

    async def apply_override(
        self,
        mutation: Callable[[], Awaitable[T]],
        participant_id: Optional[int] = None,
        end_reason: Reason = EndReason.ADMIN_STATUS_CHANGE,
        end_any: bool = False,
    ) -> T:
        """
        Run an administrative store mutation as a scheduler transition.

        If the mutation targets the active participant (or ``end_any`` is
        set and anyone is active) the session is ended first, without
        activating a successor. The active participant's in-memory credit
        count is resynced afterwards and an activation is attempted.

        Args:
            mutation: Async callable performing the store writes.
            participant_id: Participant the mutation rewrites, if its
                session must not survive the change.
            end_reason: Reason published when a session is ended.
            end_any: End whatever session is active.

        Returns:
            Whatever ``mutation`` returned.
        """
        async with self._lock:
            self._ensure_ready()
            # A pending final status must not overwrite the mutation
            await self._settle_ended_locked()

            session = self._active
            if session is not None and (end_any or session.participant_id == participant_id):
                await self._end_session_locked(end_reason, activate_next=False)

            result = await mutation()
            await self._sync_active_credits_locked()

            if self._active is None:
                await self._activate_next_locked()
            else:
                await self._publish_queue_locked()
            return result

    async def _sync_active_credits_locked(self) -> None:
        session = self._active
        if session is None:
            return

        participant = await self._store.get(session.participant_id)
        if participant is None:
            return

        session.credits_remaining = participant.credits_remaining
        if session.credits_remaining <= 0 and not session.timer_started:
            await self._end_session_locked(EndReason.CREDITS_REVOKED)

    def release_all(self) -> None:
        """Open every actuator channel (fire-and-forget)."""
        self._spawn(self._actuator.release_all(), "release all")

    # =========================================================================
    # Broadcasting
    # =========================================================================

    async def publish_queue(self, only_if_busy: bool = False) -> bool:
        """
        Publish the current queue snapshot. Never mutates state.

        Args:
            only_if_busy: Skip publishing when nobody is active or queued.

        Returns:
            True if a snapshot was published.
        """
        async with self._lock:
            try:
                queue = await self._store.list_queue()
            except Exception as e:
                logger.error(f"Queue snapshot failed: {e}")
                return False

            if only_if_busy and self._active is None and not queue:
                return False
            await self._publish_queue_locked(queue)
            return True

    async def _publish_queue_locked(self, queue: Optional[list[Participant]] = None) -> None:
        if queue is None:
            try:
                queue = await self._store.list_queue()
            except Exception as e:
                logger.error(f"Queue snapshot failed: {e}")
                return

        payload = self.get_snapshot().to_dict()
        payload["queue"] = [
            {
                "id": p.id,
                "name": p.name,
                "credits_remaining": p.credits_remaining,
                "status": p.status.value,
                "position": index + 1,
            }
            for index, p in enumerate(queue)
        ]
        self._emit(EventType.QUEUE_UPDATE, payload)

    def _emit(self, event: EventType, payload: dict[str, Any]) -> None:
        try:
            self._broadcaster.publish(event.value, payload)
        except Exception as e:
            logger.error(f"Broadcast of {event.value} failed: {e}")

    # =========================================================================
    # Background Side Effects
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any], what: str) -> None:
        task = asyncio.get_running_loop().create_task(self._guard(coro, what))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any], what: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.error(f"{what} failed: {e}")

    async def _pulse_credits(self, count: int) -> None:
        for index in range(count):
            if index:
                await asyncio.sleep(self._settings.credit_pulse_gap_s)
            try:
                await self._actuator.pulse(
                    self._settings.credit_channel,
                    self._settings.credit_pulse_ms,
                )
            except Exception as e:
                logger.error(f"Credit pulse {index + 1}/{count} failed: {e}")
