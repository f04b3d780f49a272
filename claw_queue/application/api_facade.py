"""
API Facade - Unified interface for the claw queue.

Wires the store, actuator, broadcaster and timers into the scheduler and
exposes every command the Redis listener can dispatch.
"""

import asyncio
from typing import Any, Optional

from redis.asyncio import Redis

from claw_queue.application.admin_service import AdminService
from claw_queue.application.payment_service import PaymentService
from claw_queue.core.interfaces import Actuator, Broadcaster, QueueStore, Timers
from claw_queue.core.value_objects import ActionResult, RejectionCode
from claw_queue.domain.session_scheduler import SessionScheduler
from claw_queue.domain.timers import LoopTimers
from claw_queue.error_handler import error_handler
from claw_queue.infrastructure.actuator import create_actuator
from claw_queue.infrastructure.broadcaster import RealtimeBroadcaster
from claw_queue.infrastructure.redis_repository import RedisQueueStore
from claw_queue.configs import Settings, get_settings
from claw_queue.loggers import logger


class ClawQueueFacade:
    """
    Facade for the claw queue API.

    Owns the scheduler and the heartbeat task that re-publishes the queue
    snapshot while anyone is active or waiting.
    """

    def __init__(
        self,
        store: QueueStore,
        actuator: Actuator,
        broadcaster: Broadcaster,
        timers: Optional[Timers] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the facade.

        Args:
            store: Participant ledger.
            actuator: Machine input channels.
            broadcaster: Realtime publisher.
            timers: Timer source (event-loop timers by default).
            settings: Application settings.
        """
        self._settings = settings or get_settings()
        self._store = store
        self._actuator = actuator
        self._broadcaster = broadcaster
        self._timers = timers or LoopTimers()

        self._scheduler = SessionScheduler(
            store,
            actuator,
            broadcaster,
            self._timers,
            settings=self._settings.scheduler,
        )
        self._payment_service = PaymentService(store, self._scheduler, self._settings.payment)
        self._admin_service = AdminService(store, self._scheduler)

        self._heartbeat_task: Optional[asyncio.Task] = None

    @classmethod
    def from_redis(cls, redis: Redis, settings: Optional[Settings] = None) -> "ClawQueueFacade":
        """Build the production wiring on top of a Redis client."""
        settings = settings or get_settings()
        return cls(
            store=RedisQueueStore(redis, key_prefix=settings.redis.key_prefix),
            actuator=create_actuator(settings.actuator),
            broadcaster=RealtimeBroadcaster(
                ws_url=settings.services.websocket_url,
                channel=settings.services.realtime_channel,
            ),
            settings=settings,
        )

    @property
    def scheduler(self) -> SessionScheduler:
        return self._scheduler

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> dict[str, Any]:
        """
        Start broadcasting, run boot recovery and start the heartbeat.

        Returns:
            Recovery report.
        """
        start_broadcaster = getattr(self._broadcaster, "start", None)
        if start_broadcaster is not None:
            await start_broadcaster()

        report = await self._scheduler.recover()
        await self._scheduler.activate_next()

        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        logger.info("Claw queue started")
        return report.to_dict() if report is not None else {}

    async def shutdown(self) -> None:
        """Stop the heartbeat, open every channel and release resources."""
        try:
            if self._heartbeat_task is not None:
                self._heartbeat_task.cancel()
                try:
                    await self._heartbeat_task
                except asyncio.CancelledError:
                    pass
                self._heartbeat_task = None

            self._scheduler.release_all()
            await self._scheduler.flush()

            shutdown_timers = getattr(self._timers, "shutdown", None)
            if shutdown_timers is not None:
                await shutdown_timers()

            stop_broadcaster = getattr(self._broadcaster, "stop", None)
            if stop_broadcaster is not None:
                await stop_broadcaster()

            disconnect = getattr(self._actuator, "disconnect", None)
            if disconnect is not None:
                await disconnect()

            logger.info("Claw queue shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    async def _heartbeat_loop(self) -> None:
        interval = self._settings.scheduler.heartbeat_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                await self._scheduler.publish_queue(only_if_busy=True)
            except Exception as e:
                logger.error(f"Heartbeat failed: {e}")

    # =========================================================================
    # Payment Operations
    # =========================================================================

    @error_handler("Payment intent created")
    async def create_intent(
        self,
        name: str,
        amount: float,
        email: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self._payment_service.create_intent(name, amount, email=email)

    @error_handler("Payment attached")
    async def attach_payment(self, intent_id: str, payment_id: str) -> dict[str, Any]:
        participant = await self._payment_service.attach_payment(intent_id, payment_id)
        return participant.to_dict()

    @error_handler("Payment confirmed")
    async def payment_confirmed(
        self,
        intent_id: str,
        amount: float,
        payment_id: Optional[str] = None,
    ) -> dict[str, Any]:
        participant = await self._payment_service.handle_paid(intent_id, amount, payment_id=payment_id)
        return participant.to_dict()

    # =========================================================================
    # Participant Operations
    # =========================================================================

    @error_handler("Control action accepted")
    async def control(
        self,
        session_token: str,
        action: str,
        direction: Optional[str] = None,
    ) -> ActionResult:
        """Forward a control input from the holder of ``session_token``."""
        participant = await self._store.get_by_token(session_token)
        if participant is None:
            return ActionResult.rejected(RejectionCode.NOT_ACTIVE)
        return await self._scheduler.on_control_action(participant.id, action, direction)

    @error_handler("Participant status")
    async def participant_status(self, session_token: str) -> ActionResult:
        """Get the caller's record, queue position and the live session."""
        participant = await self._store.get_by_token(session_token)
        if participant is None:
            return ActionResult.rejected(RejectionCode.PARTICIPANT_NOT_FOUND)

        queue = await self._store.list_queue()
        position = next(
            (index + 1 for index, p in enumerate(queue) if p.id == participant.id),
            None,
        )
        snapshot = self._scheduler.get_snapshot()
        return ActionResult.ok(
            participant=participant.to_dict(),
            position=position,
            is_active=snapshot.active_id == participant.id,
            session=snapshot.to_dict(),
        )

    @error_handler("Session snapshot")
    async def snapshot(self) -> dict[str, Any]:
        return self._scheduler.get_snapshot().to_dict()

    @error_handler("Queue")
    async def queue(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in await self._store.list_queue()]

    # =========================================================================
    # Admin Operations
    # =========================================================================

    @error_handler("Participants")
    async def admin_list_participants(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in await self._admin_service.list_participants()]

    @error_handler("Credits adjusted")
    async def admin_adjust_credits(self, participant_id: int, delta: int) -> ActionResult:
        return await self._admin_service.adjust_credits(int(participant_id), delta)

    @error_handler("Total credits set")
    async def admin_set_credits_total(self, participant_id: int, credits_total: int) -> ActionResult:
        return await self._admin_service.set_credits_total(int(participant_id), credits_total)

    @error_handler("Used credits set")
    async def admin_set_credits_used(self, participant_id: int, credits_used: int) -> ActionResult:
        return await self._admin_service.set_credits_used(int(participant_id), credits_used)

    @error_handler("Participant requeued")
    async def admin_requeue(self, participant_id: int) -> ActionResult:
        return await self._admin_service.requeue(int(participant_id))

    @error_handler("Status set")
    async def admin_set_status(self, participant_id: int, status: str) -> ActionResult:
        return await self._admin_service.set_status(int(participant_id), status)

    @error_handler("Participant deleted")
    async def admin_delete_participant(self, participant_id: int) -> ActionResult:
        return await self._admin_service.delete(int(participant_id))

    @error_handler("All participants deleted")
    async def admin_delete_all(self) -> ActionResult:
        return await self._admin_service.delete_all()

    @error_handler("Active session ended")
    async def admin_end_active(self, status: str = "done") -> ActionResult:
        return await self._admin_service.end_active(status=status)

    @error_handler("Start next requested")
    async def admin_start_next(self) -> ActionResult:
        return await self._admin_service.start_next()

    @error_handler("Participant activated")
    async def admin_force_activate(self, participant_id: int) -> ActionResult:
        return await self._admin_service.force_activate(int(participant_id))

    @error_handler("All channels released")
    async def admin_release_all(self) -> ActionResult:
        return self._admin_service.release_all()
