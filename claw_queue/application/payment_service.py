"""
Payment Service - Application service for payment intake.

Creates participants for payment intents, records provider payment ids and
turns confirmed payments into queued credits. Talking to the payment
provider itself is left to the caller.
"""

import math
import secrets
from typing import Any, Optional

from claw_queue.core.exceptions import IntentNotFoundError, InvalidAmountError, PaymentError
from claw_queue.core.interfaces import QueueStore
from claw_queue.core.value_objects import Participant, ParticipantStatus, credits_for_amount
from claw_queue.domain.session_scheduler import SessionScheduler
from claw_queue.configs import PaymentSettings, get_settings
from claw_queue.loggers import logger


def _parse_amount(amount: Any) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmountError(f"Invalid payment amount: {amount}") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmountError(f"Invalid payment amount: {amount}")
    return value


class PaymentService:
    """
    Application service for payment intake.

    Coordinates between the queue store and the scheduler so a paid
    participant lands in line exactly once.
    """

    def __init__(
        self,
        store: QueueStore,
        scheduler: SessionScheduler,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        """
        Initialize the payment service.

        Args:
            store: Participant ledger.
            scheduler: Session scheduler notified on confirmed payments.
            settings: Payment settings (credit cap).
        """
        self._store = store
        self._scheduler = scheduler
        self._settings = settings or get_settings().payment

    async def create_intent(
        self,
        name: str,
        amount_requested: float,
        email: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create a participant waiting for payment.

        Args:
            name: Display name.
            amount_requested: Amount the participant intends to pay.
            email: Optional contact address.

        Returns:
            Dictionary with participant id, intent id and session token.

        Raises:
            PaymentError: If the name is empty.
            InvalidAmountError: If the amount does not buy a single credit.
        """
        name = (name or "").strip()
        if not name:
            raise PaymentError("Name is required")

        amount_requested = _parse_amount(amount_requested)
        if credits_for_amount(amount_requested, self._settings.max_credits) <= 0:
            logger.error(f"Invalid payment amount: {amount_requested}")
            raise InvalidAmountError(f"Invalid payment amount: {amount_requested}")

        participant = await self._store.create(
            name=name,
            email=email,
            amount_requested=amount_requested,
            intent_id=secrets.token_hex(16),
            session_token=secrets.token_hex(24),
        )
        logger.info(
            f"Payment intent {participant.intent_id} created for {name} "
            f"({amount_requested:.2f})"
        )
        return {
            "participant_id": participant.id,
            "intent_id": participant.intent_id,
            "session_token": participant.session_token,
        }

    async def attach_payment(self, intent_id: str, payment_id: str) -> Participant:
        """
        Record the provider payment id for an intent.

        Raises:
            IntentNotFoundError: If no participant has this intent.
        """
        participant = await self._store.attach_payment(intent_id, payment_id)
        if participant is None:
            raise IntentNotFoundError(f"Unknown payment intent: {intent_id}")
        return participant

    async def handle_paid(
        self,
        intent_id: str,
        amount: float,
        payment_id: Optional[str] = None,
    ) -> Participant:
        """
        Turn a confirmed payment into credits and queue the participant.

        A repeated confirmation for the same intent returns the existing
        grant unchanged. A payment id already credited to another
        participant is refused.

        Args:
            intent_id: Intent the payment belongs to.
            amount: Amount actually paid.
            payment_id: Provider payment id.

        Returns:
            The queued participant.

        Raises:
            IntentNotFoundError: If no participant has this intent.
            InvalidAmountError: If the amount is not a positive number.
            PaymentError: If the payment id belongs to another participant.
        """
        amount = _parse_amount(amount)

        participant = await self._store.get_by_intent(intent_id)
        if participant is None:
            raise IntentNotFoundError(f"Unknown payment intent: {intent_id}")

        if payment_id:
            holder = await self._store.get_by_payment_id(payment_id)
            if holder is not None and holder.id != participant.id:
                logger.warning(
                    f"Payment {payment_id} for intent {intent_id} already credited "
                    f"to participant {holder.id}"
                )
                raise PaymentError(f"Payment {payment_id} already applied to participant {holder.id}")

        if participant.status is not ParticipantStatus.CREATED:
            logger.info(f"Payment for intent {intent_id} already confirmed")
            return participant

        credits = credits_for_amount(amount, self._settings.max_credits)
        logger.info(f"Payment {payment_id or '-'} for intent {intent_id}: {amount} -> {credits} credit(s)")

        return await self._scheduler.on_payment_confirmed(
            participant.id,
            credits,
            name=participant.name,
            amount_paid=amount,
            payment_id=payment_id,
        )
