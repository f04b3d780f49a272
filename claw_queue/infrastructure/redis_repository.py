"""
Redis Repository implementations.

Provides type-safe access to the participant ledger stored in Redis.

Keys (``<prefix>`` defaults to ``claw``):
- <prefix>:participant:<id>: Participant hash
- <prefix>:participants:order: Sorted set of ids scored by ``queued_at``
- <prefix>:participants:next_id: Id counter
- <prefix>:participants:by_intent / by_token / by_payment: Lookup hashes
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisClientConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisClientTimeoutError

from claw_queue.core.exceptions import (
    ParticipantNotFoundError,
    RedisConnectionError,
    RepositoryError,
)
from claw_queue.core.value_objects import Participant, ParticipantStatus
from claw_queue.loggers import logger


T = TypeVar("T")


# =============================================================================
# Base Repository
# =============================================================================


class RedisStateRepository:
    """
    Base repository for Redis state operations.

    Translates client errors into repository errors.
    """

    def __init__(self, redis: Redis, key_prefix: str = "claw") -> None:
        """
        Initialize the repository.

        Args:
            redis: Redis client instance.
            key_prefix: Namespace for every key.
        """
        self._redis = redis
        self._prefix = key_prefix

    def _key(self, *parts: Any) -> str:
        return ":".join([self._prefix, *(str(part) for part in parts)])

    async def _run(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except (RedisClientConnectionError, RedisClientTimeoutError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}") from e
        except RedisError as e:
            raise RepositoryError(f"Redis error: {e}") from e

    async def get_hash(self, key: str) -> dict[str, str]:
        """Get all fields of a hash."""
        return await self._run(self._redis.hgetall(key))

    async def set_hash(self, key: str, mapping: dict[str, str]) -> None:
        """Set several hash fields."""
        await self._run(self._redis.hset(key, mapping=mapping))

    async def exists(self, key: str) -> bool:
        return bool(await self._run(self._redis.exists(key)))

    async def increment(self, key: str, amount: int = 1) -> int:
        """Increment a value by the specified amount."""
        return await self._run(self._redis.incrby(key, amount))


# =============================================================================
# Participant Queue Repository
# =============================================================================


class RedisQueueStore(RedisStateRepository):
    """
    Participant ledger and FIFO queue.

    Queue order is the ``queued_at`` timestamp; requeueing refreshes it.
    Writes to a participant that does not exist raise
    ``ParticipantNotFoundError`` instead of recreating a partial hash.
    """

    @property
    def _order_key(self) -> str:
        return self._key("participants", "order")

    @property
    def _next_id_key(self) -> str:
        return self._key("participants", "next_id")

    def _participant_key(self, participant_id: int) -> str:
        return self._key("participant", participant_id)

    def _index_key(self, name: str) -> str:
        return self._key("participants", f"by_{name}")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, participant_id: int) -> Optional[Participant]:
        """Get a participant by id."""
        data = await self.get_hash(self._participant_key(participant_id))
        if not data:
            return None
        return Participant.from_mapping(data)

    async def _get_indexed(self, index: str, value: str) -> Optional[Participant]:
        participant_id = await self._run(self._redis.hget(self._index_key(index), value))
        if participant_id is None:
            return None
        return await self.get(int(participant_id))

    async def get_by_intent(self, intent_id: str) -> Optional[Participant]:
        return await self._get_indexed("intent", intent_id)

    async def get_by_token(self, session_token: str) -> Optional[Participant]:
        return await self._get_indexed("token", session_token)

    async def get_by_payment_id(self, payment_id: str) -> Optional[Participant]:
        return await self._get_indexed("payment", payment_id)

    async def _ordered(self) -> list[Participant]:
        ids = await self._run(self._redis.zrange(self._order_key, 0, -1))
        participants = []
        for participant_id in ids:
            participant = await self.get(int(participant_id))
            if participant is not None:
                participants.append(participant)
        return participants

    async def list_queue(self) -> list[Participant]:
        """Waiting and active participants ordered by ``queued_at``."""
        return [
            p for p in await self._ordered()
            if p.status in (ParticipantStatus.WAITING, ParticipantStatus.ACTIVE)
        ]

    async def list_by_status(self, status: ParticipantStatus) -> list[Participant]:
        return [p for p in await self._ordered() if p.status is status]

    async def list_all(self) -> list[Participant]:
        """All participants, newest first."""
        return list(reversed(await self._ordered()))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _save(self, participant: Participant) -> None:
        await self.set_hash(self._participant_key(participant.id), participant.to_mapping())
        await self._run(
            self._redis.zadd(self._order_key, {str(participant.id): participant.queued_at})
        )

    async def _update(self, participant_id: int, fields: dict[str, str]) -> None:
        key = self._participant_key(participant_id)
        if not await self.exists(key):
            raise ParticipantNotFoundError(participant_id)
        fields["updated_at"] = repr(time.time())
        await self.set_hash(key, fields)

    async def _require(self, participant_id: int) -> Participant:
        participant = await self.get(participant_id)
        if participant is None:
            raise ParticipantNotFoundError(participant_id)
        return participant

    async def create(
        self,
        name: str,
        email: Optional[str] = None,
        amount_requested: float = 0.0,
        intent_id: Optional[str] = None,
        session_token: Optional[str] = None,
    ) -> Participant:
        """Create a participant in ``created`` status."""
        participant_id = await self.increment(self._next_id_key)
        now = time.time()
        participant = Participant(
            id=participant_id,
            name=name,
            email=email,
            amount_requested=amount_requested,
            intent_id=intent_id,
            session_token=session_token,
            status=ParticipantStatus.CREATED,
            queued_at=now,
            created_at=now,
            updated_at=now,
        )
        await self._save(participant)

        if intent_id:
            await self._run(self._redis.hset(self._index_key("intent"), intent_id, participant_id))
        if session_token:
            await self._run(self._redis.hset(self._index_key("token"), session_token, participant_id))

        logger.debug(f"Created participant {participant_id} ({name})")
        return participant

    async def attach_payment(self, intent_id: str, payment_id: str) -> Optional[Participant]:
        """Record the provider payment id for an intent. The first one wins."""
        participant = await self.get_by_intent(intent_id)
        if participant is None:
            return None
        if participant.payment_id:
            return participant

        await self._update(participant.id, {"payment_id": payment_id})
        await self._run(self._redis.hset(self._index_key("payment"), payment_id, participant.id))
        return await self.get(participant.id)

    async def confirm_payment(
        self,
        participant_id: int,
        credits_total: int,
        amount_paid: Optional[float] = None,
        payment_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Participant:
        """
        Grant credits and put the participant at the end of the line.

        Payment time defines queue order. Creates the record if missing.
        """
        now = time.time()
        existing = await self.get(participant_id)
        if existing is None:
            existing = Participant(id=participant_id, name=name or "", created_at=now)

        participant = existing.evolve(
            credits_total=credits_total,
            amount_paid=amount_paid,
            payment_id=existing.payment_id or payment_id,
            status=ParticipantStatus.WAITING,
            queued_at=now,
            updated_at=now,
        )
        await self._save(participant)

        if participant.payment_id:
            await self._run(
                self._redis.hset(self._index_key("payment"), participant.payment_id, participant_id)
            )
        return participant

    async def set_status(self, participant_id: int, status: ParticipantStatus) -> None:
        await self._update(participant_id, {"status": status.value})

    async def use_one_credit(self, participant_id: int) -> int:
        """Increment used credits, clamped to the total."""
        participant = await self._require(participant_id)
        used = min(participant.credits_used + 1, participant.credits_total)
        await self._update(participant_id, {"credits_used": str(used)})
        return used

    async def mark_credits_pulsed(self, participant_id: int) -> None:
        await self._update(participant_id, {"credits_pulsed": "1"})

    async def requeue_to_end(self, participant_id: int) -> None:
        """Keep credits, set ``waiting`` and move to the back of the line."""
        now = time.time()
        await self._update(
            participant_id,
            {"status": ParticipantStatus.WAITING.value, "queued_at": repr(now)},
        )
        await self._run(self._redis.zadd(self._order_key, {str(participant_id): now}))

    async def adjust_credits(self, participant_id: int, delta: int) -> Optional[Participant]:
        """Add or subtract total credits, never below zero or used credits."""
        participant = await self.get(participant_id)
        if participant is None:
            return None
        return await self.set_credits_total(participant_id, participant.credits_total + delta)

    async def set_credits_total(self, participant_id: int, credits_total: int) -> Optional[Participant]:
        participant = await self.get(participant_id)
        if participant is None:
            return None

        clamped = max(max(0, credits_total), participant.credits_used)
        await self._update(participant_id, {"credits_total": str(clamped)})
        return await self.get(participant_id)

    async def set_credits_used(self, participant_id: int, credits_used: int) -> Optional[Participant]:
        participant = await self.get(participant_id)
        if participant is None:
            return None

        clamped = max(0, min(credits_used, participant.credits_total))
        await self._update(participant_id, {"credits_used": str(clamped)})
        return await self.get(participant_id)

    async def delete(self, participant_id: int) -> None:
        participant = await self.get(participant_id)
        if participant is None:
            return

        await self._run(self._redis.delete(self._participant_key(participant_id)))
        await self._run(self._redis.zrem(self._order_key, str(participant_id)))
        for index, value in (
            ("intent", participant.intent_id),
            ("token", participant.session_token),
            ("payment", participant.payment_id),
        ):
            if value:
                await self._run(self._redis.hdel(self._index_key(index), value))
        logger.info(f"Deleted participant {participant_id}")

    async def delete_all(self) -> None:
        """Delete every participant. The id counter is kept so ids are never reused."""
        ids = await self._run(self._redis.zrange(self._order_key, 0, -1))
        keys = [self._participant_key(participant_id) for participant_id in ids]
        keys += [
            self._order_key,
            self._index_key("intent"),
            self._index_key("token"),
            self._index_key("payment"),
        ]
        await self._run(self._redis.delete(*keys))
        logger.info(f"Deleted all participants ({len(ids)})")
