"""Idempotency service for exactly-once mutating operations.

Provides:
- An idempotency store with atomic claim, commit and TTL expiry
- A gate that replays committed results, claims new keys, and
  short-polls while another caller holds the same key

Keys are composite: ``update:<session>:<key>``, ``complete:<session>:<key>``
for client-retried calls and ``evt:<event id>`` for provider events.
A record stuck in progress (e.g. its owner crashed) stops blocking once
its TTL elapses.
"""

import asyncio
import copy
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from acp_checkout.domain.exceptions import IdempotencyConflictError

logger = structlog.get_logger()

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[Any]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Store
# ============================================================================


class RecordState(str, Enum):
    """State of an idempotency record."""

    IN_PROGRESS = "in_progress"
    DONE = "done"


@dataclass
class IdempotencyRecord:
    """Stored state for one idempotency key.

    Attributes:
        key: Composite idempotency key.
        state: IN_PROGRESS until the owner commits.
        expires_at: Deadline after which the record counts as absent.
        result: Committed result, present once DONE.
    """

    key: str
    state: RecordState
    expires_at: datetime
    result: Any = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryIdempotencyStore:
    """In-memory idempotency store.

    Every method performs a single check-and-set under a lock, so
    concurrent claims of the same key have exactly one winner.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Clock | None = None) -> None:
        """Initialize store.

        Args:
            ttl_seconds: Lifetime of a record after claim or commit.
            clock: Source of the current UTC time.
        """
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or _utc_now

    async def try_begin(self, key: str) -> bool:
        """Claim a key.

        Args:
            key: Composite idempotency key.

        Returns:
            True if the caller now owns the key (absent or expired before).
        """
        now = self._clock()
        with self._lock:
            existing = self._records.get(key)
            if existing is not None and not existing.is_expired(now):
                return False
            self._records[key] = IdempotencyRecord(
                key=key,
                state=RecordState.IN_PROGRESS,
                expires_at=now + self.ttl,
            )
            return True

    async def get_if_ready(self, key: str) -> Any | None:
        """Get the committed result of a key.

        Expired records are evicted and reported as absent.

        Args:
            key: Composite idempotency key.

        Returns:
            Copy of the committed result, or None when absent, in progress
            or expired.
        """
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.is_expired(now):
                del self._records[key]
                return None
            if record.state != RecordState.DONE:
                return None
            return copy.deepcopy(record.result)

    async def commit(self, key: str, result: Any) -> None:
        """Store the result of a key and mark it DONE.

        Safe to call without a prior ``try_begin``.

        Args:
            key: Composite idempotency key.
            result: Result to replay for later calls.
        """
        now = self._clock()
        snapshot = copy.deepcopy(result)
        with self._lock:
            self._records[key] = IdempotencyRecord(
                key=key,
                state=RecordState.DONE,
                expires_at=now + self.ttl,
                result=snapshot,
            )

    async def clear(self, key: str) -> None:
        """Remove a key."""
        with self._lock:
            self._records.pop(key, None)

    async def cleanup_expired(self) -> int:
        """Remove expired records.

        Returns:
            Number of records removed.
        """
        now = self._clock()
        with self._lock:
            expired_keys = [
                key for key, record in self._records.items() if record.is_expired(now)
            ]
            for key in expired_keys:
                del self._records[key]
        return len(expired_keys)


# ============================================================================
# Gate
# ============================================================================


@dataclass
class IdempotencyClaim:
    """Outcome of claiming a key.

    Attributes:
        key: Composite idempotency key.
        is_owner: True if the caller must execute and commit.
        cached_result: Result to replay when not the owner.
    """

    key: str
    is_owner: bool
    cached_result: Any = None

    @property
    def is_replay(self) -> bool:
        return not self.is_owner


class IdempotencyService:
    """Gate shared by the lifecycle engine and the webhook reconciler."""

    def __init__(
        self,
        store: InMemoryIdempotencyStore | None = None,
        poll_attempts: int = 10,
        poll_interval: float = 0.1,
        sleep: Sleep | None = None,
    ) -> None:
        """Initialize service.

        Args:
            store: Idempotency store.
            poll_attempts: Number of polls while another caller holds the key.
            poll_interval: Delay between polls in seconds.
            sleep: Async sleep used between polls.
        """
        self.store = store or InMemoryIdempotencyStore()
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._sleep = sleep or asyncio.sleep

    @staticmethod
    def make_key(operation: str, scope: str, key: str | None = None) -> str:
        """Build a composite key.

        Args:
            operation: Operation prefix ("update", "complete", "evt").
            scope: Session or event identifier.
            key: Caller-supplied key, if any.

        Returns:
            Composite key.
        """
        if key is None:
            return f"{operation}:{scope}"
        return f"{operation}:{scope}:{key}"

    async def claim(self, key: str) -> IdempotencyClaim:
        """Replay, claim or wait for a key.

        Args:
            key: Composite idempotency key.

        Returns:
            Claim telling the caller to execute or to replay.

        Raises:
            IdempotencyConflictError: If another caller still holds the key
                after the polling budget.
        """
        cached = await self.store.get_if_ready(key)
        if cached is not None:
            logger.info("Replaying idempotent result", idempotency_key=key)
            return IdempotencyClaim(key=key, is_owner=False, cached_result=cached)

        if await self.store.try_begin(key):
            return IdempotencyClaim(key=key, is_owner=True)

        for _ in range(self.poll_attempts):
            await self._sleep(self.poll_interval)
            cached = await self.store.get_if_ready(key)
            if cached is not None:
                logger.info("Replaying idempotent result after wait", idempotency_key=key)
                return IdempotencyClaim(key=key, is_owner=False, cached_result=cached)

        logger.warning("Idempotency key still in progress", idempotency_key=key)
        raise IdempotencyConflictError(key)

    async def commit(self, key: str, result: Any) -> None:
        """Store the result for a claimed key."""
        await self.store.commit(key, result)
        logger.debug("Stored idempotent result", idempotency_key=key)
