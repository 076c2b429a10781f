"""Pending clarification records and the per-user lock guarding them."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis as AsyncRedis, from_url as redis_from_url
from redis.asyncio.lock import Lock as AsyncRedisLock
from redis.exceptions import LockNotOwnedError, RedisError

LOGGER = logging.getLogger("gruenerator_ai.pending")

DEFAULT_LOCK_TTL = 5


class PendingRequestLock(Protocol):
    """Non-blocking, time-bounded mutual exclusion per user id.

    ``acquire`` hands out an owner token; ``release`` only drops the lock
    while that token still holds it, so a holder whose TTL ran out cannot
    release a lock someone else has since taken.
    """

    async def acquire(self, user_id: str) -> Optional[str]:
        """Return an owner token when the caller now holds the lock, else ``None``."""

    async def release(self, user_id: str, token: str) -> None:
        """Drop the lock for ``user_id`` if ``token`` still owns it."""


class PendingRequestStore(Protocol):
    """Interface for storing a user's awaiting-clarification record."""

    async def get(self, user_id: str) -> Optional[Dict]:
        """Retrieve the pending record for the user."""

    async def set(self, user_id: str, value: Dict, ttl: Optional[int] = None) -> None:
        """Store the pending record with optional time-to-live."""

    async def clear(self, user_id: str) -> None:
        """Remove the pending record."""


class InMemoryPendingRequestLock(PendingRequestLock):
    """Single-process lock with expiry, for tests and local runs."""

    def __init__(self, ttl: float = DEFAULT_LOCK_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._holders: Dict[str, Tuple[str, float]] = {}

    async def acquire(self, user_id: str) -> Optional[str]:
        now = self._clock()
        holder = self._holders.get(user_id)
        if holder is not None and holder[1] > now:
            return None
        token = uuid.uuid4().hex
        self._holders[user_id] = (token, now + self._ttl)
        return token

    async def release(self, user_id: str, token: str) -> None:
        holder = self._holders.get(user_id)
        if holder is None or holder[0] != token:
            LOGGER.debug("Pending lock for %s no longer owned by this holder", user_id)
            return
        del self._holders[user_id]


class RedisPendingRequestLock(PendingRequestLock):
    """Token-checked redis-py lock shared by every worker process."""

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        prefix: str = "pending_lock",
        ttl: float = DEFAULT_LOCK_TTL,
        redis_client: Optional[AsyncRedis] = None,
    ) -> None:
        if redis_client is None and url is None:
            raise ValueError("RedisPendingRequestLock requires either a redis_client or url")
        self._url = url
        self._client: Optional[AsyncRedis] = redis_client
        self._owns_client = redis_client is None
        self._prefix = prefix.rstrip(":")
        self._ttl = ttl
        self._held: Dict[str, AsyncRedisLock] = {}

    async def _client_or_create(self) -> AsyncRedis:
        if self._client is None:
            assert self._url is not None
            self._client = redis_from_url(self._url, decode_responses=False)
        return self._client

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def acquire(self, user_id: str) -> Optional[str]:
        token = uuid.uuid4().hex
        try:
            client = await self._client_or_create()
            lock = client.lock(self._key(user_id), timeout=self._ttl, blocking=False, thread_local=False)
            acquired = await lock.acquire(token=token)
        except RedisError as exc:
            LOGGER.error("Error acquiring pending lock for %s: %s", user_id, exc)
            return None
        if not acquired:
            LOGGER.debug("Could not acquire pending lock for %s (already locked)", user_id)
            return None
        self._held[token] = lock
        LOGGER.debug("Acquired pending lock for %s", user_id)
        return token

    async def release(self, user_id: str, token: str) -> None:
        lock = self._held.pop(token, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockNotOwnedError:
            LOGGER.warning("Pending lock for %s expired before release", user_id)
        except RedisError as exc:
            LOGGER.error("Error releasing pending lock for %s: %s", user_id, exc)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class NullPendingRequestStore(PendingRequestStore):
    """No-op store used when clarification tracking is disabled."""

    async def get(self, user_id: str) -> Optional[Dict]:
        return None

    async def set(self, user_id: str, value: Dict, ttl: Optional[int] = None) -> None:
        return None

    async def clear(self, user_id: str) -> None:
        return None


class InMemoryPendingRequestStore(PendingRequestStore):
    """Simple in-memory store primarily for testing or local runs."""

    def __init__(self) -> None:
        self._storage: Dict[str, Dict] = {}

    async def get(self, user_id: str) -> Optional[Dict]:
        return self._storage.get(user_id)

    async def set(self, user_id: str, value: Dict, ttl: Optional[int] = None) -> None:
        self._storage[user_id] = value

    async def clear(self, user_id: str) -> None:
        self._storage.pop(user_id, None)


class RedisPendingRequestStore(PendingRequestStore):
    """Redis-backed pending records."""

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        prefix: str = "pending_request",
        redis_client: Optional[AsyncRedis] = None,
    ) -> None:
        if redis_client is None and url is None:
            raise ValueError("RedisPendingRequestStore requires either a redis_client or url")
        self._url = url
        self._client: Optional[AsyncRedis] = redis_client
        self._owns_client = redis_client is None
        self._prefix = prefix.rstrip(":")

    async def _client_or_create(self) -> AsyncRedis:
        if self._client is None:
            assert self._url is not None
            self._client = redis_from_url(self._url, decode_responses=False)
        return self._client

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def get(self, user_id: str) -> Optional[Dict]:
        client = await self._client_or_create()
        value = await client.get(self._key(user_id))
        if not value:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return json.loads(value)

    async def set(self, user_id: str, value: Dict, ttl: Optional[int] = None) -> None:
        client = await self._client_or_create()
        record = dict(value)
        record.setdefault("timestamp", int(time.time() * 1000))
        dump = json.dumps(record)
        if ttl and ttl > 0:
            await client.set(self._key(user_id), dump, ex=ttl)
        else:
            await client.set(self._key(user_id), dump)

    async def clear(self, user_id: str) -> None:
        client = await self._client_or_create()
        await client.delete(self._key(user_id))

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


async def check_pending_request(
    lock: PendingRequestLock,
    store: PendingRequestStore,
    user_id: str,
) -> Optional[Dict]:
    """Read the user's pending record under the lock.

    Does not wait: on contention the check is skipped and ``None`` returned.
    """
    token = await lock.acquire(user_id)
    if token is None:
        LOGGER.info("Skipping pending-request check for %s: lock held by another turn", user_id)
        return None
    try:
        return await store.get(user_id)
    except (RedisError, ValueError) as exc:
        LOGGER.warning("Error checking pending request for %s: %s", user_id, exc)
        return None
    finally:
        await lock.release(user_id, token)
