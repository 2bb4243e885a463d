"""TTL cache with retry and fallback for remote entity lookups."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable, Sequence
from dataclasses import dataclass, field

from labdesk.clients.lab_api import LabStore
from labdesk.models.entities import ApiOrderParticipant, ApiUser
from labdesk.utils.logging import get_logger
from labdesk.utils.retry import RetryPolicy, Sleeper, with_retry, with_timeout

logger = get_logger(__name__)

FALLBACK_USER_NAME = "Unknown"

Clock = Callable[[], float]


class EntityNotFoundError(LookupError):
    """Raised inside the cache when a lookup comes back empty."""


@dataclass
class CacheEntry[T]:
    """Cached value with its absolute expiry time."""

    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


@dataclass
class CacheConfig:
    """Configuration for an entity cache."""

    ttl: float = 300.0
    fallback_ttl: float = 30.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    batch_timeout: float = 6.0
    concurrency: int = 3
    inter_batch_delay: float = 0.1


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    fallbacks: int = 0


class EntityCache[K: Hashable, T]:
    """Keyed cache in front of a fallible async lookup.

    Live hits are served without touching the network. Misses are fetched with
    retry and backoff; when every attempt fails a fallback value is cached
    briefly so the next caller soon retries the real store.
    """

    def __init__(
        self,
        name: str,
        fetch_one: Callable[[K], Awaitable[T | None]],
        fallback_factory: Callable[[K], T],
        *,
        fetch_many: Callable[[Sequence[K]], Awaitable[dict[K, T] | None]] | None = None,
        config: CacheConfig | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        """Initialize the cache.

        Args:
            name: Label used in logs
            fetch_one: Single-key lookup, None meaning nothing was found
            fallback_factory: Builds the placeholder for a key that cannot be fetched
            fetch_many: Optional batched lookup, None meaning the batch is unavailable
            config: TTLs, retry policy and concurrency settings
            clock: Monotonic time source in seconds
            sleep: Coroutine used for backoff and inter-batch delays
        """
        self.name = name
        self.fetch_one = fetch_one
        self.fetch_many = fetch_many
        self.fallback_factory = fallback_factory
        self.config = config or CacheConfig()
        self.clock = clock
        self.sleep = sleep
        self.stats = CacheStats()
        self._entries: dict[K, CacheEntry[T]] = {}
        self._inflight: dict[K, asyncio.Future[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: K) -> T | None:
        """Live cached value for the key, without fetching."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self.clock()):
            del self._entries[key]
            return None

        return entry.value

    def put(self, key: K, value: T, ttl: float | None = None) -> None:
        ttl = self.config.ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(value=value, expires_at=self.clock() + ttl)

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        logger.info(f"{self.name} cache cleared")

    async def get(self, key: K) -> T:
        """Cached value, fetched value, or a short-lived fallback.

        Concurrent misses for the same key share one fetch.
        """
        cached = self.peek(key)
        if cached is not None:
            self.stats.hits += 1
            logger.debug(f"{self.name} cache hit for {key}")
            return cached

        task = self._inflight.get(key)
        if task is None:
            self.stats.misses += 1
            task = asyncio.ensure_future(self._load(key))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget_inflight(key, done))
        else:
            logger.debug(f"{self.name} lookup for {key} already in flight, waiting for it")

        # A cancelled waiter must not cancel the fetch other callers share
        return await asyncio.shield(task)

    def _forget_inflight(self, key: K, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _load(self, key: K) -> T:
        async def attempt() -> T:
            value = await self.fetch_one(key)
            if value is None:
                raise EntityNotFoundError(f"{self.name} {key} not found")
            return value

        try:
            value = await with_retry(
                attempt,
                self.config.retry_policy,
                description=f"{self.name} lookup {key}",
                sleep=self.sleep,
            )
        except Exception as e:
            self.stats.fallbacks += 1
            logger.error(f"{self.name} lookup for {key} exhausted retries, caching fallback: {e}")
            fallback = self.fallback_factory(key)
            self.put(key, fallback, self.config.fallback_ttl)
            return fallback

        self.put(key, value)
        return value

    async def get_many(self, keys: Sequence[K]) -> dict[K, T | None]:
        """Look up several keys, covering every requested key exactly once."""
        results: dict[K, T | None] = {}
        uncached: list[K] = []

        for key in dict.fromkeys(keys):
            cached = self.peek(key)
            if cached is not None:
                self.stats.hits += 1
                results[key] = cached
            else:
                uncached.append(key)

        if not uncached:
            return results

        batched = await self._fetch_batch(uncached)
        if batched is not None:
            for key in uncached:
                value = batched.get(key)
                if value is not None:
                    self.stats.misses += 1
                    self.put(key, value)
                results[key] = value
            return results

        concurrency = max(1, self.config.concurrency)
        for start in range(0, len(uncached), concurrency):
            if start:
                await self.sleep(self.config.inter_batch_delay)

            group = uncached[start : start + concurrency]
            outcomes = await asyncio.gather(*(self.get(key) for key in group), return_exceptions=True)
            for key, outcome in zip(group, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error(f"{self.name} lookup for {key} raised unexpectedly: {outcome}")
                    results[key] = None
                else:
                    results[key] = outcome

        return results

    async def _fetch_batch(self, keys: list[K]) -> dict[K, T] | None:
        if self.fetch_many is None:
            return None

        try:
            return await with_timeout(
                self.fetch_many(keys),
                self.config.batch_timeout,
                f"{self.name} batch lookup",
            )
        except Exception as e:
            logger.warning(f"{self.name} batch lookup of {len(keys)} keys failed, falling back to single lookups: {e}")
            return None


def fallback_user(user_id: str) -> ApiUser:
    """Placeholder for a user the backend could not provide."""
    return ApiUser(
        id=user_id,
        username=FALLBACK_USER_NAME.lower(),
        full_name=FALLBACK_USER_NAME,
        email="N/A",
        is_fallback=True,
    )


def build_user_cache(store: LabStore, config: CacheConfig | None = None, **kwargs) -> EntityCache[str, ApiUser]:
    """User cache over a LabStore, using its batched endpoint when available."""

    async def fetch_many(user_ids: Sequence[str]) -> dict[str, ApiUser] | None:
        users = await store.get_users(user_ids)
        if users is None:
            return None
        return {user.id: user for user in users}

    return EntityCache(
        "user",
        store.get_user,
        fallback_user,
        fetch_many=fetch_many,
        config=config,
        **kwargs,
    )


def build_participant_cache(
    store: LabStore, config: CacheConfig | None = None, **kwargs
) -> EntityCache[str, list[ApiOrderParticipant]]:
    """Participants-by-order cache over a LabStore; unreachable orders read as no participants."""
    return EntityCache(
        "participants",
        store.get_participants,
        lambda order_id: [],
        config=config,
        **kwargs,
    )
