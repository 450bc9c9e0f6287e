"""Deduplicating fetch queue with adaptive rate-limit backoff."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from xcred.cache.tiered import TieredCache
from xcred.config import EngineConfig
from xcred.core.events import EventBus, ProfileResolved, RateLimited
from xcred.core.fetcher import RawFetcher
from xcred.core.parser import parse_response
from xcred.core.ratelimit import RateLimitState
from xcred.exceptions import FetchError, MalformedResponseError
from xcred.logging import get_logger
from xcred.models.profile import CacheSource, ProfileRecord
from xcred.scoring import CredibilityScorer


@dataclass
class PendingRequest:
    """Callers waiting on one in-flight username."""

    username: str
    futures: list[asyncio.Future] = field(default_factory=list)
    attempts: int = 0


class FetchPipeline:
    """
    Serializes profile fetches through a single scheduler task.

    At most one fetch per username is in flight: concurrent requests for
    the same handle attach to the same PendingRequest and receive the
    same record.

    Example:
        pipeline = FetchPipeline(fetcher, cache)
        record = await pipeline.request("jack")
    """

    def __init__(
        self,
        fetcher: RawFetcher,
        cache: TieredCache,
        *,
        scorer: CredibilityScorer | None = None,
        bus: EventBus | None = None,
        rate_limit: RateLimitState | None = None,
        max_queue_size: int = 50,
        batch_size: int = 5,
        batch_delay: float = 3.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            fetcher: Raw profile fetch capability
            cache: Tiered cache consulted before and after every fetch
            scorer: Scorer used to parse responses
            bus: Event channel for RateLimited / ProfileResolved
            rate_limit: Backoff state, created with defaults if None
            max_queue_size: Requests beyond this are dropped
            batch_size: Requests processed per batch
            batch_delay: Seconds between batches
            clock: Epoch-seconds source
            sleep: Awaitable sleep, replaced by a fake in tests
        """
        self._fetcher = fetcher
        self._cache = cache
        self._scorer = scorer or CredibilityScorer(clock=clock)
        self._bus = bus or EventBus()
        self._rate_limit = rate_limit or RateLimitState()
        self.max_queue_size = max_queue_size
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._clock = clock
        self._sleep = sleep

        self._pending: dict[str, PendingRequest] = {}
        self._queue: deque[str] = deque()
        self._scheduler: asyncio.Task | None = None
        self._log = get_logger("pipeline")

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        fetcher: RawFetcher,
        cache: TieredCache,
        **kwargs,
    ) -> "FetchPipeline":
        rate_limit = RateLimitState(
            base_pause=config.rate_limit_base_pause_seconds,
            max_pause=config.rate_limit_max_pause_seconds,
            base_delay=config.request_delay_seconds,
            max_delay=config.max_request_delay_seconds,
        )
        return cls(
            fetcher,
            cache,
            rate_limit=rate_limit,
            max_queue_size=config.max_queue_size,
            batch_size=config.batch_size,
            batch_delay=config.batch_delay_seconds,
            **kwargs,
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def rate_limit(self) -> RateLimitState:
        return self._rate_limit

    async def request(self, username: str) -> ProfileRecord | None:
        """
        Resolve a username from cache or through the fetch queue.

        Args:
            username: Handle, with or without a leading ``@``

        Returns:
            Cached or freshly fetched record (possibly an error record), or
            None when the queue was full or the pipeline closed first
        """
        key = username.lstrip("@").lower()

        cached = await self._cache.get(key)
        if cached is not None:
            self._log.debug("cache_hit", username=key, source=cached.cache_source)
            return cached

        future = asyncio.get_running_loop().create_future()

        pending = self._pending.get(key)
        if pending is not None:
            pending.futures.append(future)
            self._log.debug("request_joined", username=key, waiters=len(pending.futures))
            return await future

        if len(self._queue) >= self.max_queue_size:
            self._log.warning("queue_full", username=key, queue_size=len(self._queue))
            return None

        self._pending[key] = PendingRequest(username=key, futures=[future])
        self._queue.append(key)
        self._log.debug("request_queued", username=key, queue_size=len(self._queue))
        self._ensure_scheduler()
        return await future

    def _ensure_scheduler(self) -> None:
        if self._scheduler is None or self._scheduler.done():
            self._scheduler = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            while self._queue:
                wait = self._rate_limit.remaining_pause(self._clock())
                if wait > 0:
                    self._log.info("scheduler_paused", seconds=round(wait, 2))
                    await self._sleep(wait)
                    continue

                batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
                for i, key in enumerate(batch):
                    if self._rate_limit.paused:
                        # Put the untouched remainder back at the front, in order
                        self._queue.extendleft(reversed(batch[i:]))
                        break
                    try:
                        await self._process(key)
                    except Exception as e:
                        self._log.exception("process_crashed", username=key, error=str(e))
                        self._resolve(key, None)
                    if i < len(batch) - 1:
                        await self._sleep(self._rate_limit.inter_request_delay)

                if self._queue and not self._rate_limit.paused:
                    await self._sleep(self.batch_delay)
        finally:
            self._scheduler = None

    async def _process(self, key: str) -> None:
        pending = self._pending.get(key)
        if pending is None:
            return
        pending.attempts += 1

        cached = await self._cache.get(key)
        if cached is not None and not cached.error and cached.is_valid():
            self._resolve(key, cached)
            return

        try:
            result = await self._fetcher.fetch_raw_profile(key)
        except FetchError as e:
            self._log.warning("fetch_failed", username=key, error=str(e))
            await self._fail(key)
            return
        except Exception as e:
            self._log.exception("fetch_crashed", username=key, error=str(e))
            await self._fail(key)
            return

        if result.rate_limited:
            await self._on_rate_limited(key)
            return

        if not result.ok:
            self._log.warning("fetch_failed", username=key, status=result.status)
            await self._fail(key)
            return

        self._rate_limit.record_success()

        try:
            record = parse_response(result.body, key, self._scorer)
        except MalformedResponseError as e:
            self._log.warning("malformed_response", username=key, error=str(e))
            await self._fail(key)
            return
        except Exception as e:
            self._log.exception("parse_crashed", username=key, error=str(e))
            await self._fail(key)
            return

        now = self._clock()
        record = record.model_copy(update={"timestamp": now, "last_accessed": now})
        await self._cache.put(key, record, skip_rate_limited=True)
        self._log.info("profile_fetched", username=key, tier=record.tier, attempts=pending.attempts)
        self._resolve(key, record.model_copy(update={"cache_source": CacheSource.FETCH.value}))

    async def _on_rate_limited(self, key: str) -> None:
        pause = self._rate_limit.record_rate_limit(self._clock())
        self._log.warning(
            "rate_limited",
            username=key,
            pause_seconds=pause,
            consecutive_hits=self._rate_limit.consecutive_hits,
        )
        self._bus.publish(RateLimited(
            username=key,
            pause_seconds=pause,
            consecutive_hits=self._rate_limit.consecutive_hits,
        ))

        # Another node may have the profile; the remote tier is consulted here
        cached = await self._cache.get(key)
        if cached is not None and not cached.error and cached.is_valid():
            self._resolve(key, cached)
            return

        self._queue.append(key)

    async def _fail(self, key: str) -> None:
        now = self._clock()
        record = ProfileRecord.error_record(key).model_copy(
            update={"timestamp": now, "last_accessed": now}
        )
        await self._cache.put(key, record)
        self._resolve(key, record.model_copy(update={"cache_source": CacheSource.FETCH.value}))

    def _resolve(self, key: str, record: ProfileRecord | None) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        for future in pending.futures:
            if not future.done():
                future.set_result(record)
        if record is not None:
            self._bus.publish(ProfileResolved(username=key, error=record.error))

    async def close(self) -> None:
        """Stop the scheduler and release every waiter with None."""
        scheduler = self._scheduler
        if scheduler is not None and not scheduler.done():
            scheduler.cancel()
            try:
                await scheduler
            except asyncio.CancelledError:
                pass
        self._scheduler = None
        self._queue.clear()
        for key in list(self._pending):
            self._resolve(key, None)
