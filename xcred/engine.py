"""Profile engine - owns and wires the cache, pipeline and validator."""

import asyncio
import time
from collections.abc import Awaitable, Callable

from xcred.cache.base import ProfileStore
from xcred.cache.memory import InMemoryProfileStore
from xcred.cache.redis_store import RedisProfileStore
from xcred.cache.remote import RemoteStore, RestRemoteStore
from xcred.cache.sqlite_store import SQLiteProfileStore
from xcred.cache.tiered import CacheStats, SweepResult, TieredCache
from xcred.config import EngineConfig, SettingsSnapshot, StoreBackend
from xcred.consensus.authority import AuthorityClient, HttpAuthorityClient
from xcred.consensus.budget import BudgetStore, MemoryBudgetStore, SQLiteBudgetStore
from xcred.consensus.signing import SignatureVerifier, verify_ed25519
from xcred.consensus.validator import ConsensusValidator, CrossCheck, TaskOutcome, new_node_id
from xcred.core.events import EventBus
from xcred.core.fetcher import HttpxRawFetcher, RawFetcher
from xcred.core.pipeline import FetchPipeline
from xcred.exceptions import AuthorityError, ConfigError, StoreError
from xcred.logging import configure_logging, get_logger
from xcred.models.profile import ProfileRecord
from xcred.models.score import CredibilityScore
from xcred.models.task import BudgetInfo, ValidationTask
from xcred.scoring import CredibilityScorer


class ProfileEngine:
    """
    High-level interface: cached, rate-limited profile lookups plus
    optional peer validation.

    Every collaborator can be injected; anything not injected is built
    from the configuration on entry. Without fetch credentials the engine
    serves from cache only.

    Example:
        async with ProfileEngine() as engine:
            record = await engine.lookup("jack")
            print(record.tier)
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        fetcher: RawFetcher | None = None,
        store: ProfileStore | None = None,
        remote: RemoteStore | None = None,
        authority: AuthorityClient | None = None,
        budget_store: BudgetStore | None = None,
        settings: Callable[[], SettingsSnapshot] | None = None,
        verifier: SignatureVerifier | None = verify_ed25519,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            config: EngineConfig instance, uses defaults if None
            fetcher: Raw fetch capability, built from tokens if None
            store: Persistent tier, built from ``store_backend`` if None
            remote: Remote tier, built from ``remote_url`` if None
            authority: Consensus authority client
            budget_store: Validator budget persistence
            settings: Toggle snapshot provider, static config if None
            verifier: Task signature check
            clock: Epoch-seconds source
            sleep: Scheduler sleep
        """
        self.config = config or EngineConfig()
        self._fetcher = fetcher
        self._owns_fetcher = fetcher is None
        self._store = store
        self._remote = remote
        self._authority = authority
        self._budget_store = budget_store
        self._settings = settings or self.config.settings_snapshot
        self._verifier = verifier
        self._clock = clock
        self._sleep = sleep

        self.bus = EventBus()
        self.scorer = CredibilityScorer(clock=clock)
        self._cache: TieredCache | None = None
        self._pipeline: FetchPipeline | None = None
        self._validator: ConsensusValidator | None = None
        self._sweep_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._log = get_logger("engine")

    def _build_store(self) -> ProfileStore:
        backend = self.config.store_backend
        if backend == StoreBackend.SQLITE:
            return SQLiteProfileStore(self.config.sqlite_path)
        if backend == StoreBackend.REDIS:
            return RedisProfileStore(self.config.redis_url)
        return InMemoryProfileStore()

    def _build_remote(self) -> RemoteStore | None:
        if not self.config.remote_url:
            return None
        if not self.config.remote_api_key:
            raise ConfigError("remote_url is set but remote_api_key is missing")
        return RestRemoteStore(
            self.config.remote_url,
            self.config.remote_api_key,
            ttl_seconds=self.config.remote_ttl_seconds,
            timeout=self.config.remote_timeout_seconds,
            clock=self._clock,
        )

    def _build_fetcher(self) -> RawFetcher | None:
        if not (self.config.bearer_token and self.config.csrf_token):
            return None
        return HttpxRawFetcher(
            self.config.bearer_token,
            self.config.csrf_token,
            base_url=self.config.api_base_url,
            timeout=self.config.fetch_timeout_seconds,
        )

    async def _resolve_node_id(self) -> str:
        if self.config.node_id:
            return self.config.node_id
        try:
            node_id = await self._budget_store.load_node_id()
            if node_id is None:
                node_id = new_node_id()
                await self._budget_store.save_node_id(node_id)
        except StoreError as e:
            self._log.warning("node_id_unpersisted", error=str(e))
            node_id = new_node_id()
        return node_id

    async def __aenter__(self) -> "ProfileEngine":
        """Async context manager entry - build and wire components."""
        configure_logging(self.config)

        if self._store is None:
            self._store = self._build_store()
        if self._remote is None:
            self._remote = self._build_remote()
        if self._fetcher is None:
            self._fetcher = self._build_fetcher()
        if self._budget_store is None:
            if self.config.store_backend == StoreBackend.SQLITE:
                self._budget_store = SQLiteBudgetStore(self.config.sqlite_path)
            else:
                self._budget_store = MemoryBudgetStore()

        self._cache = TieredCache.from_config(
            self.config,
            self._store,
            self._remote,
            scorer=self.scorer,
            settings=self._settings,
            clock=self._clock,
        )

        if self._fetcher is not None:
            self._pipeline = FetchPipeline.from_config(
                self.config,
                self._fetcher,
                self._cache,
                scorer=self.scorer,
                bus=self.bus,
                clock=self._clock,
                sleep=self._sleep,
            )

            if self._authority is None:
                self._authority = HttpAuthorityClient(
                    self.config.authority_url,
                    timeout=self.config.remote_timeout_seconds,
                )
            self._validator = ConsensusValidator.from_config(
                self.config,
                await self._resolve_node_id(),
                self._fetcher,
                self._cache,
                authority=self._authority,
                verifier=self._verifier,
                budget_store=self._budget_store,
                bus=self.bus,
                scorer=self.scorer,
                settings=self._settings,
                clock=self._clock,
            )
        else:
            self._log.info("fetch_disabled", reason="no bearer/csrf token configured")

        if (
            self._validator is not None
            and self.config.heartbeat_interval_seconds > 0
            and self._settings().peer_validation_enabled
        ):
            await self._register()
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        if self.config.sweep_interval_seconds > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - cleanup resources."""
        for task in (self._sweep_task, self._heartbeat_task):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sweep_task = None
        self._heartbeat_task = None

        if self._pipeline is not None:
            await self._pipeline.close()
        if self._validator is not None:
            self._validator.close()
        await self.bus.close()
        if self._cache is not None:
            await self._cache.close()
        if self._owns_fetcher and isinstance(self._fetcher, HttpxRawFetcher):
            await self._fetcher.close()
        if self._authority is not None:
            await self._authority.close()
        if self._budget_store is not None:
            await self._budget_store.close()

    async def _register(self) -> None:
        node_id = self._validator.node_id
        try:
            await self._authority.register(node_id)
        except AuthorityError as e:
            self._log.warning("registration_failed", node_id=node_id, error=str(e))
            return
        self._log.info("validator_registered", node_id=node_id)

    async def _heartbeat_loop(self) -> None:
        node_id = self._validator.node_id
        while True:
            try:
                alive = await self._authority.heartbeat(node_id)
            except AuthorityError:
                alive = False
            if not alive:
                self._log.debug("heartbeat_failed", node_id=node_id)
            await asyncio.sleep(self.config.heartbeat_interval_seconds)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                await self._cache.sweep()
            except StoreError as e:
                self._log.warning("sweep_failed", error=str(e))

    @property
    def cache(self) -> TieredCache:
        if self._cache is None:
            raise RuntimeError("ProfileEngine used outside its async context")
        return self._cache

    @property
    def pipeline(self) -> FetchPipeline | None:
        return self._pipeline

    @property
    def validator(self) -> ConsensusValidator | None:
        return self._validator

    async def lookup(self, username: str, force_refresh: bool = False) -> ProfileRecord | None:
        """
        Resolve one profile.

        Args:
            username: X handle, with or without ``@``
            force_refresh: Drop local cache entries first

        Returns:
            Record (possibly an error record), or None when the fetch queue
            is full or fetching is not configured and nothing is cached
        """
        username = username.lstrip("@").lower()
        self._log.debug("lookup_start", username=username, force_refresh=force_refresh)

        if force_refresh:
            await self.cache.invalidate(username)

        if self._pipeline is None:
            return await self.cache.get(username)
        return await self._pipeline.request(username)

    async def lookup_many(
        self,
        usernames: list[str],
        force_refresh: bool = False,
    ) -> list[ProfileRecord | None]:
        """Resolve several profiles; results are in input order."""
        return list(await asyncio.gather(
            *(self.lookup(username, force_refresh) for username in usernames)
        ))

    def score(self, record: ProfileRecord) -> CredibilityScore:
        return self.scorer.score(record)

    async def handle_task(self, task: ValidationTask) -> TaskOutcome:
        if self._validator is None:
            return TaskOutcome.DISABLED

        if self._validator.public_key is None and self._authority is not None:
            try:
                self._validator.public_key = await self._authority.fetch_public_key()
            except AuthorityError as e:
                self._log.warning("public_key_unavailable", error=str(e))

        return await self._validator.handle_task(task)

    async def budget(self) -> BudgetInfo | None:
        if self._validator is None:
            return None
        return await self._validator.budget()

    async def stats(self) -> CacheStats:
        return await self.cache.stats()

    async def sweep(self) -> SweepResult:
        return await self.cache.sweep()

    async def invalidate_cache(self, username: str) -> None:
        """Remove a specific username from the local cache."""
        await self.cache.invalidate(username)

    async def clear_cache(self) -> None:
        """Clear all locally cached data."""
        await self.cache.clear()

    async def sync_to_remote(self) -> int:
        """Upload valid local records to the remote store. Returns the count uploaded."""
        return await self.cache.sync_to_remote()

    async def request_refresh(self, username: str) -> bool:
        """Ask the authority to revalidate a handle. False when it could not be asked."""
        if self._validator is None:
            return False
        return await self._validator.request_refresh(username.lstrip("@").lower())

    async def cross_check(self, username: str) -> CrossCheck:
        """
        Compare the cached record for a handle with the authority's copy.

        Returns:
            CrossCheck.UNKNOWN when nothing is cached, peer validation is
            unavailable, or the authority cannot answer in time
        """
        if self._validator is None:
            return CrossCheck.UNKNOWN
        username = username.lstrip("@").lower()
        record = await self.cache.get(username)
        if record is None or record.error:
            return CrossCheck.UNKNOWN
        return await self._validator.cross_check(username, record)
