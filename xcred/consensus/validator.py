"""Peer validation: service authority-signed tasks within a per-window budget."""

import asyncio
import time
import uuid
from collections.abc import Callable
from enum import Enum

from xcred.cache.tiered import TieredCache
from xcred.config import EngineConfig, SettingsSnapshot
from xcred.consensus.authority import AuthorityClient
from xcred.consensus.budget import BudgetStore, MemoryBudgetStore
from xcred.consensus.signing import SignatureVerifier
from xcred.core.events import EventBus, RateLimited, RemoteFallbackSuggested, ValidationCompleted
from xcred.core.fetcher import RawFetcher
from xcred.core.parser import parse_response
from xcred.exceptions import AuthorityError, FetchError, MalformedResponseError, StoreError
from xcred.logging import get_logger
from xcred.models.profile import ProfileRecord
from xcred.models.task import BudgetInfo, ValidationTask, ValidatorBudget
from xcred.scoring import CredibilityScorer


class TaskOutcome(str, Enum):
    """What happened to a validation task."""
    COMPLETED = "completed"
    DISABLED = "disabled"
    NOT_SELECTED = "not_selected"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FETCH_FAILED = "fetch_failed"


class CrossCheck(str, Enum):
    AGREE = "agree"
    DISAGREE = "disagree"
    UNKNOWN = "unknown"


def new_node_id() -> str:
    return f"node_{uuid.uuid4().hex[:26]}"


class ConsensusValidator:
    """
    Services validation tasks for the authority.

    A task is accepted only when peer validation is enabled, this node is
    among its selected validators, it is fresh, its signature verifies
    against the authority key, and budget remains. Everything else is
    dropped and reported through the returned TaskOutcome.

    Example:
        validator = ConsensusValidator(node_id, fetcher, cache, authority=client,
                                       verifier=verify_ed25519, public_key=key)
        outcome = await validator.handle_task(task)
    """

    def __init__(
        self,
        node_id: str,
        fetcher: RawFetcher,
        cache: TieredCache,
        *,
        authority: AuthorityClient | None = None,
        verifier: SignatureVerifier | None = None,
        public_key: str | None = None,
        budget_store: BudgetStore | None = None,
        bus: EventBus | None = None,
        scorer: CredibilityScorer | None = None,
        settings: Callable[[], SettingsSnapshot] | None = None,
        capacity: int = 25,
        window_seconds: float = 60 * 60,
        task_max_age_seconds: float = 5 * 60,
        cross_check_timeout: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            node_id: This node's validator identity
            fetcher: Raw fetch capability shared with the pipeline
            cache: Where validated records are stored
            authority: Authority client; without it results are not submitted
            verifier: Signature check; without it every task is rejected
            public_key: Authority signing key (base64)
            budget_store: Persistence for the budget
            bus: Event channel; RateLimited events are observed here
            scorer: Scorer used to parse responses
            settings: Toggle snapshot provider
            capacity: Tasks serviced per window
            window_seconds: Budget window length
            task_max_age_seconds: Older tasks are dropped
            cross_check_timeout: Upper bound on cross_check
            clock: Epoch-seconds source
        """
        self.node_id = node_id
        self._fetcher = fetcher
        self._cache = cache
        self._authority = authority
        self._verifier = verifier
        self.public_key = public_key
        self._budget_store = budget_store or MemoryBudgetStore()
        self._bus = bus
        self._scorer = scorer or CredibilityScorer(clock=clock)
        self._settings = settings or SettingsSnapshot
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.task_max_age_seconds = task_max_age_seconds
        self.cross_check_timeout = cross_check_timeout
        self._clock = clock
        self._budget: ValidatorBudget | None = None
        self._log = get_logger("validator")

        if bus is not None:
            self._unsubscribe = bus.subscribe(RateLimited, self._on_rate_limited)
        else:
            self._unsubscribe = None

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        node_id: str,
        fetcher: RawFetcher,
        cache: TieredCache,
        **kwargs,
    ) -> "ConsensusValidator":
        return cls(
            node_id,
            fetcher,
            cache,
            capacity=config.validator_budget_per_window,
            window_seconds=config.validator_window_seconds,
            task_max_age_seconds=config.task_max_age_seconds,
            cross_check_timeout=config.cross_check_timeout_seconds,
            **kwargs,
        )

    # Budget

    async def _current_budget(self) -> ValidatorBudget:
        """Load the budget once, then reset it lazily when its window has passed."""
        now = self._clock()
        if self._budget is None:
            try:
                self._budget = await self._budget_store.load_budget()
            except StoreError as e:
                self._log.warning("budget_unpersisted", operation="load", error=str(e))
            if self._budget is None:
                self._budget = ValidatorBudget(
                    remaining=self.capacity, capacity=self.capacity, window_start=now
                )
                await self._save_budget()

        if now - self._budget.window_start > self.window_seconds:
            self._budget = ValidatorBudget(
                remaining=self.capacity, capacity=self.capacity, window_start=now
            )
            await self._save_budget()
            self._log.info("budget_reset", capacity=self.capacity)

        return self._budget

    async def _consume_budget(self) -> bool:
        budget = await self._current_budget()
        if budget.remaining <= 0:
            return False
        budget.remaining -= 1
        await self._save_budget()
        return True

    async def _save_budget(self) -> None:
        # An unwritable store leaves the budget enforced in memory only
        try:
            await self._budget_store.save_budget(self._budget)
        except StoreError as e:
            self._log.warning("budget_unpersisted", operation="save", error=str(e))

    async def budget(self) -> BudgetInfo:
        budget = await self._current_budget()
        elapsed = self._clock() - budget.window_start
        return BudgetInfo(
            remaining=budget.remaining,
            capacity=budget.capacity,
            seconds_until_reset=max(0.0, self.window_seconds - elapsed),
        )

    # Tasks

    def _verify(self, task: ValidationTask) -> bool:
        if self._verifier is None or not self.public_key:
            return False
        return self._verifier(task.signing_payload(), task.signature, self.public_key)

    def _reject(self, task: ValidationTask, outcome: TaskOutcome) -> TaskOutcome:
        self._log.debug("task_rejected", task_id=task.task_id, reason=outcome.value)
        return outcome

    async def handle_task(self, task: ValidationTask) -> TaskOutcome:
        """
        Service one validation task.

        Returns:
            TaskOutcome describing whether the task was serviced or why not
        """
        if not self._settings().peer_validation_enabled:
            return self._reject(task, TaskOutcome.DISABLED)

        if self.node_id not in task.selected_validators:
            return self._reject(task, TaskOutcome.NOT_SELECTED)

        age_ms = self._clock() * 1000 - task.timestamp
        if age_ms > self.task_max_age_seconds * 1000:
            self._log.info("task_expired", task_id=task.task_id, age_seconds=round(age_ms / 1000))
            return TaskOutcome.EXPIRED

        if not self._verify(task):
            self._log.warning("task_signature_invalid", task_id=task.task_id)
            return TaskOutcome.BAD_SIGNATURE

        if not await self._consume_budget():
            self._log.info("budget_exhausted", task_id=task.task_id)
            return TaskOutcome.BUDGET_EXHAUSTED

        username = task.username.lstrip("@").lower()
        self._log.info("task_accepted", task_id=task.task_id, username=username)

        record = await self._fetch(username)
        if record is None or record.created_at is None:
            return TaskOutcome.FETCH_FAILED

        submitted = await self.submit_result(task.task_id, record)

        now = self._clock()
        validated = record.model_copy(update={"validated_by": self.node_id, "validated_at": now})
        await self._cache.put(username, validated)

        if self._bus is not None:
            self._bus.publish(ValidationCompleted(
                task_id=task.task_id,
                username=username,
                submitted=submitted,
            ))
        self._log.info("task_completed", task_id=task.task_id, username=username, submitted=submitted)
        return TaskOutcome.COMPLETED

    async def _fetch(self, username: str) -> ProfileRecord | None:
        try:
            result = await self._fetcher.fetch_raw_profile(username)
        except FetchError as e:
            self._log.warning("validation_fetch_failed", username=username, error=str(e))
            return None

        if not result.ok:
            self._log.warning("validation_fetch_failed", username=username, status=result.status)
            return None

        try:
            return parse_response(result.body, username, self._scorer)
        except MalformedResponseError as e:
            self._log.warning("validation_fetch_failed", username=username, error=str(e))
            return None
        except Exception:
            self._log.exception("validation_parse_crashed", username=username)
            return None

    async def submit_result(self, task_id: str, record: ProfileRecord) -> bool:
        """Send a validated record to the authority. False when unavailable or refused."""
        if self._authority is None:
            return False
        try:
            return await self._authority.submit_result(task_id, self.node_id, record)
        except AuthorityError as e:
            self._log.warning("result_submission_failed", task_id=task_id, error=str(e))
            return False

    # Authority lookups

    async def cross_check(self, username: str, record: ProfileRecord) -> CrossCheck:
        """
        Compare a peer-sourced record's ``created_at`` with the authority's.

        Resolves within ``cross_check_timeout`` seconds; anything that
        prevents a comparison yields UNKNOWN.
        """
        if self._authority is None or record.created_at is None:
            return CrossCheck.UNKNOWN

        try:
            reference = await asyncio.wait_for(
                self._authority.validated_profile(username),
                timeout=self.cross_check_timeout,
            )
        except asyncio.TimeoutError:
            self._log.debug("cross_check_timeout", username=username)
            return CrossCheck.UNKNOWN
        except AuthorityError as e:
            self._log.debug("cross_check_failed", username=username, error=str(e))
            return CrossCheck.UNKNOWN

        if reference is None or reference.created_at is None:
            return CrossCheck.UNKNOWN

        if reference.created_at == record.created_at:
            return CrossCheck.AGREE

        self._log.warning("cross_check_mismatch", username=username)
        return CrossCheck.DISAGREE

    async def request_refresh(self, username: str) -> bool:
        """Ask the authority to schedule validation of stale data."""
        if self._authority is None:
            return False
        try:
            await self._authority.request_validation(username, self.node_id)
        except AuthorityError as e:
            self._log.warning("refresh_request_failed", username=username, error=str(e))
            return False
        self._log.info("refresh_requested", username=username)
        return True

    def _on_rate_limited(self, event: RateLimited) -> None:
        if not self._settings().remote_sync_enabled and self._bus is not None:
            self._bus.publish(RemoteFallbackSuggested(reason=f"rate limited on @{event.username}"))

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
