"""Unit tests for peer validation - real signatures, fake authority and fetcher."""

import asyncio
import base64
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from conftest import NOW, FakeClock, FakeFetcher, load_fixture, make_record, ok
from xcred.cache.memory import InMemoryProfileStore
from xcred.cache.tiered import TieredCache
from xcred.config import SettingsSnapshot
from xcred.consensus import (
    AuthorityClient,
    ConsensusValidator,
    CrossCheck,
    MemoryBudgetStore,
    SQLiteBudgetStore,
    TaskOutcome,
    verify_ed25519,
)
from xcred.core.events import EventBus, RateLimited, RemoteFallbackSuggested
from xcred.core.fetcher import RawFetchResult
from xcred.exceptions import AuthorityError
from xcred.models.task import ValidationTask

NODE_ID = "node_test"


class FakeAuthority(AuthorityClient):

    def __init__(self, reference=None, delay: float = 0.0, fail: bool = False):
        self.reference = reference
        self.delay = delay
        self.fail = fail
        self.submitted: list[tuple[str, str]] = []
        self.refresh_requests: list[str] = []

    async def fetch_public_key(self):
        return ""

    async def register(self, node_id):
        return {}

    async def heartbeat(self, node_id):
        return True

    async def request_validation(self, username, requester_id):
        if self.fail:
            raise AuthorityError("down")
        self.refresh_requests.append(username)
        return {"queued": True}

    async def submit_result(self, task_id, node_id, record):
        self.submitted.append((task_id, record.username))
        return True

    async def validated_profile(self, username):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise AuthorityError("down")
        return self.reference


class Signer:
    """Authority-side key pair."""

    def __init__(self):
        self._key = Ed25519PrivateKey.generate()
        raw = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.public_key = base64.b64encode(raw).decode()

    def task(self, username="jack", timestamp_ms=None, validators=(NODE_ID,), task_id="t1"):
        task = ValidationTask(
            task_id=task_id,
            username=username,
            timestamp=int(NOW * 1000) if timestamp_ms is None else timestamp_ms,
            selected_validators=list(validators),
            signature="",
            authority_public_key=self.public_key,
        )
        signature = self._key.sign(task.signing_payload())
        return task.model_copy(update={"signature": base64.b64encode(signature).decode()})


@pytest.fixture
def signer() -> Signer:
    return Signer()


def make_validator(clock, signer, fetcher=None, authority=None, settings=None, bus=None, **kwargs):
    cache = TieredCache(InMemoryProfileStore(), clock=clock, eviction_probability=0.0)
    validator = ConsensusValidator(
        NODE_ID,
        fetcher or FakeFetcher(ok(load_fixture("about_jack"))),
        cache,
        authority=authority if authority is not None else FakeAuthority(),
        verifier=verify_ed25519,
        public_key=signer.public_key,
        budget_store=kwargs.pop("budget_store", MemoryBudgetStore()),
        bus=bus,
        settings=settings,
        clock=clock,
        **kwargs,
    )
    return validator, cache


class TestSignatures:

    def test_verify_round_trip(self, signer):
        task = signer.task()
        assert verify_ed25519(task.signing_payload(), task.signature, signer.public_key)

    def test_tampered_payload_fails(self, signer):
        task = signer.task().model_copy(update={"username": "someoneelse"})
        assert not verify_ed25519(task.signing_payload(), task.signature, signer.public_key)

    def test_garbage_inputs_fail(self, signer):
        assert not verify_ed25519(b"data", "not base64!!", signer.public_key)
        assert not verify_ed25519(b"data", signer.task().signature, "AAAA")

    def test_payload_key_order(self, signer):
        payload = signer.task().signing_payload().decode()
        assert payload.startswith('{"taskId":"t1","username":"jack","timestamp":')
        assert '"selectedValidators":["node_test"],"authorityPublicKey":' in payload


class TestHandleTask:

    @pytest.mark.asyncio
    async def test_accepted_task_submits_and_caches(self, clock, signer):
        authority = FakeAuthority()
        validator, cache = make_validator(clock, signer, authority=authority)

        outcome = await validator.handle_task(signer.task())

        assert outcome == TaskOutcome.COMPLETED
        assert authority.submitted == [("t1", "jack")]
        cached = await cache.get("jack")
        assert cached.validated_by == NODE_ID
        assert cached.validated_at == NOW
        assert (await validator.budget()).remaining == 24

    @pytest.mark.asyncio
    async def test_disabled_by_settings(self, clock, signer):
        validator, _ = make_validator(
            clock, signer, settings=lambda: SettingsSnapshot(peer_validation_enabled=False)
        )
        assert await validator.handle_task(signer.task()) == TaskOutcome.DISABLED

    @pytest.mark.asyncio
    async def test_not_selected(self, clock, signer):
        validator, _ = make_validator(clock, signer)
        task = signer.task(validators=["node_other"])
        assert await validator.handle_task(task) == TaskOutcome.NOT_SELECTED

    @pytest.mark.asyncio
    async def test_expired(self, clock, signer):
        validator, _ = make_validator(clock, signer)
        task = signer.task(timestamp_ms=int((NOW - 301) * 1000))
        assert await validator.handle_task(task) == TaskOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_foreign_signature(self, clock, signer):
        validator, _ = make_validator(clock, signer)
        forged = Signer().task()
        assert await validator.handle_task(forged) == TaskOutcome.BAD_SIGNATURE
        assert (await validator.budget()).remaining == 25

    @pytest.mark.asyncio
    async def test_no_verifier_rejects_everything(self, clock, signer):
        validator, _ = make_validator(clock, signer)
        validator._verifier = None
        assert await validator.handle_task(signer.task()) == TaskOutcome.BAD_SIGNATURE

    @pytest.mark.asyncio
    async def test_budget_exhaustion_and_reset(self, clock, signer):
        validator, _ = make_validator(clock, signer, capacity=2)

        assert await validator.handle_task(signer.task(task_id="a")) == TaskOutcome.COMPLETED
        assert await validator.handle_task(signer.task(task_id="b")) == TaskOutcome.COMPLETED
        assert await validator.handle_task(signer.task(task_id="c")) == TaskOutcome.BUDGET_EXHAUSTED

        info = await validator.budget()
        assert info.remaining == 0
        assert info.seconds_until_reset == 3600

        clock.advance(3601)
        assert (await validator.budget()).remaining == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_still_consumes_budget(self, clock, signer):
        fetcher = FakeFetcher(RawFetchResult(status=429))
        authority = FakeAuthority()
        validator, cache = make_validator(clock, signer, fetcher=fetcher, authority=authority)

        assert await validator.handle_task(signer.task()) == TaskOutcome.FETCH_FAILED
        assert authority.submitted == []
        assert await cache.get("jack") is None
        assert (await validator.budget()).remaining == 24

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user", [
        {"about_profile": "oops"},
        {"about_profile": {"account_based_in": 12}},
        {"core": ["jack"]},
    ])
    async def test_wrong_typed_response_is_fetch_failure(self, clock, signer, user):
        body = {"data": {"user_result_by_screen_name": {"result": user}}}
        authority = FakeAuthority()
        validator, cache = make_validator(clock, signer, fetcher=FakeFetcher(ok(body)), authority=authority)

        assert await validator.handle_task(signer.task()) == TaskOutcome.FETCH_FAILED
        assert authority.submitted == []
        assert await cache.get("jack") is None

    @pytest.mark.asyncio
    async def test_unusable_budget_store_keeps_budget_in_memory(self, clock, signer, tmp_path):
        store = SQLiteBudgetStore(str(tmp_path / "missing" / "budget.db"))
        validator, _ = make_validator(clock, signer, budget_store=store, capacity=2)

        assert await validator.handle_task(signer.task(task_id="a")) == TaskOutcome.COMPLETED
        assert await validator.handle_task(signer.task(task_id="b")) == TaskOutcome.COMPLETED
        assert await validator.handle_task(signer.task(task_id="c")) == TaskOutcome.BUDGET_EXHAUSTED
        assert (await validator.budget()).remaining == 0

    @pytest.mark.asyncio
    async def test_budget_persists_in_sqlite(self, clock, signer, tmp_path):
        db_path = str(tmp_path / "budget.db")

        store = SQLiteBudgetStore(db_path)
        validator, _ = make_validator(clock, signer, budget_store=store)
        await validator.handle_task(signer.task())
        await store.close()

        reopened = SQLiteBudgetStore(db_path)
        validator, _ = make_validator(clock, signer, budget_store=reopened)
        assert (await validator.budget()).remaining == 24
        await reopened.close()

    @pytest.mark.asyncio
    async def test_node_id_persists_in_sqlite(self, tmp_path):
        db_path = str(tmp_path / "budget.db")
        store = SQLiteBudgetStore(db_path)
        assert await store.load_node_id() is None
        await store.save_node_id("node_abc")
        await store.close()

        reopened = SQLiteBudgetStore(db_path)
        assert await reopened.load_node_id() == "node_abc"
        await reopened.close()


class TestCrossCheck:

    @pytest.mark.asyncio
    async def test_agree(self, clock, signer):
        authority = FakeAuthority(reference=make_record("alice"))
        validator, _ = make_validator(clock, signer, authority=authority)
        assert await validator.cross_check("alice", make_record("alice")) == CrossCheck.AGREE

    @pytest.mark.asyncio
    async def test_disagree(self, clock, signer):
        authority = FakeAuthority(reference=make_record("alice"))
        validator, _ = make_validator(clock, signer, authority=authority)
        forged = make_record("alice", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert await validator.cross_check("alice", forged) == CrossCheck.DISAGREE

    @pytest.mark.asyncio
    async def test_unknown_without_reference(self, clock, signer):
        validator, _ = make_validator(clock, signer, authority=FakeAuthority(reference=None))
        assert await validator.cross_check("alice", make_record("alice")) == CrossCheck.UNKNOWN

    @pytest.mark.asyncio
    async def test_unknown_when_authority_fails(self, clock, signer):
        validator, _ = make_validator(clock, signer, authority=FakeAuthority(fail=True))
        assert await validator.cross_check("alice", make_record("alice")) == CrossCheck.UNKNOWN

    @pytest.mark.asyncio
    async def test_timeout_bounds_the_check(self, clock, signer):
        authority = FakeAuthority(reference=make_record("alice"), delay=5.0)
        validator, _ = make_validator(clock, signer, authority=authority, cross_check_timeout=0.05)
        assert await validator.cross_check("alice", make_record("alice")) == CrossCheck.UNKNOWN


class TestRefreshAndEvents:

    @pytest.mark.asyncio
    async def test_request_refresh(self, clock, signer):
        authority = FakeAuthority()
        validator, _ = make_validator(clock, signer, authority=authority)

        assert await validator.request_refresh("alice") is True
        assert authority.refresh_requests == ["alice"]

    @pytest.mark.asyncio
    async def test_request_refresh_failure(self, clock, signer):
        validator, _ = make_validator(clock, signer, authority=FakeAuthority(fail=True))
        assert await validator.request_refresh("alice") is False

    @pytest.mark.asyncio
    async def test_rate_limit_suggests_remote_fallback_when_sync_off(self, signer):
        bus = EventBus()
        suggestions = []
        bus.subscribe(RemoteFallbackSuggested, suggestions.append)
        make_validator(
            FakeClock(), signer, bus=bus,
            settings=lambda: SettingsSnapshot(remote_sync_enabled=False),
        )

        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()
        assert len(suggestions) == 1

    @pytest.mark.asyncio
    async def test_no_suggestion_when_sync_on(self, signer):
        bus = EventBus()
        suggestions = []
        bus.subscribe(RemoteFallbackSuggested, suggestions.append)
        validator, _ = make_validator(FakeClock(), signer, bus=bus)

        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()
        assert suggestions == []
        validator.close()

    @pytest.mark.asyncio
    async def test_closed_validator_stops_listening(self, signer):
        bus = EventBus()
        suggestions = []
        bus.subscribe(RemoteFallbackSuggested, suggestions.append)
        validator, _ = make_validator(
            FakeClock(), signer, bus=bus,
            settings=lambda: SettingsSnapshot(remote_sync_enabled=False),
        )
        validator.close()

        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()
        assert suggestions == []
