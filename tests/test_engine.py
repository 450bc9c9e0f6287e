"""Tests for ProfileEngine wiring - memory backend, scripted fetcher."""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeFetcher, load_fixture, make_record, ok
from test_tiered_cache import FakeRemote
from xcred import EngineConfig, ProfileEngine
from xcred.config import SettingsSnapshot, StoreBackend
from xcred.consensus import CrossCheck, TaskOutcome
from xcred.core.fetcher import RawFetchResult
from xcred.exceptions import AuthorityError, ConfigError
from xcred.models.task import ValidationTask


def make_config(**overrides) -> EngineConfig:
    fields = {
        "store_backend": StoreBackend.MEMORY,
        "sweep_interval_seconds": 0,
        "heartbeat_interval_seconds": 0,
        "remote_url": None,
        "bearer_token": None,
        "csrf_token": None,
    }
    fields.update(overrides)
    return EngineConfig(**fields)


class NullAuthority:
    """Authority that is never reachable."""

    async def fetch_public_key(self):
        raise AuthorityError("offline")

    async def register(self, node_id):
        raise AuthorityError("offline")

    async def heartbeat(self, node_id):
        return False

    async def request_validation(self, username, requester_id):
        raise AuthorityError("offline")

    async def validated_profile(self, username):
        raise AuthorityError("offline")

    async def close(self):
        pass


class RecordingAuthority(NullAuthority):
    """Reachable authority that remembers what this node told it."""

    def __init__(self, reference=None):
        self.reference = reference
        self.registered: list[str] = []
        self.heartbeats: list[str] = []
        self.refresh_requests: list[tuple[str, str]] = []

    async def register(self, node_id):
        self.registered.append(node_id)
        return {"validator": {"reputation": 100}}

    async def heartbeat(self, node_id):
        self.heartbeats.append(node_id)
        return True

    async def request_validation(self, username, requester_id):
        self.refresh_requests.append((username, requester_id))
        return {"queued": True}

    async def validated_profile(self, username):
        return self.reference


def make_engine(fetcher=None, clock=None, authority=None, **config) -> ProfileEngine:
    kwargs = {}
    if clock is not None:
        kwargs.update(clock=clock, sleep=clock.sleep)
    if authority is None and fetcher is not None:
        authority = NullAuthority()
    return ProfileEngine(
        make_config(**config),
        fetcher=fetcher,
        authority=authority,
        **kwargs,
    )


class TestLookup:

    @pytest.mark.asyncio
    async def test_fetches_then_serves_from_memory(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock) as engine:
            first = await engine.lookup("@Jack")
            second = await engine.lookup("jack")

        assert first.username == "jack"
        assert first.tier == 1
        assert first.cache_source == "fetch"
        assert second.cache_source == "memory"
        assert fetcher.calls == ["jack"]

    @pytest.mark.asyncio
    async def test_force_refresh_refetches(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock) as engine:
            await engine.lookup("jack")
            record = await engine.lookup("jack", force_refresh=True)

        assert record.cache_source == "fetch"
        assert fetcher.calls == ["jack", "jack"]

    @pytest.mark.asyncio
    async def test_failed_fetch_returns_error_record(self, clock):
        fetcher = FakeFetcher(RawFetchResult(status=500), clock=clock)

        async with make_engine(fetcher, clock) as engine:
            record = await engine.lookup("broken")
            stats = await engine.stats()

        assert record.error is True
        assert stats.entries == 1

    @pytest.mark.asyncio
    async def test_lookup_many_keeps_input_order(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock) as engine:
            await engine.cache.put("alice", make_record("alice"))
            records = await engine.lookup_many(["alice", "jack"])

        assert [r.username for r in records] == ["alice", "jack"]
        assert fetcher.calls == ["jack"]


class TestCacheOnlyMode:

    @pytest.mark.asyncio
    async def test_without_credentials_nothing_is_fetched(self):
        async with make_engine() as engine:
            assert engine.pipeline is None
            assert engine.validator is None
            assert await engine.lookup("jack") is None
            assert await engine.budget() is None

    @pytest.mark.asyncio
    async def test_serves_cached_records(self):
        async with make_engine() as engine:
            await engine.cache.put("alice", make_record("alice"))
            record = await engine.lookup("alice")

        assert record.username == "alice"
        assert record.tier is not None

    @pytest.mark.asyncio
    async def test_tasks_are_disabled(self):
        task = ValidationTask(task_id="t1", username="jack", timestamp=0, signature="x")

        async with make_engine() as engine:
            assert await engine.handle_task(task) == TaskOutcome.DISABLED


class TestCacheManagement:

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self):
        async with make_engine() as engine:
            await engine.cache.put("alice", make_record("alice"))
            await engine.cache.put("bob", make_record("bob"))

            await engine.invalidate_cache("@Alice")
            assert await engine.lookup("alice") is None
            assert await engine.lookup("bob") is not None

            await engine.clear_cache()
            assert (await engine.stats()).entries == 0

    @pytest.mark.asyncio
    async def test_validator_gets_persistent_node_id(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock, node_id="node_fixed") as engine:
            assert engine.validator.node_id == "node_fixed"
            info = await engine.budget()

        assert info.remaining == 25
        assert info.capacity == 25

    @pytest.mark.asyncio
    async def test_unreachable_authority_rejects_unsigned_tasks(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)
        task = ValidationTask(
            task_id="t1",
            username="jack",
            timestamp=int(clock() * 1000),
            selected_validators=["node_fixed"],
            signature="x",
        )

        async with make_engine(fetcher, clock, node_id="node_fixed") as engine:
            outcome = await engine.handle_task(task)

        assert outcome == TaskOutcome.BAD_SIGNATURE
        assert fetcher.calls == []


class TestConfiguration:

    @pytest.mark.asyncio
    async def test_remote_url_requires_api_key(self):
        engine = make_engine(remote_url="https://project.example.co", remote_api_key=None)

        with pytest.raises(ConfigError):
            await engine.__aenter__()


class TestValidatorPresence:

    @pytest.mark.asyncio
    async def test_registers_then_heartbeats(self, clock):
        authority = RecordingAuthority()
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(
            fetcher, clock, authority=authority, node_id="node_fixed", heartbeat_interval_seconds=60
        ):
            assert authority.registered == ["node_fixed"]
            for _ in range(10):
                if authority.heartbeats:
                    break
                await asyncio.sleep(0)

        assert authority.heartbeats == ["node_fixed"]

    @pytest.mark.asyncio
    async def test_unreachable_authority_does_not_block_startup(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock, heartbeat_interval_seconds=60) as engine:
            record = await engine.lookup("jack")

        assert record.tier == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("config", [
        {"heartbeat_interval_seconds": 0},
        {"heartbeat_interval_seconds": 60, "peer_validation_enabled": False},
    ])
    async def test_presence_disabled(self, clock, config):
        authority = RecordingAuthority()
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock, authority=authority, **config):
            await asyncio.sleep(0)

        assert authority.registered == []
        assert authority.heartbeats == []


class TestAuthorityOperations:

    @pytest.mark.asyncio
    async def test_request_refresh(self, clock):
        authority = RecordingAuthority()
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock, authority=authority, node_id="node_fixed") as engine:
            assert await engine.request_refresh("@Jack") is True

        assert authority.refresh_requests == [("jack", "node_fixed")]

    @pytest.mark.asyncio
    async def test_request_refresh_unreachable(self, clock):
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock) as engine:
            assert await engine.request_refresh("jack") is False

    @pytest.mark.asyncio
    async def test_authority_operations_in_cache_only_mode(self):
        async with make_engine() as engine:
            await engine.cache.put("alice", make_record("alice"))

            assert await engine.request_refresh("alice") is False
            assert await engine.cross_check("alice") == CrossCheck.UNKNOWN

    @pytest.mark.asyncio
    async def test_cross_check_cached_record(self, clock):
        authority = RecordingAuthority(reference=make_record("alice"))
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock, authority=authority) as engine:
            await engine.cache.put("alice", make_record("alice"))

            assert await engine.cross_check("@alice") == CrossCheck.AGREE
            assert await engine.cross_check("nobody") == CrossCheck.UNKNOWN

    @pytest.mark.asyncio
    async def test_cross_check_disagreement(self, clock):
        reference = make_record("alice", created_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        authority = RecordingAuthority(reference=reference)
        fetcher = FakeFetcher(ok(load_fixture("about_jack")), clock=clock)

        async with make_engine(fetcher, clock, authority=authority) as engine:
            await engine.cache.put("alice", make_record("alice"))

            assert await engine.cross_check("alice") == CrossCheck.DISAGREE

    @pytest.mark.asyncio
    async def test_sync_to_remote(self, clock):
        remote = FakeRemote()
        flag = {"on": False}
        engine = ProfileEngine(
            make_config(),
            remote=remote,
            settings=lambda: SettingsSnapshot(remote_sync_enabled=flag["on"]),
            clock=clock,
        )

        async with engine:
            await engine.cache.put("alice", make_record("alice"))
            await engine.cache.put("bob", make_record("bob"))
            assert remote.rows == {}

            flag["on"] = True
            assert await engine.sync_to_remote() == 2

        assert sorted(remote.rows) == ["alice", "bob"]
