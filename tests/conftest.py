"""Shared test doubles - no network, no real time."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from xcred.core.fetcher import RawFetchResult
from xcred.models.profile import ProfileRecord

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# 2025-01-01T00:00:00Z
NOW = 1735689600.0


def load_fixture(name: str) -> dict:
    """Load a raw AboutAccountQuery response from fixtures."""
    json_path = FIXTURES_DIR / f"{name}.json"
    if not json_path.exists():
        pytest.skip(f"Fixture not found: {json_path}")
    return json.loads(json_path.read_text())


class FakeClock:
    """Epoch clock that only moves when told to, or when slept on."""

    def __init__(self, now: float = NOW):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeFetcher:
    """
    RawFetcher returning scripted results in order; the last one repeats.

    Items may be RawFetchResult instances or exceptions to raise.
    """

    def __init__(self, *results, clock: FakeClock | None = None):
        self.results = list(results)
        self.clock = clock
        self.calls: list[str] = []
        self.call_times: list[float] = []
        self.gate: asyncio.Event | None = None

    async def fetch_raw_profile(self, username: str) -> RawFetchResult:
        self.calls.append(username)
        if self.clock is not None:
            self.call_times.append(self.clock())
        if self.gate is not None:
            await self.gate.wait()

        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def ok(body: dict) -> RawFetchResult:
    return RawFetchResult(status=200, body=body)


def make_record(username: str = "alice", **overrides) -> ProfileRecord:
    """A valid, scoreable record: US account on the US App Store since 2015."""
    fields = {
        "username": username,
        "location": "United States",
        "location_country": "US",
        "account_based_in": "United States",
        "connected_via": "United States App Store",
        "created_at": datetime(2015, 6, 1, tzinfo=timezone.utc),
        "is_blue_verified": True,
        "verified": True,
    }
    fields.update(overrides)
    return ProfileRecord(**fields)


def empty_record(username: str = "ghost") -> ProfileRecord:
    """What a silently failed fetch looks like."""
    return ProfileRecord(username=username)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo global structlog configuration bound to a since-closed capture stream."""
    import structlog

    yield
    structlog.reset_defaults()
