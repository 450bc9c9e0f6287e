"""Remote shared profile store."""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from xcred.exceptions import RemoteStoreError
from xcred.logging import get_logger
from xcred.models.profile import CacheSource, ProfileRecord

CHECK_CONSTRAINT_MARKER = "violates check constraint"


class RemoteStore(ABC):
    """Eventually-consistent shared store keyed by username."""

    @abstractmethod
    async def get(self, username: str) -> ProfileRecord | None:
        """
        Point lookup.

        Raises:
            RemoteStoreError: If the store is unreachable
        """
        ...

    @abstractmethod
    async def upsert(self, username: str, record: ProfileRecord) -> bool:
        """
        Insert or merge a record.

        Returns:
            False if the store rejected the data as invalid
        """
        ...

    @abstractmethod
    async def upsert_many(self, records: list[ProfileRecord]) -> bool:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    async def close(self) -> None:
        pass


def profile_to_row(username: str, record: ProfileRecord) -> dict[str, Any]:
    """Column mapping with every field present so batch upserts share one shape."""
    return {
        "username": username.lower(),
        "location": record.location,
        "location_country": record.location_country,
        "account_based_in": record.account_based_in,
        "connected_via": record.connected_via,
        "vpn_detected": record.vpn_detected,
        "location_accurate": record.location_accurate,
        "tier": str(record.tier) if record.tier is not None else None,
        "username_changes": record.username_changes,
        "verified": record.verified,
        "is_blue_verified": record.is_blue_verified,
        "is_business_verified": record.is_business_verified,
        "is_government_verified": record.is_government_verified,
        "verified_type": record.verified_type,
        "party": record.party,
        "affiliate_username": record.affiliate_username,
        "display_name": record.display_name or username,
        "screen_name": record.screen_name or username,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "cached_at": datetime.now(timezone.utc).isoformat(),
    }


def row_to_profile(row: dict[str, Any]) -> ProfileRecord:
    cached_at = _parse_timestamp(row.get("cached_at"))
    return ProfileRecord(
        username=row["username"],
        location=row.get("location"),
        location_country=row.get("location_country"),
        account_based_in=row.get("account_based_in"),
        connected_via=row.get("connected_via"),
        vpn_detected=bool(row.get("vpn_detected")),
        location_accurate=row.get("location_accurate") is not False,
        tier=row.get("tier"),
        username_changes=row.get("username_changes") or 0,
        verified=bool(row.get("verified")),
        is_blue_verified=bool(row.get("is_blue_verified")),
        is_business_verified=bool(row.get("is_business_verified")),
        is_government_verified=bool(row.get("is_government_verified")),
        verified_type=row.get("verified_type"),
        party=row.get("party"),
        affiliate_username=row.get("affiliate_username"),
        display_name=row.get("display_name"),
        screen_name=row.get("screen_name"),
        created_at=row.get("created_at"),
        timestamp=cached_at,
        cache_source=CacheSource.REMOTE,
    )


def _parse_timestamp(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class RestRemoteStore(RemoteStore):
    """
    PostgREST-style client for the shared ``profiles`` table.

    Example:
        async with RestRemoteStore(url, api_key) as remote:
            record = await remote.get("jack")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        ttl_seconds: int = 7 * 24 * 60 * 60,
        timeout: float = 10.0,
        table: str = "profiles",
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            base_url: Project URL, e.g. https://abc.supabase.co
            api_key: Publishable key sent as ``apikey`` and bearer token
            ttl_seconds: Rows older than this are treated as misses
            timeout: Request timeout in seconds
            table: Table name under /rest/v1
            client: Optional preconfigured client (used in tests)
            clock: Epoch-seconds source for the TTL check
        """
        self.base_url = base_url.rstrip("/")
        self.ttl_seconds = ttl_seconds
        self.table = table
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock
        self._log = get_logger("remote_store")

    @property
    def _table_url(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    async def _request(self, method: str, **kwargs) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            return await self._client.request(method, self._table_url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Remote store unreachable: {e}") from e

    async def get(self, username: str) -> ProfileRecord | None:
        response = await self._request(
            "GET", params={"username": f"eq.{username.lower()}", "select": "*"}
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise RemoteStoreError(f"Remote lookup failed: HTTP {response.status_code}")

        try:
            rows = response.json()
        except ValueError as e:
            raise RemoteStoreError(f"Remote lookup returned invalid JSON: {e}") from e
        if not isinstance(rows, list):
            raise RemoteStoreError("Remote lookup did not return a row list")
        if not rows:
            return None

        try:
            record = row_to_profile(rows[0])
        except (ValidationError, KeyError, TypeError, AttributeError) as e:
            raise RemoteStoreError(f"Remote row for @{username} is invalid: {e}") from e
        if record.timestamp is not None and self._clock() - record.timestamp > self.ttl_seconds:
            return None
        return record

    async def _post_rows(self, payload: Any) -> bool:
        response = await self._request(
            "POST",
            params={"on_conflict": "username"},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            json=payload,
        )
        if response.is_success:
            return True
        if response.status_code == 400 and CHECK_CONSTRAINT_MARKER in response.text:
            self._log.warning("remote_rejected_invalid_data", detail=response.text[:200])
            return False
        raise RemoteStoreError(f"Remote upsert failed: HTTP {response.status_code}")

    async def upsert(self, username: str, record: ProfileRecord) -> bool:
        return await self._post_rows(profile_to_row(username, record))

    async def upsert_many(self, records: list[ProfileRecord]) -> bool:
        if not records:
            return True
        return await self._post_rows([profile_to_row(r.username, r) for r in records])

    async def count(self) -> int:
        response = await self._request(
            "HEAD",
            params={"select": "username"},
            headers={"Prefer": "count=exact"},
        )
        if not response.is_success:
            raise RemoteStoreError(f"Remote count failed: HTTP {response.status_code}")

        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.partition("/")
        try:
            return int(total)
        except ValueError:
            return 0

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RestRemoteStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
