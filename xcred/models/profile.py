"""Profile record model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

Tier = int | Literal["government"]

PLATFORM_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


class Party(str, Enum):
    """Party affiliation derived from a government account's affiliate handle."""
    DEMOCRAT = "democrat"
    REPUBLICAN = "republican"
    OTHER = "other"


class CacheSource(str, Enum):
    """Where a returned record came from."""
    MEMORY = "memory"
    PERSISTENT = "persistent"
    REMOTE = "remote"
    FETCH = "fetch"


def parse_created_at(value: str | None) -> datetime | None:
    """
    Parse an account creation date.

    Examples:
        "2018-10-10T20:19:24.000Z" -> datetime(2018, 10, 10, 20, 19, 24, tz=UTC)
        "Wed Oct 10 20:19:24 +0000 2018" -> datetime(2018, 10, 10, 20, 19, 24, tz=UTC)
    """
    if not value:
        return None

    value = value.strip()
    try:
        parsed = datetime.strptime(value, PLATFORM_DATE_FORMAT)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ProfileRecord(BaseModel):
    """Canonical unit of cached knowledge about one account."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    username: str
    location: str | None = None
    location_country: str | None = None
    account_based_in: str | None = None
    connected_via: str | None = None
    vpn_detected: bool = False
    location_accurate: bool = True
    username_changes: int = 0
    verified: bool = False
    is_blue_verified: bool = False
    is_business_verified: bool = False
    is_government_verified: bool = False
    verified_type: str | None = None
    party: Party | None = None
    affiliate_username: str | None = None
    display_name: str | None = None
    screen_name: str | None = None
    created_at: datetime | None = None
    tier: Tier | None = None
    error: bool = False
    rate_limited: bool = False

    # Cache bookkeeping
    timestamp: float | None = None
    last_accessed: float | None = None
    cache_source: CacheSource | None = None

    # Consensus provenance
    validated_by: str | None = None
    validated_at: float | None = None

    @field_validator("username", mode="before")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        return str(value).lstrip("@").lower()

    @field_validator("username_changes", mode="before")
    @classmethod
    def _non_negative_changes(cls, value) -> int:
        try:
            count = int(value or 0)
        except (TypeError, ValueError):
            return 0
        return max(count, 0)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value):
        if isinstance(value, str):
            return parse_created_at(value)
        return value

    @field_validator("tier", mode="before")
    @classmethod
    def _coerce_tier(cls, value):
        # Remote rows carry the tier as text ("3" or "government")
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return value

    def is_valid(self) -> bool:
        """
        True when the record holds real data from a successful fetch.

        A record with no creation date, no connection origin, no location,
        no government flag and no tier is what a silently failed fetch
        looks like.
        """
        return bool(
            self.created_at
            or self.connected_via
            or self.account_based_in
            or self.is_government_verified
            or self.tier is not None
        )

    def is_cacheable(self) -> bool:
        """Valid records, and acknowledged error records, may be stored."""
        return self.error or self.is_valid()

    def has_location_data(self) -> bool:
        return bool(self.location_country or self.account_based_in or self.connected_via)

    def persisted(self) -> dict:
        """Serializable form without transient fields."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"rate_limited", "cache_source"},
        )

    @classmethod
    def error_record(cls, username: str) -> "ProfileRecord":
        """Placeholder cached after a hard fetch failure."""
        return cls(username=username, error=True)
