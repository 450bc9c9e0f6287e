"""Deterministic multi-factor credibility scoring."""

import time
from collections.abc import Callable
from dataclasses import dataclass

from xcred.geo import resolve
from xcred.models.profile import Party, ProfileRecord, Tier
from xcred.models.score import CredibilityScore, FactorKind, Platform, ScoreFactor

GOVERNMENT_TIER = "government"
NO_DATA_TIER = 6
OVERRIDE_TIER = 5

SECONDS_PER_YEAR = 365.25 * 24 * 60 * 60

DEMOCRAT_AFFILIATES = (
    "housedems", "housedemocrats", "senatedems", "senatedemocrats", "democrats", "thedemocrats",
)
REPUBLICAN_AFFILIATES = (
    "housegop", "houserepublicans", "senategop", "senaterepublicans", "republicans", "gop",
)

# Allied intelligence corridor, lower-risk VPN context
FIVE_EYES_COUNTRIES = frozenset({"US", "GB", "CA", "AU", "NZ"})

ADVERSARY_COUNTRIES = frozenset({"RU", "CN", "IR", "KP"})
ADVERSARY_KEYWORDS = ("russia", "china", "iran", "north korea")

BOT_FARM_COUNTRIES = frozenset({"IN", "BD", "PK", "PH", "NG", "VN", "ID", "EG"})

REGION_RISK = {
    "south asia": "high",
    "eastern europe": "high",
    "southeast asia": "medium",
    "middle east": "medium",
    "africa": "medium",
    "north america": "low",
    "western europe": "low",
    "europe": "low",
    "oceania": "low",
    "australia": "low",
    "latin america": "neutral",
    "south america": "neutral",
    "east asia": "neutral",
    "asia": "neutral",
    "asia pacific": "neutral",
}

NEIGHBORING_COUNTRIES = {
    "US": ("CA", "MX"),
    "CA": ("US",),
    "MX": ("US", "GT", "BZ"),
    "GB": ("IE",),
    "IE": ("GB",),
    "DE": ("AT", "CH", "FR", "PL", "NL", "BE", "CZ", "DK"),
    "FR": ("DE", "ES", "IT", "CH", "BE"),
    "ES": ("PT", "FR"),
    "PT": ("ES",),
    "IT": ("FR", "CH", "AT"),
    "CH": ("DE", "FR", "IT", "AT"),
    "AT": ("DE", "CH", "IT", "HU", "CZ"),
    "PL": ("DE", "CZ", "UA"),
    "UA": ("PL", "RO", "HU"),
    "RU": ("UA", "BY", "KZ"),
    "CN": ("HK", "TW", "KR", "JP", "VN"),
    "HK": ("CN",),
    "TW": ("CN",),
    "JP": ("KR",),
    "KR": ("JP",),
    "AU": ("NZ",),
    "NZ": ("AU",),
}

# (minimum score, tier), checked top down
SCORE_TIERS = ((6, 1), (4, 2), (2, 3), (0, 4))


def platform_for(connected_via: str | None) -> Platform:
    """
    Platform from a connected-via string.

    Examples:
        "United States App Store" -> Platform.IOS
        "Android App" -> Platform.ANDROID
        "Web" -> Platform.WEB
    """
    if not connected_via:
        return Platform.WEB
    lower = connected_via.lower()
    if "app store" in lower:
        return Platform.IOS
    if "android" in lower:
        return Platform.ANDROID
    return Platform.WEB


def tier_for_score(score: int) -> int:
    for minimum, tier in SCORE_TIERS:
        if score >= minimum:
            return tier
    return 5


def detect_party(affiliate_username: str | None) -> Party | None:
    """Party from a government affiliate handle, e.g. "HouseDemocrats" -> democrat."""
    if not affiliate_username:
        return None

    affiliate = affiliate_username.lower()
    if any(keyword in affiliate for keyword in DEMOCRAT_AFFILIATES):
        return Party.DEMOCRAT
    if any(keyword in affiliate for keyword in REPUBLICAN_AFFILIATES):
        return Party.REPUBLICAN
    return Party.OTHER


def region_risk(location: str | None) -> str | None:
    if not location:
        return None
    return REGION_RISK.get(location.lower().strip())


def is_neighbor(country: str | None, other: str | None) -> bool:
    if not country or not other:
        return False
    return other in NEIGHBORING_COUNTRIES.get(country, ())


def is_adversary_origin(country: str | None, account_based_in: str | None) -> bool:
    if country in ADVERSARY_COUNTRIES:
        return True
    if account_based_in:
        lower = account_based_in.lower()
        return any(keyword in lower for keyword in ADVERSARY_KEYWORDS)
    return False


def is_bot_farm_origin(country: str | None, account_based_in: str | None) -> bool:
    if country in BOT_FARM_COUNTRIES:
        return True
    return region_risk(account_based_in) == "high"


@dataclass
class _Signals:
    """Booleans derived before scoring; later rules depend on them."""

    platform: Platform
    account_country: str | None
    app_store_country: str | None
    location_match: bool
    neighbor: bool
    both_five_eyes: bool
    adversary: bool
    bot_farm: bool
    regional_mismatch: bool
    account_risk: str | None
    app_store_risk: str | None


class CredibilityScorer:
    """
    Computes a numeric credibility score and tier from a profile record.

    Example:
        scorer = CredibilityScorer()
        breakdown = scorer.score(record)
        tier = scorer.tier(record)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Args:
            clock: Epoch-seconds source used for account age
        """
        self._clock = clock

    def account_age_years(self, record: ProfileRecord) -> float:
        if record.created_at is None:
            return 0.0
        age_seconds = self._clock() - record.created_at.timestamp()
        return max(0.0, age_seconds / SECONDS_PER_YEAR)

    def _signals(self, record: ProfileRecord) -> _Signals:
        connected_via = record.connected_via or ""
        account_based_in = record.account_based_in or ""
        platform = platform_for(connected_via)
        account_country = record.location_country
        app_store_country = resolve(connected_via)

        location_match = bool(
            account_country and app_store_country and account_country == app_store_country
        )
        account_risk = region_risk(account_based_in)
        app_store_risk = region_risk(connected_via)
        regional_mismatch = account_risk in ("high", "medium") and app_store_risk == "low"

        return _Signals(
            platform=platform,
            account_country=account_country,
            app_store_country=app_store_country,
            location_match=location_match,
            neighbor=is_neighbor(account_country, app_store_country),
            both_five_eyes=(
                account_country in FIVE_EYES_COUNTRIES and app_store_country in FIVE_EYES_COUNTRIES
            ),
            adversary=is_adversary_origin(account_country, account_based_in),
            bot_farm=is_bot_farm_origin(account_country, account_based_in),
            regional_mismatch=regional_mismatch,
            account_risk=account_risk,
            app_store_risk=app_store_risk,
        )

    def score(self, record: ProfileRecord) -> CredibilityScore:
        """
        Score breakdown for a record.

        Returns:
            CredibilityScore with the additive total, every contributing
            factor, and the instant tier override if one applies
        """
        signals = self._signals(record)
        platform = signals.platform
        has_vpn = record.vpn_detected
        age = self.account_age_years(record)
        factors: list[ScoreFactor] = []
        instant_tier = None

        def add(name: str, value: int, note: str | None = None) -> None:
            if value > 0:
                kind = FactorKind.BONUS
            elif value < 0:
                kind = FactorKind.PENALTY
            else:
                kind = FactorKind.NEUTRAL
            factors.append(ScoreFactor(name=name, value=value, kind=kind, note=note))

        if signals.adversary and platform in (Platform.ANDROID, Platform.WEB) and has_vpn:
            instant_tier = OVERRIDE_TIER
            factors.append(ScoreFactor(
                name="Adversary origin + Android/Web + VPN",
                value=0,
                kind=FactorKind.CRITICAL,
                note=f"tier fixed at {OVERRIDE_TIER}",
            ))

        # Platform base trust
        if platform == Platform.IOS:
            add("iOS platform", 1)
        elif platform == Platform.WEB:
            add("Web platform", -1)

        # Location match
        if signals.location_match:
            bonus = {Platform.IOS: 3, Platform.ANDROID: 2, Platform.WEB: 1}[platform]
            add(f"{platform.value} + geo match", bonus)
        elif signals.neighbor and not has_vpn:
            add("Neighbor country (no VPN)", 1)

        # Verification
        if record.is_business_verified:
            add("Business verified", 3)
        elif record.is_blue_verified:
            add("Blue verified", 2)

        # Account age
        if age >= 5:
            add("Account 5yr+", 3)
        elif age >= 3:
            add("Account 3-5yr", 2)
        elif age >= 1:
            add("Account 1-3yr", 1)

        # VPN, context sensitive
        if has_vpn:
            if signals.location_match and platform == Platform.IOS:
                add("VPN (iOS + geo match)", -1)
            elif signals.both_five_eyes:
                add("VPN (Five Eyes corridor)", -1)
            elif platform == Platform.IOS:
                add("VPN (iOS + mismatch)", -2)
            elif signals.bot_farm:
                add("VPN (bot farm + Android/Web)", -4)
            else:
                add("VPN (Android/Web + mismatch)", -3)

        # Geo mismatch without VPN
        if not has_vpn and not signals.location_match and signals.app_store_country:
            if platform == Platform.IOS:
                add("Geo mismatch (iOS, no VPN)", 0, note="likely expat or traveler")
            elif platform == Platform.ANDROID:
                add("Geo mismatch (Android, no VPN)", -1)
            else:
                add("Geo mismatch (Web, no VPN)", -2)

        # Counted on top of the country-level mismatch
        if signals.regional_mismatch:
            add(f"Regional mismatch ({signals.account_risk} -> {signals.app_store_risk})", -2)

        changes = record.username_changes
        if changes >= 10:
            add(f"{changes} username changes", -3)
        elif changes >= 6:
            add(f"{changes} username changes", -2)
        elif changes >= 3:
            add(f"{changes} username changes", -1)

        return CredibilityScore(
            total=sum(factor.value for factor in factors),
            factors=factors,
            instant_tier_override=instant_tier,
            account_age_years=age,
            platform=platform,
        )

    def tier(self, record: ProfileRecord) -> Tier:
        """
        Credibility tier: 1 (highest) to 5, 6 for no data, or "government".
        """
        if record.is_government_verified:
            return GOVERNMENT_TIER

        if not record.has_location_data():
            return NO_DATA_TIER

        breakdown = self.score(record)
        if breakdown.instant_tier_override is not None:
            return breakdown.instant_tier_override

        return tier_for_score(breakdown.total)

    def rescore(self, record: ProfileRecord) -> ProfileRecord:
        """Copy of the record with its tier recomputed."""
        return record.model_copy(update={"tier": self.tier(record)})
