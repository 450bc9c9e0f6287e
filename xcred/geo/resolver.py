"""Freeform location text to ISO country or region code."""

import re
from dataclasses import dataclass

# Region codes live in their own namespace so "R-SA" (South America)
# can never be mistaken for "SA" (Saudi Arabia).
REGION_PREFIX = "R-"

GLOBE_EMOJI = "\U0001F310"
FLAG_CDN_BASE = "https://purecatamphetamine.github.io/country-flag-icons/3x2"

_REGIONAL_INDICATOR_OFFSET = 0x1F1E6 - ord("A")


@dataclass(frozen=True)
class Region:
    """A multi-country area the platform reports instead of a country."""

    code: str
    name: str
    emoji: str


# Ordered most specific first: "asia pacific" must win over "asia".
REGIONS: dict[str, Region] = {
    "north america": Region(f"{REGION_PREFIX}NA", "North America", "\U0001F30E"),
    "south america": Region(f"{REGION_PREFIX}SA", "South America", "\U0001F30E"),
    "latin america": Region(f"{REGION_PREFIX}LA", "Latin America", "\U0001F30E"),
    "eastern europe": Region(f"{REGION_PREFIX}EE", "Eastern Europe", "\U0001F30D"),
    "western europe": Region(f"{REGION_PREFIX}WE", "Western Europe", "\U0001F30D"),
    "europe": Region(f"{REGION_PREFIX}EU", "Europe", "\U0001F30D"),
    "middle east": Region(f"{REGION_PREFIX}ME", "Middle East", "\U0001F30D"),
    "africa": Region(f"{REGION_PREFIX}AF", "Africa", "\U0001F30D"),
    "asia pacific": Region(f"{REGION_PREFIX}AP", "Asia Pacific", "\U0001F30F"),
    "southeast asia": Region(f"{REGION_PREFIX}SE", "Southeast Asia", "\U0001F30F"),
    "south asia": Region(f"{REGION_PREFIX}SS", "South Asia", "\U0001F30F"),
    "east asia": Region(f"{REGION_PREFIX}EA", "East Asia", "\U0001F30F"),
    "asia": Region(f"{REGION_PREFIX}AS", "Asia", "\U0001F30F"),
    "oceania": Region(f"{REGION_PREFIX}OC", "Oceania", "\U0001F30F"),
}

_REGIONS_BY_CODE = {region.code: region for region in REGIONS.values()}

COUNTRY_ALIASES: dict[str, str] = {
    # North America
    "united states": "US",
    "usa": "US",
    "america": "US",
    "canada": "CA",
    "mexico": "MX",
    # Europe
    "united kingdom": "GB",
    "uk": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "germany": "DE",
    "france": "FR",
    "italy": "IT",
    "spain": "ES",
    "portugal": "PT",
    "netherlands": "NL",
    "holland": "NL",
    "belgium": "BE",
    "switzerland": "CH",
    "austria": "AT",
    "poland": "PL",
    "sweden": "SE",
    "norway": "NO",
    "denmark": "DK",
    "finland": "FI",
    "ireland": "IE",
    "greece": "GR",
    "czech republic": "CZ",
    "czechia": "CZ",
    "romania": "RO",
    "hungary": "HU",
    "ukraine": "UA",
    "russia": "RU",
    "russian federation": "RU",
    # Asia
    "china": "CN",
    "japan": "JP",
    "south korea": "KR",
    "korea": "KR",
    "india": "IN",
    "indonesia": "ID",
    "thailand": "TH",
    "vietnam": "VN",
    "philippines": "PH",
    "malaysia": "MY",
    "singapore": "SG",
    "pakistan": "PK",
    "bangladesh": "BD",
    "taiwan": "TW",
    "hong kong": "HK",
    # Middle East
    "israel": "IL",
    "saudi arabia": "SA",
    "united arab emirates": "AE",
    "uae": "AE",
    "turkey": "TR",
    "türkiye": "TR",
    "iran": "IR",
    "islamic republic of iran": "IR",
    "iraq": "IQ",
    "egypt": "EG",
    "qatar": "QA",
    "kuwait": "KW",
    "bahrain": "BH",
    "oman": "OM",
    "jordan": "JO",
    "lebanon": "LB",
    "syria": "SY",
    "yemen": "YE",
    # Oceania
    "australia": "AU",
    "new zealand": "NZ",
    # South America
    "brazil": "BR",
    "argentina": "AR",
    "colombia": "CO",
    "chile": "CL",
    "peru": "PE",
    "venezuela": "VE",
    # Africa
    "south africa": "ZA",
    "nigeria": "NG",
    "kenya": "KE",
    "morocco": "MA",
    "ethiopia": "ET",
    "ghana": "GH",
    "algeria": "DZ",
    "tunisia": "TN",
    "libya": "LY",
    # Eastern Europe & Central Asia
    "belarus": "BY",
    "kazakhstan": "KZ",
    "uzbekistan": "UZ",
    "georgia": "GE",
    "armenia": "AM",
    "azerbaijan": "AZ",
    "moldova": "MD",
    "serbia": "RS",
    "croatia": "HR",
    "bulgaria": "BG",
    "slovakia": "SK",
    "slovenia": "SI",
    "lithuania": "LT",
    "latvia": "LV",
    "estonia": "EE",
    # Additional
    "north korea": "KP",
    "democratic people's republic of korea": "KP",
    "republic of korea": "KR",
}

_KNOWN_CODES = frozenset(COUNTRY_ALIASES.values())

# Country names that embed a region name ("south africa" holds "africa")
_REGION_SHADOWING_COUNTRIES = tuple(
    alias for alias in COUNTRY_ALIASES if any(name in alias for name in REGIONS)
)

_TRAILING_CODE = re.compile(r"\b([a-z]{2})\s*$")


def resolve(location: str | None) -> str | None:
    """
    Map a location string to an ISO country code or a region code.

    Examples:
        "New York, USA" -> "US"
        "North America" -> "R-NA"
        "United States App Store" -> "US"
        "Berlin, DE" -> "DE"

    Args:
        location: Freeform location text

    Returns:
        Country code, region code, or None if unrecognised
    """
    if not location:
        return None

    normalized = location.lower().strip()
    if not normalized:
        return None

    shadowed = [alias for alias in _REGION_SHADOWING_COUNTRIES if alias in normalized]
    for name, region in REGIONS.items():
        if any(name in alias for alias in shadowed):
            continue
        if normalized == name or name in normalized:
            return region.code

    for name, code in COUNTRY_ALIASES.items():
        if normalized == name or normalized.endswith(f", {name}") or normalized.endswith(f" {name}"):
            return code

    for name, code in COUNTRY_ALIASES.items():
        if name in normalized:
            return code

    match = _TRAILING_CODE.search(normalized)
    if match:
        candidate = match.group(1).upper()
        if candidate in _KNOWN_CODES:
            return candidate

    return None


def is_region_code(code: str | None) -> bool:
    """True for codes produced from a region alias."""
    return bool(code) and code.startswith(REGION_PREFIX)


def region_for_code(code: str | None) -> Region | None:
    if not code:
        return None
    return _REGIONS_BY_CODE.get(code)


def known_country_codes() -> frozenset[str]:
    return _KNOWN_CODES


def _is_country_code(code: str) -> bool:
    return len(code) == 2 and code.isascii() and code.isalpha()


def flag_emoji(code: str | None) -> str:
    """Flag emoji for a country, region globe for a region, plain globe otherwise."""
    if not code:
        return GLOBE_EMOJI

    region = region_for_code(code)
    if region:
        return region.emoji

    code = code.upper()
    if not _is_country_code(code):
        return GLOBE_EMOJI

    return "".join(chr(ord(char) + _REGIONAL_INDICATOR_OFFSET) for char in code)


def flag_url(code: str | None) -> str | None:
    """SVG flag URL for a country code, None for regions and junk."""
    if not code or is_region_code(code):
        return None

    code = code.upper()
    if not _is_country_code(code):
        return None

    return f"{FLAG_CDN_BASE}/{code}.svg"
