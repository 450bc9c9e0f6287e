"""Location string to country/region code resolution."""

from xcred.geo.resolver import (
    REGION_PREFIX,
    Region,
    flag_emoji,
    flag_url,
    is_region_code,
    known_country_codes,
    region_for_code,
    resolve,
)

__all__ = [
    "REGION_PREFIX",
    "Region",
    "resolve",
    "is_region_code",
    "region_for_code",
    "known_country_codes",
    "flag_emoji",
    "flag_url",
]
