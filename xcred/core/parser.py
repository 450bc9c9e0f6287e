"""Raw AboutAccountQuery response to ProfileRecord."""

from typing import Any

from pydantic import ValidationError

from xcred.exceptions import MalformedResponseError
from xcred.geo import resolve
from xcred.models.profile import ProfileRecord
from xcred.scoring import CredibilityScorer, detect_party

GOVERNMENT_TYPE = "Government"
BUSINESS_TYPE = "Business"


def _user_result(body: Any) -> dict:
    """Locate ``data.user_result_by_screen_name.result`` in the response body."""
    if not isinstance(body, dict):
        raise MalformedResponseError("Response body is not a JSON object")

    data = body.get("data")
    if not isinstance(data, dict):
        raise MalformedResponseError("Response has no data object")

    wrapper = data.get("user_result_by_screen_name")
    if not isinstance(wrapper, dict):
        raise MalformedResponseError("Response has no user_result_by_screen_name")

    user = wrapper.get("result")
    if not isinstance(user, dict) or not user:
        raise MalformedResponseError("User result missing (suspended or unknown account)")

    return user


def _section(user: dict, name: str) -> dict:
    """A nested object of the user result; absent or null reads as empty."""
    value = user.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedResponseError(f"{name} is not an object")
    return value


def _text(section: dict, field: str) -> str | None:
    value = section.get(field)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise MalformedResponseError(f"{field} is not a string")
    return value


def parse_username_changes(about: dict) -> int:
    changes = about.get("username_changes")
    if not isinstance(changes, dict):
        return 0
    try:
        return int(changes.get("count") or 0)
    except (TypeError, ValueError):
        return 0


def parse_profile(body: Any, username: str) -> dict:
    """
    Extract raw profile fields from an AboutAccountQuery response.

    Args:
        body: Decoded JSON body
        username: Handle the request was made for

    Returns:
        Dict of ProfileRecord fields (tier not yet computed)

    Raises:
        MalformedResponseError: If the body does not have the expected shape
    """
    user = _user_result(body)
    about = _section(user, "about_profile")
    core = _section(user, "core")
    verification = _section(user, "verification")

    verified_type = _text(verification, "verified_type")
    is_government = verified_type == GOVERNMENT_TYPE
    is_business = verified_type == BUSINESS_TYPE
    is_blue = bool(
        user.get("is_blue_verified")
        or (verification.get("verified") and not is_government and not is_business)
    )
    affiliate = _text(about, "affiliate_username")

    account_based_in = _text(about, "account_based_in")
    location_accurate = about.get("location_accurate") is not False

    return {
        "username": username,
        "location": account_based_in,
        "location_country": resolve(account_based_in),
        "account_based_in": account_based_in,
        "connected_via": _text(about, "source"),
        "vpn_detected": not location_accurate,
        "location_accurate": location_accurate,
        "username_changes": parse_username_changes(about),
        "verified": is_blue or is_business or is_government,
        "is_blue_verified": is_blue,
        "is_business_verified": is_business,
        "is_government_verified": is_government,
        "verified_type": verified_type,
        "party": detect_party(affiliate) if is_government else None,
        "affiliate_username": affiliate,
        "display_name": _text(core, "name") or username,
        "screen_name": _text(core, "screen_name") or username,
        "created_at": _text(about, "created_at") or _text(user, "created_at"),
    }


def parse_response(body: Any, username: str, scorer: CredibilityScorer) -> ProfileRecord:
    """
    Build a scored ProfileRecord from a raw response body.

    Raises:
        MalformedResponseError: If the body does not have the expected shape
    """
    try:
        record = ProfileRecord.model_validate(parse_profile(body, username))
    except ValidationError as e:
        raise MalformedResponseError(f"Response for @{username} failed validation: {e}") from e
    if not record.is_valid():
        raise MalformedResponseError(f"No profile data in response for @{username}")
    return scorer.rescore(record)
