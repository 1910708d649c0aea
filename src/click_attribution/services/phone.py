"""Phone number normalization applied before every comparison or query"""
import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(
    raw: Optional[str],
    country_code: str = "91",
    national_length: int = 10,
) -> str:
    """Return the canonical digits-only form of a channel phone number.

    Non-digits and a leading run of zeros are stripped. Numbers no longer
    than a national number get the country code prefixed; longer numbers
    are assumed to carry it already. An empty string means no usable number.
    """
    if not raw:
        return ""

    digits = _NON_DIGITS.sub("", raw).lstrip("0")
    if not digits:
        return ""

    if len(digits) <= national_length:
        return f"{country_code}{digits}"
    return digits
