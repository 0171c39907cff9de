# ============================================================================
# SCOPE: DOMAIN LAYER (Messaging)
# Description: Phone number extraction and canonicalisation (Brazil, +55).
# ============================================================================
"""Phone helpers.

Contacts arrive as free text holding one or more numbers, e.g.
"(34) 99999-0000 / 34 3333-1111". The conversation identity is the
digits-only form (`phone_key`).
"""

import re

COUNTRY_CODE = "55"

_SEPARATORS = re.compile(r"[;|,\n\r\t]")
_NON_DIGITS = re.compile(r"\D")


def phone_key(raw: str | None) -> str:
    """Digits-only form of a contact string."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", str(raw))


def pick_first_phone(raw: str | None) -> str | None:
    """Return the first usable number in `raw` as +E164, or None.

    National numbers (10-11 digits) get the country code prepended.
    Only 12-13 digit results are accepted.
    """
    if not raw:
        return None
    for piece in _SEPARATORS.split(str(raw)):
        digits = phone_key(piece)
        if not digits:
            continue
        if not digits.startswith(COUNTRY_CODE) and 10 <= len(digits) <= 11:
            digits = f"{COUNTRY_CODE}{digits}"
        if 12 <= len(digits) <= 13:
            return f"+{digits}"
    return None


def phone_variations(raw: str | None) -> list[str]:
    """Digit variants used to match a sender against stored contacts.

    The sender may be stored with or without the country code, and with
    or without the mobile ninth digit.
    """
    digits = phone_key(raw)
    if not digits:
        return []

    variations: list[str] = [digits]
    if digits.startswith(COUNTRY_CODE):
        variations.append(digits[len(COUNTRY_CODE) :])
    else:
        variations.append(f"{COUNTRY_CODE}{digits}")
    if len(digits) > 11:
        variations.append(digits[-11:])
    if len(digits) > 10:
        variations.append(digits[-10:])

    # Keep order, drop duplicates and empties
    return [v for i, v in enumerate(variations) if v and v not in variations[:i]]
