"""
Jurisdiction matching for the dual GST regime.

Decides whether a place of supply lies in the same state as the supplier.
Same state means CGST + SGST; anything else, including an unknown place,
means IGST.
"""

import re

# Two-letter state/UT codes as they appear in place-of-supply strings
# ("GJ (24)", "MH", ...) mapped to a fragment of the full name.
STATE_CODES = {
    "an": "andaman",
    "ap": "andhra",
    "ar": "arunachal",
    "as": "assam",
    "br": "bihar",
    "ch": "chandigarh",
    "ct": "chhattisgarh",
    "dl": "delhi",
    "ga": "goa",
    "gj": "gujarat",
    "hp": "himachal",
    "hr": "haryana",
    "jh": "jharkhand",
    "jk": "jammu",
    "ka": "karnataka",
    "kl": "kerala",
    "la": "ladakh",
    "mh": "maharashtra",
    "ml": "meghalaya",
    "mn": "manipur",
    "mp": "madhya",
    "mz": "mizoram",
    "nl": "nagaland",
    "or": "odisha",
    "pb": "punjab",
    "py": "puducherry",
    "rj": "rajasthan",
    "sk": "sikkim",
    "tn": "tamil",
    "tr": "tripura",
    "ts": "telangana",
    "up": "uttar",
    "uk": "uttarakhand",
    "wb": "west",
}

_CODE_WITH_NUMBER = re.compile(r"^([a-z]{2})\s*\(")
_CODE_ALONE = re.compile(r"^([a-z]{2})(\s|$)")


def _normalize(value) -> str:
    return (value or "").strip().lower()


def _leading_code(place: str):
    match = _CODE_WITH_NUMBER.match(place) or _CODE_ALONE.match(place)
    return match.group(1) if match else None


def is_same_jurisdiction(place_of_supply, reference_jurisdiction) -> bool:
    """
    True when ``place_of_supply`` names the same state as ``reference_jurisdiction``.

    Matching is lenient: substring containment either way, a leading state code
    ("GJ (24)") resolved through STATE_CODES, then a scan of the code table in
    both directions. Empty input never matches.
    """
    place = _normalize(place_of_supply)
    reference = _normalize(reference_jurisdiction)
    if not place or not reference:
        return False

    if place in reference or reference in place:
        return True

    code = _leading_code(place)
    if code and code in STATE_CODES and STATE_CODES[code] in reference:
        return True

    # Substring scans: "gj" also occurs inside unrelated words, which is accepted
    for abbreviation, name in STATE_CODES.items():
        if abbreviation in place and name in reference:
            return True
    for abbreviation, name in STATE_CODES.items():
        if abbreviation in reference and name in place:
            return True

    return False


def is_inter_jurisdiction(place_of_supply, reference_jurisdiction) -> bool:
    return not is_same_jurisdiction(place_of_supply, reference_jurisdiction)
