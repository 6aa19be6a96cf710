from __future__ import annotations

from typing import Final

# Subscription codes found after the first 16 hex chars of the license blob,
# mapped to (quarter, year) of the subscription end.
_LICENSE_CODES: Final[dict[str, tuple[int, int]]] = {
    "FFFFFFFF": (4, 2027),
    "FFFFFF7F": (3, 2027),
    "FFFFFF3F": (2, 2027),
    "FFFFFF1F": (1, 2027),
    "FFFFFF0F": (4, 2026),
    "FFFFFF07": (3, 2026),
    "FFFFFF03": (2, 2026),
    "FFFFFF01": (1, 2026),
    "FFFFFF00": (4, 2025),
    "FFFF7F00": (3, 2025),
    "FFFF3F00": (2, 2025),
    "FFFF1F00": (1, 2025),
    "FFFF0F00": (4, 2024),
    "FFFF0700": (3, 2024),
    "FFFF0300": (2, 2024),
    "FFFF0100": (1, 2024),
    "FFFF": (4, 2023),
    "FF7F": (3, 2023),
    "FF3F": (2, 2023),
    "FF1F": (1, 2023),
    "FF0F": (4, 2022),
    "FF07": (3, 2022),
    "FF03": (2, 2022),
    "FF01": (1, 2022),
    "FF00": (4, 2021),
    "7F00": (3, 2021),
    "3F00": (2, 2021),
    "1F00": (1, 2021),
    "0F00": (4, 2020),
    "0700": (3, 2020),
    "0300": (2, 2020),
    "0100": (1, 2020),
}

# Longer codes first: "FFFFFFFF" must win over its "FFFF" prefix.
_CODES_LONGEST_FIRST: Final[tuple[str, ...]] = tuple(
    sorted(_LICENSE_CODES, key=len, reverse=True)
)
_SUBSCRIPTION_OFFSET: Final[int] = 16


def decode_license(hex_text: str) -> str:
    """Decode the `License` property into a human-readable subscription line.

    Returns an empty string when the blob is empty, too short or not recognised.
    """

    if not hex_text:
        return ""
    upper = hex_text.strip().upper()
    if len(upper) < _SUBSCRIPTION_OFFSET:
        return ""

    subscription = upper[_SUBSCRIPTION_OFFSET:]
    for code in _CODES_LONGEST_FIRST:
        if subscription.startswith(code):
            quarter, year = _LICENSE_CODES[code]
            return f"Подписка до {quarter} квартала {year} года"
    return ""
