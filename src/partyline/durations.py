from __future__ import annotations

import re
import time

from .errors import ValidationError

_UNIT_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}
_UNIT_NAMES = (("day", _UNIT_MS["d"]), ("hour", _UNIT_MS["h"]), ("minute", _UNIT_MS["m"]), ("second", _UNIT_MS["s"]))
_DURATION_RE = re.compile(r"(\d+)\s*([smhd]?)", re.IGNORECASE)


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_duration(text: str) -> int:
    """Parse ``"30m"``, ``"2h"``, ``"1d"``, ``"45s"`` into milliseconds.

    A bare number is taken as minutes.
    """

    match = _DURATION_RE.fullmatch(text.strip())
    if match is None:
        raise ValidationError(f"invalid duration: {text}")
    amount = int(match.group(1))
    unit = (match.group(2) or "m").lower()
    return amount * _UNIT_MS[unit]


def pretty_duration(duration_ms: int) -> str:
    """Render a duration using its two most significant units."""

    remaining = max(0, duration_ms)
    parts: list[str] = []
    for name, unit_ms in _UNIT_NAMES:
        count, remaining = divmod(remaining, unit_ms)
        if count or parts:
            if count:
                parts.append(f"{count} {name}" + ("" if count == 1 else "s"))
            if len(parts) == 2 or (parts and not count):
                break
    if not parts:
        return "0 seconds"
    return ", ".join(parts)
