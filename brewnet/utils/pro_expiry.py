"""
Pro-Expiry Date Parsing.

The backend's ``pro_end`` timestamp has drifted across versions: ISO-8601
with and without fractional seconds, a space instead of ``T``, and zone
offsets with or without a colon.  :func:`parse_pro_end` accepts all of
them and never raises.  An unparseable value yields ``None``, which the
entitlement predicates treat as *not* active (fail closed).

Parsing is order-stable: candidates are generated in a fixed order and
tried against a fixed pattern sequence, so equivalent strings always
resolve through the same pattern.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

__all__ = ["can_like", "is_pro_active", "parse_pro_end"]

# Trailing zone offsets that need a colon inserted: ``+0000`` / ``+05``.
_TZ_NO_COLON_RE: re.Pattern[str] = re.compile(r"([+-]\d{2})(\d{2})$")
_TZ_HOURS_ONLY_RE: re.Pattern[str] = re.compile(r"([+-]\d{2})$")

_DATE: str = r"\d{4}-\d{2}-\d{2}"
_TIME: str = r"\d{2}:\d{2}:\d{2}"
_ZONE: str = r"(?:Z|[+-]\d{2}:\d{2})"

# (gate, strptime format, assume_utc).  The gate keeps each pattern as
# strict as its name; strptime alone is lenient about field widths.
_PRIMARY_PATTERNS: tuple[tuple[re.Pattern[str], str, bool], ...] = (
    # ISO-8601 internet date-time with fractional seconds
    (re.compile(rf"^{_DATE}T{_TIME}\.\d+{_ZONE}$"), "%Y-%m-%dT%H:%M:%S.%f%z", False),
    # ISO-8601 internet date-time
    (re.compile(rf"^{_DATE}T{_TIME}{_ZONE}$"), "%Y-%m-%dT%H:%M:%S%z", False),
    # ISO-8601 full date and full time separated by a space
    (re.compile(rf"^{_DATE} {_TIME}(?:\.\d+)?{_ZONE}$"), "%Y-%m-%d %H:%M:%S%z", False),
)

_FALLBACK_PATTERNS: tuple[tuple[re.Pattern[str], str, bool], ...] = (
    # yyyy-MM-dd HH:mm:ssXXXXX
    (re.compile(rf"^{_DATE} {_TIME}(?:Z|[+-]\d{{2}}:\d{{2}})$"), "%Y-%m-%d %H:%M:%S%z", False),
    # yyyy-MM-dd HH:mm:ssZ
    (re.compile(rf"^{_DATE} {_TIME}[+-]\d{{4}}$"), "%Y-%m-%d %H:%M:%S%z", False),
    # yyyy-MM-dd HH:mm:ss, interpreted as UTC
    (re.compile(rf"^{_DATE} {_TIME}$"), "%Y-%m-%d %H:%M:%S", True),
)

_FRACTION_RE: re.Pattern[str] = re.compile(r"\.(\d+)")


def _candidates(value: str) -> list[str]:
    """Return the normalised spellings of *value*, in a fixed order."""
    trimmed: str = value.strip()
    candidates: list[str] = [trimmed]

    if " " in trimmed and "T" not in trimmed:
        candidates.append(trimmed.replace(" ", "T"))

    for candidate in list(candidates):
        with_minutes = _TZ_NO_COLON_RE.sub(r"\1:\2", candidate)
        if with_minutes != candidate:
            candidates.append(with_minutes)
        hours_only = _TZ_HOURS_ONLY_RE.sub(r"\1:00", candidate)
        if hours_only != candidate:
            candidates.append(hours_only)

    # Deduplicate while preserving insertion order.
    return list(dict.fromkeys(candidates))


def _try_pattern(
    candidate: str,
    gate: re.Pattern[str],
    fmt: str,
    assume_utc: bool,
) -> Optional[datetime]:
    if not gate.match(candidate):
        return None

    # %f accepts at most six digits; extra precision is dropped.
    normalised: str = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6], candidate, count=1)
    try:
        parsed: datetime = datetime.strptime(normalised, fmt)
    except ValueError:
        return None

    if assume_utc:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_pro_end(value: Optional[str]) -> Optional[datetime]:
    """Parse a loosely formatted entitlement expiry timestamp.

    Every candidate is tried against the strict ISO-8601 patterns first
    and only then against the fixed fallback patterns.

    Parameters
    ----------
    value:
        Raw timestamp string as stored by the backend.

    Returns
    -------
    datetime or None
        An aware UTC datetime, or ``None`` when nothing matched.
    """
    if not value or not value.strip():
        return None

    candidates: list[str] = _candidates(value)

    for patterns in (_PRIMARY_PATTERNS, _FALLBACK_PATTERNS):
        for candidate in candidates:
            for gate, fmt, assume_utc in patterns:
                parsed = _try_pattern(candidate, gate, fmt, assume_utc)
                if parsed is not None:
                    return parsed

    return None


def is_pro_active(
    is_pro: bool,
    pro_end: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """``True`` iff the pro flag is set and *pro_end* parses to an instant
    strictly after *now* (defaults to the current UTC time)."""
    if not is_pro or pro_end is None:
        return False

    expiry: Optional[datetime] = parse_pro_end(pro_end)
    if expiry is None:
        return False

    return expiry > (now or datetime.now(timezone.utc))


def can_like(
    is_pro: bool,
    pro_end: Optional[str],
    likes_remaining: int,
    now: Optional[datetime] = None,
) -> bool:
    """Pro members like without limit; everyone else spends the counter."""
    return is_pro_active(is_pro, pro_end, now) or likes_remaining > 0
