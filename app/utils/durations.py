"""Duration parsing and ISO-8601 rendering for quota windows.

Policy files may express durations as ISO-8601 (``PT1H``), as a short
suffixed form (``90s``, ``5m``, ``1h``, ``2d``, ``250ms``) or as a plain number
of seconds. Keys embed the window using :func:`format_iso_duration`, which
renders hours, minutes and seconds only, so the same window always produces
the same text regardless of how it was configured.
"""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal

_SHORT_FORM = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)

_UNIT_SECONDS = {
    "ms": Decimal("0.001"),
    "s": Decimal(1),
    "m": Decimal(60),
    "h": Decimal(3600),
    "d": Decimal(86400),
}


def parse_short_duration(value: str) -> timedelta | None:
    """Parse ``<number><unit>`` strings such as ``30s`` or ``1h``.

    Args:
        value: Raw configuration text.

    Returns:
        The parsed timedelta, or None if the text is not in short form
        (callers then fall back to ISO-8601 parsing).
    """

    match = _SHORT_FORM.match(value)
    if not match:
        return None
    amount, unit = match.groups()
    seconds = Decimal(amount) * _UNIT_SECONDS[unit.lower()]
    return timedelta(seconds=float(seconds))


def format_iso_duration(duration: timedelta) -> str:
    """Render a duration as ISO-8601 text using H/M/S components only.

    Examples:
        >>> format_iso_duration(timedelta(hours=1))
        'PT1H'
        >>> format_iso_duration(timedelta(minutes=1, seconds=30))
        'PT1M30S'
        >>> format_iso_duration(timedelta(days=1))
        'PT24H'
        >>> format_iso_duration(timedelta(milliseconds=500))
        'PT0.5S'
    """

    total_micros = (
        duration.days * 86_400_000_000
        + duration.seconds * 1_000_000
        + duration.microseconds
    )
    if total_micros == 0:
        return "PT0S"

    hours, remainder = divmod(total_micros, 3_600_000_000)
    minutes, remainder = divmod(remainder, 60_000_000)
    seconds, micros = divmod(remainder, 1_000_000)

    parts = ["PT"]
    if hours:
        parts.append(f"{hours}H")
    if minutes:
        parts.append(f"{minutes}M")
    if seconds or micros:
        if micros:
            fraction = f"{micros:06d}".rstrip("0")
            parts.append(f"{seconds}.{fraction}S")
        else:
            parts.append(f"{seconds}S")
    return "".join(parts)


def whole_seconds(duration: timedelta) -> int:
    """Round a duration up to whole seconds (used for Retry-After)."""

    micros = duration // timedelta(microseconds=1)
    return -(-micros // 1_000_000)
