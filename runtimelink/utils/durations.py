"""
Duration string parsing.

Linking timeouts are declared as Go-style duration strings so the same values
work across tooling:

    "10m"    -> 10 minutes
    "1h30m"  -> 90 minutes
    "1.5s"   -> 1.5 seconds
    "250ms"  -> 0.25 seconds
"""

import re
from datetime import timedelta

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # U+00B5 micro sign
    "μs": 1e-6,  # U+03BC greek mu
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_TERM_RE = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)')


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string into a timedelta.

    Args:
        value: Duration string such as "10m" or "1h30m"

    Returns:
        Parsed duration

    Raises:
        ValueError: If the string is empty, negative, or not a valid duration
    """
    if value is None:
        raise ValueError("duration is required")

    text = value.strip()
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError("duration is empty")
    if text[0] in "+-":
        if text[0] == "-":
            raise ValueError(f"duration must not be negative: {value!r}")
        text = text[1:]

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _TERM_RE.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        pos = match.end()

    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")

    return timedelta(seconds=total)
