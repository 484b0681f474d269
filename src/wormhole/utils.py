"""Small helpers shared across wormhole modules."""

import re
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")

_DURATION_PART_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def chunk(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``items`` with at most ``size`` elements.

    Args:
        items: Sequence to split
        size: Slice length (must be >= 1)

    Raises:
        ValueError: If size is less than 1

    Example:
        >>> list(chunk([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError(f"chunk size must be at least 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def parse_duration(value: str | int | float) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) or Go-style duration strings made of one
    or more ``<number><unit>`` parts, where unit is ``ms``, ``s``, ``m`` or
    ``h``.

    Args:
        value: Duration such as ``30``, ``"5s"``, ``"500ms"`` or ``"1m30s"``

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the value cannot be parsed or is negative

    Example:
        >>> parse_duration("1m30s")
        90.0
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return float(value)

    text = value.strip()
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return seconds

    total = 0.0
    position = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            break
        total += float(match.group("value")) * _UNIT_SECONDS[match.group("unit")]
        position = match.end()

    if position == 0 or position != len(text):
        raise ValueError(f"Invalid duration format: {value!r}")
    return total


def format_duration(seconds: float) -> str:
    """Format seconds as a compact duration string (``"1m30s"``, ``"500ms"``)."""
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs:g}s")
    return "".join(parts)
