"""
Timestamp and duration formatting for access-log fields.
"""

from datetime import datetime, timezone

_NS_PER_US = 1_000
_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000
_NS_PER_MIN = 60 * _NS_PER_S
_NS_PER_HOUR = 60 * _NS_PER_MIN


def local_now() -> datetime:
    """Current wall-clock time in the local timezone."""
    return datetime.now(timezone.utc).astimezone()


def format_rfc3339(moment: datetime) -> str:
    """Render an aware datetime as RFC 3339 with second precision."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def _with_fraction(value: int, unit: int) -> str:
    whole, remainder = divmod(value, unit)
    if not remainder:
        return str(whole)
    width = len(str(unit)) - 1
    return f"{whole}.{remainder:0{width}d}".rstrip("0")


def format_duration(nanoseconds: int) -> str:
    """
    Human-readable duration, e.g. ``850ns``, ``12.5µs``, ``3.2ms``,
    ``1.5s``, ``2m3s`` or ``1h0m0s``.
    """
    if nanoseconds == 0:
        return "0s"

    sign = "-" if nanoseconds < 0 else ""
    ns = abs(nanoseconds)

    if ns < _NS_PER_US:
        return f"{sign}{ns}ns"
    if ns < _NS_PER_MS:
        return f"{sign}{_with_fraction(ns, _NS_PER_US)}µs"
    if ns < _NS_PER_S:
        return f"{sign}{_with_fraction(ns, _NS_PER_MS)}ms"

    hours, rest = divmod(ns, _NS_PER_HOUR)
    minutes, rest = divmod(rest, _NS_PER_MIN)
    text = f"{_with_fraction(rest, _NS_PER_S)}s"
    if hours:
        text = f"{hours}h{minutes}m{text}"
    elif minutes:
        text = f"{minutes}m{text}"
    return sign + text
