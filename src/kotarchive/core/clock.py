"""Injectable wall clock and UTC normalization.

Services accept a ``Clock`` so retention, analytics leases and id generation
can be driven from a fixed instant in tests.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, TypeAdapter, ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current aware UTC time."""
    return datetime.now(UTC)


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def epoch_ms(moment: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return int(ensure_utc(moment).timestamp() * 1000)


#: Datetime field type that always validates to an aware UTC value.
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]

_UTC_ADAPTER: TypeAdapter[datetime] = TypeAdapter(UtcDatetime)


def lenient_utc(value: Any) -> datetime | None:
    """Parse ISO strings or epoch seconds/ms; None for anything unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return _UTC_ADAPTER.validate_python(value)
    except ValidationError:
        return None


__all__ = ["Clock", "utc_now", "ensure_utc", "epoch_ms", "UtcDatetime", "lenient_utc"]
