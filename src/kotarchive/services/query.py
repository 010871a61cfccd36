"""
Filtering, sorting and search over archive metadata.

Everything here is a pure function of a list of :class:`ArchiveRecord` and a
criteria object: nothing reads payloads and nothing writes to storage. The
CLI and the API build an :class:`ArchiveFilter` from user input and call
:func:`apply_filter`.

The :class:`ArchiveSelection` set is the transient multi-select state used to
feed bulk delete/export.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from kotarchive.core.clock import UtcDatetime, ensure_utc
from kotarchive.core.contracts.archive import ArchiveRecord, WireModel, normalize_content_type

TypeFilter = Literal["all", "gameLog", "aidt", "auto"]
DateRange = Literal["all", "today", "week", "month", "custom"]
SortKey = Literal["date", "name", "size", "type"]
SortOrder = Literal["asc", "desc"]


class ArchiveFilter(BaseModel):
    """Criteria for the archive browser.

    Attributes
    ----------
    type : TypeFilter
        Restrict to one archive family, or ``all``.
    date_range : DateRange
        ``today`` (since UTC midnight), ``week`` (last 7 days), ``month``
        (same day last month) or ``custom`` (``start``/``end``, inclusive).
    search : str
        Case-insensitive substring over name, id and category.
    sort_by / sort_order : SortKey / SortOrder
        Newest first by default.
    """

    model_config = ConfigDict(frozen=True)

    type: TypeFilter = "all"
    date_range: DateRange = "all"
    start: UtcDatetime | None = None
    end: UtcDatetime | None = None
    search: str = ""
    sort_by: SortKey = "date"
    sort_order: SortOrder = "desc"

    @property
    def active_filter_count(self) -> int:
        return sum((self.type != "all", self.date_range != "all", bool(self.search.strip())))

    @property
    def has_active_filters(self) -> bool:
        return self.active_filter_count > 0


class AdvancedSearch(BaseModel):
    """Multi-field search; unset fields do not constrain."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    start_date: UtcDatetime | None = None
    end_date: UtcDatetime | None = None
    min_size: int | None = None
    max_size: int | None = None
    types: list[str] = Field(default_factory=list)


class FilterSummary(WireModel):
    total: int = 0
    filtered: int = 0
    selected: int = 0
    has_filters: bool = False
    filter_count: int = 0


def _month_back(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def date_cutoff(now: datetime, date_range: DateRange) -> datetime | None:
    """Earliest timestamp admitted by a named range; None means unbounded."""
    now = ensure_utc(now)
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "week":
        return now - timedelta(days=7)
    if date_range == "month":
        return _month_back(now)
    return None


def _type_matches(record: ArchiveRecord, wanted: str) -> bool:
    return wanted == "all" or record.type.value == normalize_content_type(wanted)


def _text_matches(record: ArchiveRecord, term: str) -> bool:
    needle = term.strip().casefold()
    if not needle:
        return True
    return any(needle in field.casefold() for field in (record.name, record.id, record.category))


def filter_archives(
    records: Iterable[ArchiveRecord], criteria: ArchiveFilter, now: datetime
) -> list[ArchiveRecord]:
    """Keep the records matching type, date range and search text."""
    out = [r for r in records if _type_matches(r, criteria.type)]
    out = [r for r in out if _text_matches(r, criteria.search)]
    if criteria.date_range == "custom":
        if criteria.start is not None:
            out = [r for r in out if r.timestamp >= criteria.start]
        if criteria.end is not None:
            out = [r for r in out if r.timestamp <= criteria.end]
    else:
        cutoff = date_cutoff(now, criteria.date_range)
        if cutoff is not None:
            out = [r for r in out if r.timestamp >= cutoff]
    return out


def sort_archives(
    records: Iterable[ArchiveRecord], sort_by: SortKey = "date", order: SortOrder = "desc"
) -> list[ArchiveRecord]:
    """Stable sort; ties keep their incoming order in both directions."""
    keys = {
        "date": lambda r: r.timestamp,
        "name": lambda r: r.name.casefold(),
        "size": lambda r: r.size_metric,
        "type": lambda r: r.type.value,
    }
    return sorted(records, key=keys[sort_by], reverse=order == "desc")


def apply_filter(
    records: Iterable[ArchiveRecord], criteria: ArchiveFilter, now: datetime
) -> list[ArchiveRecord]:
    filtered = filter_archives(records, criteria, now)
    return sort_archives(filtered, criteria.sort_by, criteria.sort_order)


def advanced_search(
    records: Iterable[ArchiveRecord], criteria: AdvancedSearch
) -> list[ArchiveRecord]:
    """Text over name/category/type, date bounds, size bounds and a type set."""
    wanted_types = {str(normalize_content_type(t)) for t in criteria.types}
    needle = criteria.text.strip().casefold()

    def keep(record: ArchiveRecord) -> bool:
        if needle and not any(
            needle in field.casefold()
            for field in (record.name, record.category, record.type.value)
        ):
            return False
        if criteria.start_date is not None and record.timestamp < criteria.start_date:
            return False
        if criteria.end_date is not None and record.timestamp > criteria.end_date:
            return False
        if criteria.min_size is not None and record.size_metric < criteria.min_size:
            return False
        if criteria.max_size is not None and record.size_metric > criteria.max_size:
            return False
        return not wanted_types or record.type.value in wanted_types

    return [r for r in records if keep(r)]


class ArchiveSelection:
    """Transient set of selected archive ids."""

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: set[str] = set(ids)

    def set(self, archive_id: str, selected: bool) -> None:
        if selected:
            self._ids.add(archive_id)
        else:
            self._ids.discard(archive_id)

    def toggle(self, archive_id: str) -> bool:
        """Flip one id and return its new state."""
        self.set(archive_id, archive_id not in self._ids)
        return archive_id in self._ids

    def select_all(self, records: Iterable[ArchiveRecord]) -> None:
        self._ids.update(r.id for r in records)

    def clear(self) -> None:
        self._ids.clear()

    def ids(self) -> list[str]:
        return sorted(self._ids)

    def pick(self, records: Iterable[ArchiveRecord]) -> list[ArchiveRecord]:
        """The selected records, in the order ``records`` lists them."""
        return [r for r in records if r.id in self._ids]

    def __contains__(self, archive_id: object) -> bool:
        return archive_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())


def filter_summary(
    records: Iterable[ArchiveRecord],
    criteria: ArchiveFilter,
    selection: ArchiveSelection,
    now: datetime,
) -> FilterSummary:
    everything = list(records)
    return FilterSummary(
        total=len(everything),
        filtered=len(filter_archives(everything, criteria, now)),
        selected=len(selection),
        has_filters=criteria.has_active_filters,
        filter_count=criteria.active_filter_count,
    )


__all__ = [
    "ArchiveFilter",
    "AdvancedSearch",
    "ArchiveSelection",
    "FilterSummary",
    "date_cutoff",
    "filter_archives",
    "sort_archives",
    "apply_filter",
    "advanced_search",
    "filter_summary",
]
