"""
Request and response bodies of the archive HTTP API.

Response bodies reuse the camelCase :class:`WireModel` base so that what the
API returns has the same shape as what the store persists and exports.
"""

from __future__ import annotations

from pydantic import Field

from kotarchive.core.contracts.archive import ArchiveRecord, PruneReport, WireModel
from kotarchive.services.query import FilterSummary


class ArchiveListResponse(WireModel):
    archives: list[ArchiveRecord] = Field(default_factory=list)
    summary: FilterSummary = Field(default_factory=FilterSummary)


class IdsRequest(WireModel):
    """Body of bulk endpoints: the archive ids to act on."""

    ids: list[str] = Field(default_factory=list, min_length=1)


class PruneRequest(WireModel):
    """Optional overrides of the settings-derived retention policy."""

    max_age_days: float | None = Field(default=None, gt=0)
    max_count_per_type: int | None = Field(default=None, ge=1)


class PruneResponse(WireModel):
    game_log: PruneReport
    aidt: PruneReport


class ImportResponse(WireModel):
    id: str
    type: str
    name: str


__all__ = [
    "ArchiveListResponse",
    "IdsRequest",
    "PruneRequest",
    "PruneResponse",
    "ImportResponse",
]
