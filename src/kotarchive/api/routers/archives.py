"""
API Routes for Archives and Analytics.

Endpoints
---------
- `GET /archives`: Filtered, sorted metadata listing with a filter summary.
- `GET /archives/stats`: Storage usage of archive keys.
- `GET /archives/{archive_id}`: Full payload envelope of one archive.
- `DELETE /archives/{archive_id}`: Delete one archive.
- `POST /archives/bulk-delete`: Delete several archives, per-item outcome.
- `POST /archives/export`: Bulk export envelope of the given ids.
- `POST /archives/import`: Import a single envelope or a bulk export.
- `POST /archives/prune`: Apply the retention policy to auto archives.
- `GET /analytics`: The (memoized) cross-archive aggregate.

Errors
------
Unknown ids raise :class:`ArchiveNotFoundError` (404 via the app handler);
rejected imports answer 400 and out-of-range query values 422.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from kotarchive.api.dependencies import ArchiveServices, get_services
from kotarchive.api.schemas import (
    ArchiveListResponse,
    IdsRequest,
    ImportResponse,
    PruneRequest,
    PruneResponse,
)
from kotarchive.core.clock import utc_now
from kotarchive.core.contracts.archive import (
    BulkItemError,
    BulkResult,
    RetentionPolicy,
    StorageStats,
)
from kotarchive.core.errors import ArchiveNotFoundError
from kotarchive.services.query import (
    ArchiveFilter,
    ArchiveSelection,
    DateRange,
    SortKey,
    SortOrder,
    TypeFilter,
    apply_filter,
    filter_summary,
)

router = APIRouter(tags=["Archives"])

Services = Annotated[ArchiveServices, Depends(get_services)]


@router.get(
    "/archives",
    response_model=ArchiveListResponse,
    summary="List archive metadata",
)
async def list_archives(
    services: Services,
    archive_type: Annotated[TypeFilter, Query(alias="type")] = "all",
    date_range: Annotated[DateRange, Query(alias="range")] = "all",
    search: str = "",
    sort: SortKey = "date",
    order: SortOrder = "desc",
) -> ArchiveListResponse:
    """Metadata only; payloads are never read to build the listing."""
    criteria = ArchiveFilter(
        type=archive_type,
        date_range=date_range,
        search=search,
        sort_by=sort,
        sort_order=order,
    )
    records = services.store.list_all()
    now = utc_now()
    return ArchiveListResponse(
        archives=apply_filter(records, criteria, now),
        summary=filter_summary(records, criteria, ArchiveSelection(), now),
    )


@router.get("/archives/stats", response_model=StorageStats, summary="Storage usage")
async def storage_stats(services: Services) -> StorageStats:
    return services.store.storage_stats()


@router.get("/archives/{archive_id}", summary="Load one archive")
async def get_archive(archive_id: str, services: Services) -> dict[str, Any]:
    """Return the full envelope (`meta`, `data`, optional `stateSnapshot`)."""
    record = services.store.find(archive_id)
    if record is None:
        raise ArchiveNotFoundError(archive_id)
    return services.store.load(record).to_wire()


@router.delete("/archives/{archive_id}", summary="Delete one archive")
async def delete_archive(archive_id: str, services: Services) -> dict[str, str]:
    record = services.store.find(archive_id)
    if record is None or not services.store.delete(record):
        raise ArchiveNotFoundError(archive_id)
    services.analytics.clear_cache()
    return {"deleted": archive_id}


@router.post("/archives/bulk-delete", response_model=BulkResult, summary="Delete many")
async def bulk_delete(request: IdsRequest, services: Services) -> BulkResult:
    """Unknown ids are reported per item; they never abort the batch."""
    records = services.store.list_all()
    selection = ArchiveSelection(request.ids)
    result = services.store.delete_many(selection.pick(records))
    known = {r.id for r in records}
    for archive_id in request.ids:
        if archive_id not in known:
            result.errors.append(
                BulkItemError(id=archive_id, error=str(ArchiveNotFoundError(archive_id)))
            )
    services.analytics.clear_cache()
    return result


@router.post("/archives/export", summary="Bulk export")
async def bulk_export(request: IdsRequest, services: Services) -> dict[str, Any]:
    """Bulk envelope of the selected archives, in listing order."""
    selected = ArchiveSelection(request.ids).pick(services.store.list_all())
    envelope, result = services.store.build_bulk_export(selected)
    return {**envelope.to_wire(), "result": result.to_wire()}


@router.post(
    "/archives/import",
    status_code=status.HTTP_201_CREATED,
    summary="Import an archive or a bulk export",
)
async def import_archive(
    services: Services,
    body: Annotated[dict[str, Any], Body()],
) -> dict[str, Any]:
    """A body with `exportType: "bulk"` is imported item by item."""
    if body.get("exportType") == "bulk":
        result = services.store.import_bulk(body, source="api")
        services.analytics.clear_cache()
        return result.to_wire()

    outcome = services.store.import_payload(body, source="api")
    if outcome.is_err():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=outcome.unwrap_err().reason,
        )
    payload = outcome.unwrap()
    services.analytics.clear_cache()
    return ImportResponse(
        id=payload.meta.id, type=payload.meta.type, name=payload.meta.name
    ).to_wire()


@router.post("/archives/prune", response_model=PruneResponse, summary="Apply retention")
async def prune_archives(
    services: Services,
    request: PruneRequest | None = None,
) -> PruneResponse:
    base = RetentionPolicy.from_settings(services.settings)
    overrides = request or PruneRequest()
    policy = RetentionPolicy(
        max_age_days=overrides.max_age_days or base.max_age_days,
        max_count_per_type=overrides.max_count_per_type or base.max_count_per_type,
    )
    response = PruneResponse(
        game_log=services.store.prune("gameLog", policy),
        aidt=services.store.prune("aidt", policy),
    )
    services.analytics.clear_cache()
    return response


@router.get("/analytics", tags=["Analytics"], summary="Cross-archive analytics")
async def get_analytics(services: Services, force: bool = False) -> dict[str, Any]:
    return services.analytics.calculate_complete_analytics(force=force).to_json_dict()


__all__ = ["router"]
