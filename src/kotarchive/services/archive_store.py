"""
Two-tier archive storage on top of a :class:`KeyValueStore`.

Layout
------
- Metadata lists (one JSON array per content type), read for fast listing::

      KOT_ARCHIVE_GAME_LOGS = [{"id", "name", "timestamp", "sizeMetric"}, ...]
      KOT_ARCHIVE_AIDT_LOGS = [...]

- Payload blobs, one per archive: ``KOT_ARCHIVE_GAME_LOG_{id}``,
  ``KOT_ARCHIVE_AIDT_LOG_{id}``.
- Auto archives, one key each, with the UTC creation second embedded so that
  lexicographic key order is chronological order:
  ``kot_game_YYYYMMDDHHMMSS.log``, ``kot_aidt_YYYYMMDDHHMMSS.log``.

Write ordering
--------------
The metadata list is the source of truth for listing. A payload is always
written before its metadata entry is appended, and a metadata entry is always
removed before its payload. A crash in between leaves an orphaned payload,
never a record pointing at nothing.

Retention
---------
:meth:`ArchiveStore.prune` runs synchronously on every auto archive. Phase one
deletes keys whose embedded timestamp is older than ``max_age_days``; phase
two deletes the oldest keys beyond ``max_count_per_type``. Running it twice in
a row removes nothing the second time.
"""

from __future__ import annotations

import json
import re
import secrets
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from kotarchive.core.clock import Clock, ensure_utc, epoch_ms, utc_now
from kotarchive.core.contracts.archive import (
    ArchivePayload,
    ArchiveRecord,
    ArchiveType,
    BulkExport,
    BulkExportItem,
    BulkItemError,
    BulkResult,
    ContentType,
    DecisionTreePayload,
    GameLogPayload,
    PruneReport,
    RetentionPolicy,
    StorageStats,
    normalize_content_type,
    parse_payload,
    size_metric_for,
)
from kotarchive.core.contracts.snapshot import GameStateSnapshot
from kotarchive.core.errors import ArchiveImportError, ArchiveNotFoundError, StorageError
from kotarchive.core.result import Result, err, ok
from kotarchive.core.settings import Settings, get_logger, load_settings
from kotarchive.core.storage.disk import DirectoryStore
from kotarchive.core.storage.kv import KeyValueStore
from kotarchive.core.storage.memory import MemoryStore

logger = get_logger("kotarchive.archive")

LIST_KEYS: dict[str, str] = {
    "gameLog": "KOT_ARCHIVE_GAME_LOGS",
    "aidt": "KOT_ARCHIVE_AIDT_LOGS",
}
PAYLOAD_PREFIXES: dict[str, str] = {
    "gameLog": "KOT_ARCHIVE_GAME_LOG_",
    "aidt": "KOT_ARCHIVE_AIDT_LOG_",
}
AUTO_PREFIXES: dict[str, str] = {
    "gameLog": "kot_game_",
    "aidt": "kot_aidt_",
}
AUTO_SUFFIX = ".log"
KEY_STAMP_FORMAT = "%Y%m%d%H%M%S"

_AUTO_KEY_RE = re.compile(r"^kot_(game|aidt)_(\d{14})(?:_(\d+))?\.log$")
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.\-]+")
_ARCHIVE_KEY_PREFIXES = ("KOT_ARCHIVE_", "kot_")

_LABELS: dict[str, str] = {"gameLog": "Game Log", "aidt": "AI Decisions"}

ArchiveData = ArchivePayload | list[Any] | Mapping[str, Any] | BaseModel


def content_type_of(value: ArchiveType | str) -> ContentType:
    """Resolve ``gameLog``/``aidt`` (legacy ``game`` accepted).

    Raises
    ------
    ValueError
        For ``auto`` or any unknown label.
    """
    raw = value.value if isinstance(value, ArchiveType) else value
    normalized = normalize_content_type(raw)
    if normalized == "gameLog":
        return "gameLog"
    if normalized == "aidt":
        return "aidt"
    raise ValueError(f"Unknown archive content type: {value!r}")


def archive_type_of(value: ArchiveType | str) -> ArchiveType:
    if isinstance(value, ArchiveType):
        return value
    if value == "auto":
        return ArchiveType.AUTO
    return ArchiveType(content_type_of(value))


def auto_key_time(key: str) -> datetime | None:
    """Return the UTC instant embedded in an auto-archive key, if it has one."""
    match = _AUTO_KEY_RE.match(key)
    if match is None:
        return None
    try:
        return datetime.strptime(match.group(2), KEY_STAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None


def _plain(value: Any) -> Any:
    """Dump models to camelCase JSON; leave plain JSON values alone."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, list | tuple):
        return [_plain(v) for v in value]
    return value


def build_payload(
    content_type: ContentType,
    data: Any,
    *,
    name: str,
    archive_id: str,
    timestamp: datetime,
    state_snapshot: GameStateSnapshot | None = None,
) -> ArchivePayload:
    """Wrap raw log entries or a decision tree in a validated envelope."""
    body = _plain(data)
    if content_type == "gameLog" and not isinstance(body, list):
        raise ValueError("game log data must be a list of entries")
    if content_type == "aidt" and not isinstance(body, Mapping):
        raise ValueError("decision tree data must be an object with 'rounds'")
    raw: dict[str, Any] = {
        "meta": {
            "type": content_type,
            "name": name,
            "timestamp": timestamp,
            "id": archive_id,
            "sizeMetric": size_metric_for(body),
        },
        "data": body,
    }
    if state_snapshot is not None:
        raw["stateSnapshot"] = state_snapshot
    model = GameLogPayload if content_type == "gameLog" else DecisionTreePayload
    return model.model_validate(raw)


def _safe_filename(stem: str) -> str:
    cleaned = _UNSAFE_FILENAME_RE.sub("_", stem.strip()).strip("_")
    return f"{cleaned or 'archive'}.json"


class ArchiveStore:
    """Archive, list, load, delete, prune, import and export archives."""

    def __init__(self, kv: KeyValueStore, clock: Clock = utc_now) -> None:
        self._kv = kv
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def archive(
        self,
        content_type: ArchiveType | str,
        data: ArchiveData,
        name: str | None = None,
        *,
        state_snapshot: GameStateSnapshot | None = None,
    ) -> ArchiveRecord:
        """Persist ``data`` as a named archive and register its metadata.

        ``data`` may be a list of log entries, a decision tree, or an existing
        payload whose data (and snapshot, unless one is given) is re-archived.

        Raises
        ------
        StorageError
            If the backend rejects either write.
        """
        ct = content_type_of(content_type)
        body, state_snapshot = self._unwrap(data, state_snapshot)
        now = self._clock()
        payload = build_payload(
            ct,
            body,
            name=name or f"{_LABELS[ct]} {now:%Y-%m-%d %H:%M:%S}",
            archive_id=self._new_id(ct, now),
            timestamp=now,
            state_snapshot=state_snapshot,
        )
        record = self._register(payload)
        logger.info("Archived %s %s (%d items)", ct, record.id, record.size_metric)
        return record

    def auto_archive(
        self,
        content_type: ArchiveType | str,
        data: ArchiveData,
        policy: RetentionPolicy | None = None,
        *,
        name: str | None = None,
        state_snapshot: GameStateSnapshot | None = None,
    ) -> str:
        """Write an auto archive under a timestamped key, prune, and return the key."""
        ct = content_type_of(content_type)
        body, state_snapshot = self._unwrap(data, state_snapshot)
        now = self._clock()
        key = self._auto_key(ct, now)
        payload = build_payload(
            ct,
            body,
            name=name or f"Auto {_LABELS[ct]} {now:%Y-%m-%d %H:%M:%S}",
            archive_id=key,
            timestamp=now,
            state_snapshot=state_snapshot,
        )
        self._kv.set(key, payload.to_wire())
        logger.info("Auto-archived %s under %s", ct, key)
        self.prune(ct, policy or RetentionPolicy())
        return key

    def prune(self, content_type: ArchiveType | str, policy: RetentionPolicy) -> PruneReport:
        """Apply the age rule, then the count rule, to auto archives of one type."""
        ct = content_type_of(content_type)
        cutoff = self._clock() - timedelta(days=policy.max_age_days)

        expired: list[str] = []
        for key in self._auto_keys(ct):
            stamp = auto_key_time(key)
            if stamp is not None and stamp < cutoff and self._kv.remove(key):
                expired.append(key)

        remaining = list(self._auto_keys(ct))
        excess: list[str] = []
        overflow = len(remaining) - policy.max_count_per_type
        if overflow > 0:
            for key in remaining[:overflow]:
                if self._kv.remove(key):
                    excess.append(key)

        report = PruneReport(
            removed_expired=expired,
            removed_excess=excess,
            remaining=len(remaining) - len(excess),
        )
        if report.removed:
            logger.info(
                "Pruned %d %s auto archives (%d expired, %d over cap)",
                len(report.removed),
                ct,
                len(expired),
                len(excess),
            )
        return report

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def list_archives(self, archive_type: ArchiveType | str) -> list[ArchiveRecord]:
        """Metadata-only listing for one archive type, oldest first."""
        at = archive_type_of(archive_type)
        if at is ArchiveType.AUTO:
            records = [r for ct in ("gameLog", "aidt") for r in self._auto_records(ct)]
        else:
            records = self._list_records(content_type_of(at))
        return sorted(records, key=lambda r: (r.timestamp, r.id))

    def list_all(self) -> list[ArchiveRecord]:
        records = [r for at in ArchiveType for r in self.list_archives(at)]
        return sorted(records, key=lambda r: (r.timestamp, r.id))

    def find(self, archive_id: str) -> ArchiveRecord | None:
        """Look an archive up by id across every type."""
        for record in self.list_all():
            if record.id == archive_id:
                return record
        return None

    def load(self, record: ArchiveRecord) -> ArchivePayload:
        """Load and validate the payload behind ``record``.

        Raises
        ------
        ArchiveNotFoundError
            If no payload is stored under the record's key.
        ValueError
            If the stored payload does not validate.
        """
        raw = self._kv.get(record.key)
        if raw is None:
            raise ArchiveNotFoundError(record.id)
        return parse_payload(raw)

    def delete(self, record: ArchiveRecord) -> bool:
        """Remove metadata first, then the payload. Returns False if nothing existed."""
        removed_meta = False
        if record.type is not ArchiveType.AUTO:
            list_key = LIST_KEYS[record.content_type]
            entries = self._raw_list(record.content_type)
            kept = [e for e in entries if not (isinstance(e, Mapping) and e.get("id") == record.id)]
            if len(kept) != len(entries):
                self._kv.set(list_key, kept)
                removed_meta = True
        removed_payload = self._kv.remove(record.key)
        if removed_meta or removed_payload:
            logger.info("Deleted archive %s", record.id)
        return removed_meta or removed_payload

    def delete_many(self, records: Iterable[ArchiveRecord]) -> BulkResult:
        """Delete sequentially; one failure never stops the rest."""
        result = BulkResult()
        for record in records:
            try:
                if not self.delete(record):
                    raise ArchiveNotFoundError(record.id)
                result.success_count += 1
            except Exception as exc:
                logger.warning("Failed to delete archive %s: %s", record.id, exc)
                result.errors.append(BulkItemError(id=record.id, error=str(exc)))
        return result

    def storage_stats(self) -> StorageStats:
        """Serialized size of every archive-related key in the backend."""
        keys = [k for prefix in _ARCHIVE_KEY_PREFIXES for k in self._kv.keys(prefix)]
        total = sum(self._kv.size_of(k) for k in keys)
        count = len(keys)
        return StorageStats(
            total_size=total,
            archive_count=count,
            average_size=total / count if count else 0.0,
            estimated_mb=total / (1024 * 1024),
        )

    # ------------------------------------------------------------------ #
    # Export
    # ------------------------------------------------------------------ #
    def export_to_file(self, payload: ArchivePayload, destination: Path) -> Path:
        """Write one envelope as JSON. A directory destination gets ``{name}.json``."""
        path = destination
        if destination.is_dir():
            path = destination / _safe_filename(payload.meta.name or payload.meta.id)
        _write_json(path, payload.to_wire())
        logger.info("Exported archive %s to %s", payload.meta.id, path)
        return path

    def build_bulk_export(self, records: Iterable[ArchiveRecord]) -> tuple[BulkExport, BulkResult]:
        """Load each record into a bulk envelope, collecting per-item failures."""
        envelope = BulkExport(export_date=self._clock())
        result = BulkResult()
        for record in records:
            try:
                content = self.load(record).to_wire()
            except Exception as exc:
                logger.warning("Failed to load archive %s for export: %s", record.id, exc)
                result.errors.append(BulkItemError(id=record.id, error=str(exc)))
                continue
            envelope.archives.append(BulkExportItem(metadata=record, content=content))
            result.success_count += 1
        return envelope, result

    def export_bulk(
        self, records: Iterable[ArchiveRecord], destination: Path
    ) -> tuple[Path, BulkResult]:
        """Write ``{exportDate, exportType: 'bulk', archives: [...]}`` to one file."""
        envelope, result = self.build_bulk_export(records)
        path = destination
        if destination.is_dir():
            path = destination / f"KOT_Archives_{envelope.export_date:%Y-%m-%d}.json"
        _write_json(path, envelope.to_wire())
        logger.info(
            "Bulk-exported %d archives to %s (%d failed)",
            result.success_count,
            path,
            result.failure_count,
        )
        return path, result

    def export_selected(
        self, records: Iterable[ArchiveRecord], destination: Path
    ) -> tuple[Path | None, BulkResult]:
        """One record exports as a plain envelope; several as a bulk envelope."""
        selected = [*records]
        if not selected:
            return None, BulkResult()
        if len(selected) > 1:
            return self.export_bulk(selected, destination)
        record = selected[0]
        try:
            payload = self.load(record)
        except Exception as exc:
            logger.warning("Failed to load archive %s for export: %s", record.id, exc)
            return None, BulkResult(errors=[BulkItemError(id=record.id, error=str(exc))])
        path = destination
        if destination.is_dir():
            path = destination / _safe_filename(record.name or record.id)
        return self.export_to_file(payload, path), BulkResult(success_count=1)

    # ------------------------------------------------------------------ #
    # Import
    # ------------------------------------------------------------------ #
    def import_payload(
        self, raw: Any, *, source: str | None = None
    ) -> Result[ArchivePayload, ArchiveImportError]:
        """Validate ``raw`` and register it; nothing is written on rejection."""
        try:
            payload = parse_payload(raw)
        except ValidationError as exc:
            reason = f"invalid archive: {exc.error_count()} validation error(s)"
            return err(ArchiveImportError(reason, source=source))
        except ValueError as exc:
            return err(ArchiveImportError(str(exc), source=source))
        try:
            record = self._register(payload)
        except StorageError as exc:
            return err(ArchiveImportError(str(exc), source=source))
        logger.info("Imported %s archive %s", payload.content_type, record.id)
        return ok(payload)

    def import_bulk(self, envelope: Mapping[str, Any], *, source: str | None = None) -> BulkResult:
        """Register every ``archives[].content`` of a bulk envelope."""
        result = BulkResult()
        items = envelope.get("archives")
        if not isinstance(items, list):
            items = []
        for position, item in enumerate(items):
            content = item.get("content") if isinstance(item, Mapping) else None
            item_id = _bulk_item_id(item, content, position)
            outcome = self.import_payload(content, source=source)
            if outcome.is_ok():
                result.success_count += 1
            else:
                error = outcome.unwrap_err()
                logger.warning("Skipped bulk item %s: %s", item_id, error.reason)
                result.errors.append(BulkItemError(id=item_id, error=error.reason))
        return result

    def import_from_file(
        self, path: Path
    ) -> Result[ArchivePayload | BulkResult, ArchiveImportError]:
        """Import a single-archive file or a bulk export file."""
        source = path.name
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except OSError as exc:
            return err(ArchiveImportError(f"cannot read file: {exc}", source=source))
        except ValueError as exc:
            return err(ArchiveImportError(f"not valid JSON: {exc}", source=source))
        if isinstance(raw, Mapping) and raw.get("exportType") == "bulk":
            return ok(self.import_bulk(raw, source=source))
        outcome: Result[ArchivePayload | BulkResult, ArchiveImportError] = self.import_payload(
            raw, source=source
        )
        return outcome

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    @staticmethod
    def _unwrap(
        data: ArchiveData, state_snapshot: GameStateSnapshot | None
    ) -> tuple[Any, GameStateSnapshot | None]:
        if isinstance(data, GameLogPayload | DecisionTreePayload):
            return data.data, state_snapshot or data.state_snapshot
        return data, state_snapshot

    @staticmethod
    def _new_id(content_type: ContentType, now: datetime) -> str:
        return f"{content_type}_{epoch_ms(now)}_{secrets.token_hex(3)}"

    def _register(self, payload: ArchivePayload) -> ArchiveRecord:
        ct = payload.content_type
        record = ArchiveRecord(
            id=payload.meta.id,
            type=ArchiveType(ct),
            name=payload.meta.name,
            timestamp=payload.meta.timestamp,
            size_metric=payload.meta.size_metric,
            key=PAYLOAD_PREFIXES[ct] + payload.meta.id,
            content_type=ct,
        )
        self._kv.set(record.key, payload.to_wire())
        entries = [
            e
            for e in self._raw_list(ct)
            if not (isinstance(e, Mapping) and e.get("id") == record.id)
        ]
        entries.append(record.list_entry())
        self._kv.set(LIST_KEYS[ct], entries)
        return record

    def _raw_list(self, content_type: ContentType) -> list[Any]:
        value = self._kv.get(LIST_KEYS[content_type], [])
        return value if isinstance(value, list) else []

    def _list_records(self, content_type: ContentType) -> list[ArchiveRecord]:
        records: list[ArchiveRecord] = []
        for entry in self._raw_list(content_type):
            if not isinstance(entry, Mapping) or not entry.get("id"):
                continue
            archive_id = str(entry["id"])
            try:
                records.append(
                    ArchiveRecord(
                        id=archive_id,
                        type=ArchiveType(content_type),
                        name=str(entry.get("name") or archive_id),
                        timestamp=entry.get("timestamp", entry.get("ts")),
                        size_metric=entry.get("sizeMetric", entry.get("size")) or 0,
                        key=PAYLOAD_PREFIXES[content_type] + archive_id,
                        content_type=content_type,
                    )
                )
            except ValidationError:
                logger.warning("Skipping malformed %s metadata entry %s", content_type, archive_id)
        return records

    def _auto_keys(self, content_type: ContentType) -> list[str]:
        prefix = AUTO_PREFIXES[content_type]
        return [k for k in self._kv.keys(prefix) if k.endswith(AUTO_SUFFIX)]

    def _auto_records(self, content_type: ContentType) -> list[ArchiveRecord]:
        records: list[ArchiveRecord] = []
        for key in self._auto_keys(content_type):
            stamp = auto_key_time(key)
            if stamp is None:
                continue
            records.append(
                ArchiveRecord(
                    id=key,
                    type=ArchiveType.AUTO,
                    name=key,
                    timestamp=stamp,
                    key=key,
                    content_type=content_type,
                )
            )
        return records

    def _auto_key(self, content_type: ContentType, now: datetime) -> str:
        base = f"{AUTO_PREFIXES[content_type]}{ensure_utc(now):{KEY_STAMP_FORMAT}}"
        taken = set(self._kv.keys(base))
        key = f"{base}{AUTO_SUFFIX}"
        n = 1
        while key in taken:
            key = f"{base}_{n:03d}{AUTO_SUFFIX}"
            n += 1
        return key

    list = list_archives


def _bulk_item_id(item: Any, content: Any, position: int) -> str:
    if isinstance(item, Mapping) and isinstance(item.get("metadata"), Mapping):
        value = item["metadata"].get("id")
        if value:
            return str(value)
    if isinstance(content, Mapping) and isinstance(content.get("meta"), Mapping):
        value = content["meta"].get("id")
        if value:
            return str(value)
    return f"#{position}"


def _write_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(value, f, ensure_ascii=False, indent=2)
        f.write("\n")


def open_archive_store(settings: Settings | None = None) -> ArchiveStore:
    """Build an :class:`ArchiveStore` on the backend named by ``storage_backend``."""
    cfg = settings or load_settings()
    kv: KeyValueStore
    if cfg.storage_backend == "memory":
        kv = MemoryStore()
    else:
        kv = DirectoryStore(cfg.archive_dir)
    return ArchiveStore(kv)


__all__ = [
    "ArchiveStore",
    "open_archive_store",
    "LIST_KEYS",
    "PAYLOAD_PREFIXES",
    "AUTO_PREFIXES",
    "auto_key_time",
    "build_payload",
    "content_type_of",
    "archive_type_of",
]
