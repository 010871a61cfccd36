"""Exception hierarchy shared by the archive, snapshot and replay services."""

from __future__ import annotations


class KotArchiveError(Exception):
    """Base class for every error raised by kot-archive."""


class StorageError(KotArchiveError):
    """A key-value backend failed to read, write or remove a key."""


class ArchiveNotFoundError(KotArchiveError):
    """The requested archive has no persisted payload."""

    def __init__(self, archive_id: str) -> None:
        super().__init__(f"Archive {archive_id} not found")
        self.archive_id = archive_id


class ArchiveImportError(KotArchiveError):
    """An import file was rejected before anything was registered.

    Carried inside :class:`kotarchive.core.result.Err` rather than raised.
    """

    def __init__(self, reason: str, *, source: str | None = None) -> None:
        super().__init__(reason if source is None else f"{source}: {reason}")
        self.reason = reason
        self.source = source


class ReplayError(KotArchiveError, ValueError):
    """A payload cannot be replayed (e.g. a decision tree instead of a log)."""


__all__ = [
    "KotArchiveError",
    "StorageError",
    "ArchiveNotFoundError",
    "ArchiveImportError",
    "ReplayError",
]
