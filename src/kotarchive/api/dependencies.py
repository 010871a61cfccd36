"""
Process-wide service container for the HTTP API.

The archive store and the analytics engine are built once per process from
the settings and shared by every request. Tests swap the instance for one
backed by a :class:`MemoryStore`::

    ArchiveServices.install(ArchiveServices(store=ArchiveStore(MemoryStore())))
"""

from __future__ import annotations

from typing import ClassVar

from kotarchive.core.settings import Settings, load_settings
from kotarchive.services.analytics import AnalyticsEngine
from kotarchive.services.archive_store import ArchiveStore, open_archive_store


class ArchiveServices:
    """Shared store + analytics engine."""

    # Singleton instance placeholder (initialized in app startup)
    _instance: ClassVar[ArchiveServices | None] = None

    def __init__(self, store: ArchiveStore | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or load_settings()
        self.store = store or open_archive_store(self.settings)
        self.analytics = AnalyticsEngine(self.store, settings=self.settings)

    @classmethod
    def get_instance(cls) -> ArchiveServices:
        """Accessor for the global singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def install(cls, services: ArchiveServices | None) -> None:
        """Replace (or, with None, drop) the global instance."""
        cls._instance = services


# Global accessor, used as a FastAPI dependency
def get_services() -> ArchiveServices:
    return ArchiveServices.get_instance()


__all__ = ["ArchiveServices", "get_services"]
