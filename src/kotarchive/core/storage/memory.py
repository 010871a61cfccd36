"""
In-memory key-value store with revision tracking.

Values are held as serialized JSON text, the way a browser's local storage
holds strings. That gives two properties the archive layer relies on:

- **Isolation**: callers never share mutable objects with the store; every
  ``get`` returns a fresh copy, so an archived log cannot be edited in place.
- **Honest sizes**: ``size_of`` reports the serialized length, which feeds the
  storage statistics exactly as the disk backend does.

Every mutation bumps a revision counter, which tests use to assert that
read-only operations (listing, filtering, analytics) never write.
"""

from __future__ import annotations

import json
from typing import Any

from kotarchive.core.errors import StorageError
from kotarchive.core.storage.kv import check_key


class MemoryStore:
    """Volatile JSON key-value store.

    Attributes
    ----------
    _store : dict[str, str]
        Serialized values keyed by storage key.
    _rev : int
        Monotonically increasing revision counter (bumps on every mutation).
    """

    __slots__ = ("_store", "_rev")

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._rev: int = 0

    @property
    def revision(self) -> int:
        return self._rev

    def get(self, key: str, default: Any = None) -> Any:
        """Return a fresh copy of the value under ``key``, or ``default``."""
        raw = self._store.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        """Serialize and store ``value`` under ``key``.

        Raises
        ------
        StorageError
            If the key is invalid or the value is not JSON-serializable.
        """
        check_key(key)
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc
        self._store[key] = raw
        self._rev += 1

    def remove(self, key: str) -> bool:
        """Delete ``key``; return False if it did not exist."""
        if key not in self._store:
            return False
        del self._store[key]
        self._rev += 1
        return True

    def keys(self, prefix: str = "") -> tuple[str, ...]:
        """Return matching keys as a sorted tuple (lexicographic order)."""
        return tuple(sorted(k for k in self._store if k.startswith(prefix)))

    def size_of(self, key: str) -> int:
        raw = self._store.get(key)
        return len(raw) if raw is not None else 0

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self._store)


__all__ = ["MemoryStore"]
