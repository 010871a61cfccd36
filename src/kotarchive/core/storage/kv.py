"""Key-value storage contract shared by the in-memory and on-disk backends.

The archive subsystem treats persistence as an opaque, single-writer key-value
store holding JSON-shaped values. Backends must support exactly four
operations (get / set / remove / enumerate-by-prefix) plus a cheap size probe
used for storage statistics.
"""

from __future__ import annotations

import re
from typing import Any, Protocol, runtime_checkable

from kotarchive.core.errors import StorageError

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


@runtime_checkable
class KeyValueStore(Protocol):
    """Synchronous JSON key-value store."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> tuple[str, ...]: ...

    def size_of(self, key: str) -> int: ...


def check_key(key: str) -> str:
    """Reject keys that are empty or could escape a directory-backed store."""
    if not key or not _KEY_RE.match(key) or key in {".", ".."}:
        raise StorageError(f"Invalid storage key: {key!r}")
    return key


__all__ = ["KeyValueStore", "check_key"]
