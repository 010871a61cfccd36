"""Disk-backed key-value store: one JSON file per key.

- Default directory: `KOT_ARCHIVE_DIR` env var or `artifacts/archives/`
- Filename pattern:  `{key}.json` (keys are restricted to `[A-Za-z0-9_.-]`)
- Content:           the value, pretty-printed UTF-8 JSON

Writes go to a sibling temp file first and are moved into place with
`os.replace`, so a crash mid-write never leaves a truncated archive behind.

Usage
-----
>>> store = DirectoryStore()           # uses default dir
>>> store.set("KOT_ARCHIVE_GAME_LOGS", [])
>>> store.keys("KOT_ARCHIVE_")
('KOT_ARCHIVE_GAME_LOGS',)
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from kotarchive.core.errors import StorageError
from kotarchive.core.settings import get_logger, load_settings
from kotarchive.core.storage.kv import check_key

logger = get_logger("kotarchive.storage")

_SUFFIX = ".json"


def _default_dir() -> Path:
    """Return the default base directory for archive files."""
    root = os.getenv("KOT_ARCHIVE_DIR")
    return Path(root) if root else load_settings().archive_dir


class DirectoryStore:
    """Persist JSON values as individual files under ``base_dir``."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir: Path = base_dir if base_dir is not None else _default_dir()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{check_key(key)}{_SUFFIX}"

    def get(self, key: str, default: Any = None) -> Any:
        """Read ``key``; unreadable or corrupt files degrade to ``default``."""
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError):
            logger.warning("Unreadable archive file %s; treating as missing", path, exc_info=True)
            return default

    def set(self, key: str, value: Any) -> None:
        """Write ``value`` to ``{key}.json`` atomically.

        Raises
        ------
        StorageError
            If the value cannot be serialized or the file cannot be written.
        """
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            text = json.dumps(value, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(text)
                f.write("\n")
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to remove {path}: {exc}") from exc
        return True

    def keys(self, prefix: str = "") -> tuple[str, ...]:
        """Return stored keys starting with ``prefix``, sorted lexicographically."""
        found = (
            p.name[: -len(_SUFFIX)]
            for p in self.base_dir.iterdir()
            if p.is_file() and p.name.endswith(_SUFFIX)
        )
        return tuple(sorted(k for k in found if k.startswith(prefix)))

    def size_of(self, key: str) -> int:
        path = self._path(key)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return 0


__all__ = ["DirectoryStore"]
