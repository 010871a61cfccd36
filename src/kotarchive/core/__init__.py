"""Core package initializer for kot-archive.

Settings, errors, timers, events and contracts live in submodules; import them
directly, e.g.:
    from kotarchive.core.settings import settings, load_settings, get_logger
"""

from __future__ import annotations

__all__ = ["__doc__"]
