"""kot-archive: archival and state-accurate replay for King of Tokyo sessions.

The package captures game-state snapshots, persists them next to ordered
event logs under a retention policy, aggregates analytics across archives,
and drives controllable playback of past sessions.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.3.0"
