"""
Model state snapshots.

Capture/restore/dispose with exactly-once release.
"""

from .frame import SearchFrame
from .store import Snapshot, SnapshotStore

__all__ = [
    "SearchFrame",
    "Snapshot",
    "SnapshotStore",
]
