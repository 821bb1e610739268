"""Tree snapshot acquisition and caching."""

from branchsync.snapshot.models import DEFAULT_MODE, TreeSnapshot
from branchsync.snapshot.store import TreeSnapshotStore

__all__ = ["DEFAULT_MODE", "TreeSnapshot", "TreeSnapshotStore"]
