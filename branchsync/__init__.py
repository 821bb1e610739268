"""branchsync: compare git branches or ZIP archives and sync selected files as one commit."""

from branchsync.archive import ArchiveSource, export_archive, read_archive
from branchsync.concurrency import CancelToken, map_limit
from branchsync.diff import DiffEngine, DiffEntry, DiffStatus
from branchsync.hashing import git_blob_sha
from branchsync.normalize import TextNormalizer, normalize_text
from branchsync.snapshot import TreeSnapshot, TreeSnapshotStore
from branchsync.sync import CommitResult, SyncPlanner

__version__ = "0.1.0"

__all__ = [
    "ArchiveSource",
    "CancelToken",
    "CommitResult",
    "DiffEngine",
    "DiffEntry",
    "DiffStatus",
    "SyncPlanner",
    "TextNormalizer",
    "TreeSnapshot",
    "TreeSnapshotStore",
    "export_archive",
    "git_blob_sha",
    "map_limit",
    "normalize_text",
    "read_archive",
]
