"""Branch and archive comparison."""

from branchsync.diff.engine import DiffEngine, classify, render_text_diff, summarize
from branchsync.diff.models import ContentSource, DiffEntry, DiffStatus, DiffSummary
from branchsync.diff.sources import SnapshotSource
from branchsync.diff.tree import DiffDirNode, DiffFileLeaf, build_diff_tree

__all__ = [
    "ContentSource",
    "DiffDirNode",
    "DiffEngine",
    "DiffEntry",
    "DiffFileLeaf",
    "DiffStatus",
    "DiffSummary",
    "SnapshotSource",
    "build_diff_tree",
    "classify",
    "render_text_diff",
    "summarize",
]
