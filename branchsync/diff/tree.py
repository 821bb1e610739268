"""Folder/file tree of diff entries for display."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from branchsync.diff.models import DiffEntry


@dataclass
class DiffFileLeaf:
    name: str
    entry: DiffEntry


@dataclass
class DiffDirNode:
    """A folder; ``children`` maps a path segment to a folder or a file."""

    name: str
    path: str
    children: dict[str, DiffTreeNode] = field(default_factory=dict)

    def walk(self) -> Iterator[DiffFileLeaf]:
        """Yield every file leaf below this folder, folders first, sorted by name."""
        dirs = sorted((c for c in self.children.values() if isinstance(c, DiffDirNode)), key=lambda c: c.name)
        files = sorted((c for c in self.children.values() if isinstance(c, DiffFileLeaf)), key=lambda c: c.name)
        for child in dirs:
            yield from child.walk()
        yield from files


DiffTreeNode = DiffDirNode | DiffFileLeaf


def build_diff_tree(entries: Iterable[DiffEntry]) -> DiffDirNode:
    """Group a flat list of entries by folder.

    Raises ValueError when a path is used both as a file and as a folder.
    """
    root = DiffDirNode(name="", path="")
    for entry in entries:
        *folders, filename = entry.path.split("/")
        node = root
        for segment in folders:
            child = node.children.get(segment)
            if child is None:
                child = DiffDirNode(
                    name=segment, path=f"{node.path}/{segment}" if node.path else segment
                )
                node.children[segment] = child
            elif isinstance(child, DiffFileLeaf):
                raise ValueError(f"{child.entry.path} is both a file and a folder")
            node = child
        if isinstance(node.children.get(filename), DiffDirNode):
            raise ValueError(f"{entry.path} is both a file and a folder")
        node.children[filename] = DiffFileLeaf(name=filename, entry=entry)
    return root
