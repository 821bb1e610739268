"""Path keys and the tracked-extension filter."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass

DEFAULT_EXTENSIONS: tuple[str, ...] = (".xml",)


def normalize_path(path: str) -> str:
    """Forward slashes, no leading slash: ``\\a\\b.xml`` and ``/a/b.xml`` -> ``a/b.xml``."""
    return path.replace("\\", "/").lstrip("/")


@dataclass(frozen=True)
class PathFilter:
    """Keeps paths whose extension is tracked and that match no exclude glob.

    Extension matching is case-insensitive. An empty ``extensions`` tuple
    tracks every file.
    """

    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    exclude: tuple[str, ...] = ()

    def matches(self, path: str) -> bool:
        lowered = path.lower()
        if self.extensions and not any(lowered.endswith(ext.lower()) for ext in self.extensions):
            return False
        # Patterns with '/' match against the full path, others the file name only
        name = path.rsplit("/", 1)[-1]
        for pattern in self.exclude:
            target = path if "/" in pattern else name
            if fnmatch.fnmatch(target, pattern):
                return False
        return True


def build_path_filter(
    extensions: list[str] | tuple[str, ...] | None = None,
    exclude: list[str] | tuple[str, ...] | None = None,
) -> PathFilter:
    """Build a PathFilter, accepting extensions with or without the leading dot."""
    exts = tuple(
        e if e.startswith(".") else f".{e}"
        for e in (DEFAULT_EXTENSIONS if extensions is None else extensions)
        if e
    )
    return PathFilter(extensions=exts, exclude=tuple(p for p in (exclude or []) if p))
