"""ZIP archive import (as a one-shot content source) and export."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePosixPath

from branchsync.errors import ArchiveParseError
from branchsync.hashing import ContentHasher, GitBlobHasher
from branchsync.paths import PathFilter, normalize_path

logger = logging.getLogger(__name__)

# Metadata folders some archivers add next to the real content
_IGNORED_PREFIXES = ("__MACOSX/",)


class ArchiveSource:
    """In-memory files parsed once from an uploaded archive.

    Behaves like a snapshot with no backing ref: ``entries`` maps each path to
    the content address of its exact bytes. Never cached.
    """

    ref: str | None = None

    def __init__(self, name: str, files: Mapping[str, bytes], hasher: ContentHasher | None = None):
        self.name = name
        self._files = dict(files)
        hasher = hasher or GitBlobHasher()
        self.entries: dict[str, str] = {path: hasher.hash(data) for path, data in self._files.items()}

    @property
    def label(self) -> str:
        return f"archive:{self.name}"

    async def read(self, path: str) -> bytes:
        try:
            return self._files[path]
        except KeyError:
            raise KeyError(f"{path} is not part of {self.name}") from None

    def __len__(self) -> int:
        return len(self._files)


def _clean_member_name(name: str, strip_components: int) -> str | None:
    path = normalize_path(name)
    parts = PurePosixPath(path).parts
    if ".." in parts or (parts and parts[0].endswith(":")):
        raise ArchiveParseError(f"Unsafe path in archive: {name!r}", operation="read_archive")
    parts = parts[strip_components:]
    if not parts:
        return None
    return "/".join(parts)


def read_archive(
    data: bytes,
    path_filter: PathFilter | None = None,
    *,
    name: str = "archive.zip",
    strip_components: int = 0,
    hasher: ContentHasher | None = None,
) -> ArchiveSource:
    """Parse a ZIP blob into an ArchiveSource holding only tracked files.

    *strip_components* drops that many leading folders from every member
    (useful for archives that wrap everything in a single top-level folder).
    Raises ArchiveParseError for corrupt archives, unsafe member names and
    members that collide after path normalization.
    """
    path_filter = path_filter or PathFilter()
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ArchiveParseError(f"{name} is not a valid ZIP archive: {e}", operation="read_archive") from e

    files: dict[str, bytes] = {}
    with zf:
        for info in zf.infolist():
            if info.is_dir() or info.filename.startswith(_IGNORED_PREFIXES):
                continue
            path = _clean_member_name(info.filename, strip_components)
            if path is None or not path_filter.matches(path):
                continue
            if path in files:
                raise ArchiveParseError(
                    f"Duplicate path {path!r} in {name}", operation="read_archive"
                )
            try:
                files[path] = zf.read(info)
            except (zipfile.BadZipFile, OSError, RuntimeError) as e:
                raise ArchiveParseError(
                    f"Cannot extract {info.filename!r} from {name}: {e}", operation="read_archive"
                ) from e

    logger.info("Loaded %d tracked file(s) from %s", len(files), name)
    return ArchiveSource(name=name, files=files, hasher=hasher)


def read_archive_file(
    path: Path,
    path_filter: PathFilter | None = None,
    *,
    strip_components: int = 0,
) -> ArchiveSource:
    """Read an archive from disk."""
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ArchiveParseError(f"Cannot read {path}: {e}", operation="read_archive") from e
    return read_archive(data, path_filter, name=path.name, strip_components=strip_components)


def export_archive(files: Mapping[str, bytes] | Iterable[tuple[str, bytes]]) -> bytes:
    """Write files into a single deflated ZIP and return its bytes."""
    items = files.items() if isinstance(files, Mapping) else files
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path, data in items:
            zf.writestr(normalize_path(path), data)
    return buf.getvalue()


def default_export_name(repo: str, source: str, target: str | None = None) -> str:
    """``export_<repo>_<source>_vs_<target>.zip`` with path separators flattened.

    Without *target* the name is ``export_<repo>_<source>.zip``.
    """
    repo_name = repo.rsplit("/", 1)[-1]
    safe = [part.replace("/", "-") for part in (repo_name, source, target) if part is not None]
    if target is None:
        return f"export_{safe[0]}_{safe[1]}.zip"
    return f"export_{safe[0]}_{safe[1]}_vs_{safe[2]}.zip"
