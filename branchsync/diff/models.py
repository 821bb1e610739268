"""Data models for the diff subsystem."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol, runtime_checkable


class DiffStatus(str, Enum):
    """Classification of one path, seen from source towards target."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    SAME = "same"
    FETCH_ERROR = "fetch_error"


@dataclass(frozen=True)
class DiffEntry:
    """One compared path.

    ``content`` holds the source bytes and ``target_content`` the target bytes,
    both attached lazily. ``identical_after_normalization`` marks entries whose
    addresses differ but whose normalized text is equal; their status is
    SAME while ``source_address != target_address``.
    """

    path: str
    status: DiffStatus
    source_address: str | None = None
    target_address: str | None = None
    content: bytes | None = None
    target_content: bytes | None = None
    identical_after_normalization: bool = False
    encoding_error: bool = False
    error: str | None = None

    @property
    def is_change(self) -> bool:
        return self.status in (DiffStatus.ADDED, DiffStatus.MODIFIED, DiffStatus.REMOVED)

    @property
    def addresses_equal(self) -> bool:
        return self.source_address == self.target_address

    def with_content(
        self, content: bytes | None = None, target_content: bytes | None = None
    ) -> DiffEntry:
        return replace(
            self,
            content=content if content is not None else self.content,
            target_content=target_content if target_content is not None else self.target_content,
        )

    def describe(self) -> str:
        """Short human-readable status used by the CLI."""
        if self.status is DiffStatus.FETCH_ERROR:
            return f"fetch failed: {self.error}" if self.error else "fetch failed"
        if self.identical_after_normalization:
            return "identical after normalization (raw bytes differ)"
        if self.encoding_error:
            return f"{self.status.value} (not decodable as text, compared as bytes)"
        return self.status.value


@dataclass(frozen=True)
class DiffSummary:
    added: int = 0
    modified: int = 0
    removed: int = 0
    same: int = 0
    normalized_same: int = 0
    fetch_errors: int = 0

    @property
    def changes(self) -> int:
        return self.added + self.modified + self.removed

    @property
    def has_changes(self) -> bool:
        return self.changes > 0


@runtime_checkable
class ContentSource(Protocol):
    """Something that can play the source side of a comparison.

    ``ref`` is the branch name for remote sources and None for archives.
    """

    ref: str | None

    @property
    def label(self) -> str: ...

    @property
    def entries(self) -> Mapping[str, str]: ...

    async def read(self, path: str) -> bytes: ...
