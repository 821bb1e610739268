"""Data models for tree snapshots."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType

DEFAULT_MODE = "100644"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TreeSnapshot:
    """Path -> content address mapping of one ref at one point in time.

    Entries keep the order in which the remote listed them. A snapshot of a
    ref that does not exist has ``commit_sha=None`` and no entries.
    """

    repo: str
    ref: str
    entries: Mapping[str, str]
    commit_sha: str | None = None
    tree_sha: str | None = None
    modes: Mapping[str, str] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))
        object.__setattr__(self, "modes", MappingProxyType(dict(self.modes)))

    @classmethod
    def absent(cls, repo: str, ref: str) -> TreeSnapshot:
        return cls(repo=repo, ref=ref, entries={})

    @property
    def exists(self) -> bool:
        return self.commit_sha is not None

    @property
    def addresses(self) -> frozenset[str]:
        return frozenset(self.entries.values())

    def address_of(self, path: str) -> str | None:
        return self.entries.get(path)

    def mode_of(self, path: str) -> str:
        return self.modes.get(path, DEFAULT_MODE)

    def __len__(self) -> int:
        return len(self.entries)
