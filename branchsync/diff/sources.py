"""Content sources backed by a remote tree snapshot."""

from __future__ import annotations

from collections.abc import Mapping

from branchsync.remote.base import ObjectStore
from branchsync.snapshot.models import TreeSnapshot


class SnapshotSource:
    """A branch snapshot used as the source side of a comparison.

    Content is read by blob address, so every read returns exactly the bytes
    the snapshot was taken from even if the branch has moved since.
    """

    def __init__(self, snapshot: TreeSnapshot, remote: ObjectStore) -> None:
        self.snapshot = snapshot
        self.remote = remote
        self.ref: str | None = snapshot.ref

    @property
    def label(self) -> str:
        return f"branch:{self.snapshot.ref}"

    @property
    def entries(self) -> Mapping[str, str]:
        return self.snapshot.entries

    async def read(self, path: str) -> bytes:
        address = self.snapshot.address_of(path)
        if address is None:
            raise KeyError(f"{path} is not tracked in {self.snapshot.ref}")
        return await self.remote.get_blob(self.snapshot.repo, address)
