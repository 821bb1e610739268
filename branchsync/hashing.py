"""Git-compatible content addressing.

Addresses are computed over the exact bytes that would be stored, so a locally
computed address can be compared with the blob SHA the remote reports without
transferring any content. Text normalization never happens here.
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

EMPTY_BLOB_SHA = "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"


def git_blob_sha(data: bytes) -> str:
    """Return the git blob SHA-1 of *data*: ``sha1(b"blob <len>\\0" + data)``."""
    if isinstance(data, str):
        raise TypeError("git_blob_sha() hashes raw bytes, not text")
    header = b"blob " + str(len(data)).encode("ascii") + b"\0"
    digest = hashlib.sha1()
    digest.update(header)
    digest.update(data)
    return digest.hexdigest()


@runtime_checkable
class ContentHasher(Protocol):
    """Anything that maps a byte sequence to the backing store's content address."""

    def hash(self, data: bytes) -> str: ...


class GitBlobHasher:
    """Default hasher matching GitHub's SHA-1 object format."""

    algorithm = "sha1"

    def hash(self, data: bytes) -> str:
        return git_blob_sha(data)
