"""Abstract remote object-store interface driven by the engine."""

from abc import ABC, abstractmethod

from branchsync.remote.models import BranchInfo, CompareEntry, NewTreeEntry, RefInfo, TreeItem


class ObjectStore(ABC):
    """Git object store reachable over the network.

    Every method is a coroutine and every call may suspend. Implementations
    raise the errors from ``branchsync.errors``: NotFound, RateLimited,
    ConflictError (ref writes only) and NetworkError for everything else.
    """

    @abstractmethod
    async def list_branches(self, repo: str) -> list[BranchInfo]:
        """List branches with their tip commit SHAs."""
        ...

    @abstractmethod
    async def get_ref(self, repo: str, branch: str) -> RefInfo | None:
        """Resolve a branch to its commit, or None when the branch does not exist."""
        ...

    @abstractmethod
    async def get_commit_tree(self, repo: str, commit_sha: str) -> str:
        """Return the root tree SHA of a commit."""
        ...

    @abstractmethod
    async def get_tree(self, repo: str, tree_sha: str, recursive: bool = True) -> list[TreeItem]:
        """List a tree (by SHA or ref name), optionally recursively."""
        ...

    @abstractmethod
    async def get_blob(self, repo: str, sha: str) -> bytes:
        """Fetch the exact bytes of a blob."""
        ...

    @abstractmethod
    async def get_file_at(self, repo: str, path: str, ref: str) -> bytes:
        """Fetch a file's bytes by path at a ref."""
        ...

    @abstractmethod
    async def create_blob(self, repo: str, data: bytes) -> str:
        """Upload bytes as a blob and return its content address."""
        ...

    @abstractmethod
    async def create_tree(
        self, repo: str, base_tree: str | None, entries: list[NewTreeEntry]
    ) -> str:
        """Create a tree layered on *base_tree* (or from scratch) and return its SHA."""
        ...

    @abstractmethod
    async def create_commit(
        self, repo: str, message: str, tree_sha: str, parents: list[str]
    ) -> str:
        """Create a commit object and return its SHA."""
        ...

    @abstractmethod
    async def create_ref(self, repo: str, branch: str, commit_sha: str) -> None:
        """Create a new branch. Raises ConflictError if it already exists."""
        ...

    @abstractmethod
    async def update_ref(
        self,
        repo: str,
        branch: str,
        commit_sha: str,
        expected_sha: str | None = None,
    ) -> None:
        """Move a branch forward.

        Raises ConflictError if the branch no longer points at *expected_sha*
        or the update is not a fast-forward. Never forces.
        """
        ...

    @abstractmethod
    async def compare_refs(self, repo: str, base: str, head: str) -> list[CompareEntry]:
        """Files changed between two refs according to the remote."""
        ...

    @abstractmethod
    async def get_viewer(self) -> str:
        """Login of the authenticated user (validates the credential)."""
        ...
