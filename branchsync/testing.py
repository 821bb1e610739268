"""In-memory ObjectStore for tests and offline experiments."""

from __future__ import annotations

import asyncio
import hashlib
import itertools
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass

from branchsync.errors import ConflictError, NetworkError, NotFound
from branchsync.hashing import git_blob_sha
from branchsync.remote.base import ObjectStore
from branchsync.remote.models import BranchInfo, CompareEntry, NewTreeEntry, RefInfo, TreeItem
from branchsync.snapshot.models import DEFAULT_MODE

WRITE_OPERATIONS = frozenset(
    {"create_blob", "create_tree", "create_commit", "create_ref", "update_ref"}
)


@dataclass(frozen=True)
class _Commit:
    tree: str
    parents: tuple[str, ...]
    message: str


class InMemoryObjectStore(ObjectStore):
    """Git object model held in dictionaries.

    Blobs are addressed with the real git blob hash. Trees are flat
    ``path -> (blob sha, mode)`` maps with a deterministic synthetic SHA.
    Every call is recorded in ``calls`` (method name plus key arguments) and
    counted in ``call_counts``. ``fail_on`` maps an operation name to the
    exception it should raise; ``blob_failures`` does the same per blob
    address. ``delay`` makes every call suspend for that many seconds.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, dict[str, tuple[str, str]]] = {}
        self.commits: dict[str, _Commit] = {}
        self.refs: dict[tuple[str, str], str] = {}
        self.calls: list[tuple] = []
        self.call_counts: Counter[str] = Counter()
        self.fail_on: dict[str, BaseException] = {}
        self.blob_failures: dict[str, BaseException] = {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = itertools.count(1)

    # ------------------------------------------------------------------
    # Seeding and inspection helpers
    # ------------------------------------------------------------------

    def _store_blob(self, data: bytes) -> str:
        sha = git_blob_sha(data)
        self.blobs[sha] = data
        return sha

    def _store_tree(self, files: Mapping[str, tuple[str, str]]) -> str:
        digest = hashlib.sha1()
        for path in sorted(files):
            sha, mode = files[path]
            digest.update(f"{mode} {path}\0{sha}\n".encode())
        tree_sha = digest.hexdigest()
        self.trees[tree_sha] = dict(files)
        return tree_sha

    def _store_commit(self, tree: str, parents: list[str], message: str) -> str:
        digest = hashlib.sha1(
            f"commit {tree} {' '.join(parents)} {message} {next(self._counter)}".encode()
        )
        sha = digest.hexdigest()
        self.commits[sha] = _Commit(tree=tree, parents=tuple(parents), message=message)
        return sha

    def add_branch(
        self,
        repo: str,
        branch: str,
        files: Mapping[str, bytes],
        *,
        modes: Mapping[str, str] | None = None,
        message: str = "seed",
    ) -> str:
        """Create or replace a branch holding exactly *files*. Not recorded as a write."""
        modes = modes or {}
        tree = self._store_tree(
            {path: (self._store_blob(data), modes.get(path, DEFAULT_MODE)) for path, data in files.items()}
        )
        parent = self.refs.get((repo, branch))
        commit = self._store_commit(tree, [parent] if parent else [], message)
        self.refs[(repo, branch)] = commit
        return commit

    def files_at(self, repo: str, branch: str) -> dict[str, bytes]:
        """Current content of a branch as path -> bytes."""
        commit = self.commits[self.refs[(repo, branch)]]
        return {path: self.blobs[sha] for path, (sha, _) in self.trees[commit.tree].items()}

    def head(self, repo: str, branch: str) -> str | None:
        return self.refs.get((repo, branch))

    @property
    def write_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in WRITE_OPERATIONS]

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        self.call_counts[operation] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        failure = self.fail_on.get(operation)
        if failure is not None:
            raise failure

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------

    async def list_branches(self, repo: str) -> list[BranchInfo]:
        await self._enter("list_branches", repo)
        return [
            BranchInfo(name=branch, tip_sha=sha)
            for (r, branch), sha in sorted(self.refs.items())
            if r == repo
        ]

    async def get_ref(self, repo: str, branch: str) -> RefInfo | None:
        await self._enter("get_ref", repo, branch)
        sha = self.refs.get((repo, branch))
        return RefInfo(branch=branch, commit_sha=sha) if sha else None

    async def get_commit_tree(self, repo: str, commit_sha: str) -> str:
        await self._enter("get_commit_tree", repo, commit_sha)
        commit = self.commits.get(commit_sha)
        if commit is None:
            raise NotFound(f"get_commit: {commit_sha} not found", operation="get_commit", status=404)
        return commit.tree

    async def get_tree(self, repo: str, tree_sha: str, recursive: bool = True) -> list[TreeItem]:
        await self._enter("get_tree", repo, tree_sha)
        files = self.trees.get(tree_sha)
        if files is None and (repo, tree_sha) in self.refs:
            files = self.trees[self.commits[self.refs[(repo, tree_sha)]].tree]
        if files is None:
            raise NotFound(f"get_tree: {tree_sha} not found", operation="get_tree", status=404)

        items: list[TreeItem] = []
        folders: set[str] = set()
        for path, (sha, mode) in files.items():
            parts = path.split("/")
            for depth in range(1, len(parts)):
                folder = "/".join(parts[:depth])
                if folder not in folders:
                    folders.add(folder)
                    items.append(TreeItem(path=folder, sha="0" * 40, mode="040000", type="tree"))
            if recursive or len(parts) == 1:
                items.append(
                    TreeItem(path=path, sha=sha, mode=mode, type="blob", size=len(self.blobs[sha]))
                )
        return items

    async def get_blob(self, repo: str, sha: str) -> bytes:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self._enter("get_blob", repo, sha)
            failure = self.blob_failures.get(sha)
            if failure is not None:
                raise failure
            if sha not in self.blobs:
                raise NotFound(f"get_blob: {sha} not found", operation="get_blob", status=404)
            return self.blobs[sha]
        finally:
            self.in_flight -= 1

    async def get_file_at(self, repo: str, path: str, ref: str) -> bytes:
        await self._enter("get_file_at", repo, path, ref)
        commit_sha = self.refs.get((repo, ref))
        files = self.trees[self.commits[commit_sha].tree] if commit_sha else {}
        if path not in files:
            raise NotFound(f"get_file_at: {path}@{ref} not found", operation="get_file_at", status=404)
        return self.blobs[files[path][0]]

    async def create_blob(self, repo: str, data: bytes) -> str:
        await self._enter("create_blob", repo, git_blob_sha(data))
        return self._store_blob(data)

    async def create_tree(
        self, repo: str, base_tree: str | None, entries: list[NewTreeEntry]
    ) -> str:
        await self._enter("create_tree", repo, base_tree, tuple(e.path for e in entries))
        if base_tree is not None and base_tree not in self.trees:
            raise NetworkError(f"create_tree: base tree {base_tree} not found", operation="create_tree", status=422)
        files = dict(self.trees[base_tree]) if base_tree else {}
        for entry in entries:
            if entry.sha is None:
                if files.pop(entry.path, None) is None:
                    raise NetworkError(
                        f"create_tree: cannot delete missing path {entry.path}",
                        operation="create_tree",
                        status=422,
                    )
                continue
            if entry.sha not in self.blobs:
                raise NetworkError(
                    f"create_tree: blob {entry.sha} not found", operation="create_tree", status=422
                )
            files[entry.path] = (entry.sha, entry.mode)
        return self._store_tree(files)

    async def create_commit(
        self, repo: str, message: str, tree_sha: str, parents: list[str]
    ) -> str:
        await self._enter("create_commit", repo, tree_sha, tuple(parents))
        if tree_sha not in self.trees:
            raise NetworkError(f"create_commit: tree {tree_sha} not found", operation="create_commit", status=422)
        return self._store_commit(tree_sha, parents, message)

    async def create_ref(self, repo: str, branch: str, commit_sha: str) -> None:
        await self._enter("create_ref", repo, branch, commit_sha)
        if (repo, branch) in self.refs:
            raise ConflictError(
                f"create_ref: {branch} already exists; {ConflictError.hint}",
                operation="create_ref",
                status=422,
            )
        self.refs[(repo, branch)] = commit_sha

    async def update_ref(
        self,
        repo: str,
        branch: str,
        commit_sha: str,
        expected_sha: str | None = None,
    ) -> None:
        await self._enter("update_ref", repo, branch, commit_sha, expected_sha)
        current = self.refs.get((repo, branch))
        if current is None:
            raise NotFound(f"update_ref: {branch} not found", operation="update_ref", status=404)
        if expected_sha is not None and current != expected_sha:
            raise ConflictError(
                f"update_ref: {branch} moved; {ConflictError.hint}", operation="update_ref"
            )
        if current not in self.commits[commit_sha].parents:
            raise ConflictError(
                f"update_ref: not a fast forward; {ConflictError.hint}",
                operation="update_ref",
                status=422,
            )
        self.refs[(repo, branch)] = commit_sha

    async def compare_refs(self, repo: str, base: str, head: str) -> list[CompareEntry]:
        await self._enter("compare_refs", repo, base, head)
        if (repo, base) not in self.refs or (repo, head) not in self.refs:
            raise NotFound(f"compare_refs: {base}...{head} not found", operation="compare_refs", status=404)
        old = self.trees[self.commits[self.refs[(repo, base)]].tree]
        new = self.trees[self.commits[self.refs[(repo, head)]].tree]
        entries = []
        for path in sorted(old.keys() | new.keys()):
            if path not in old:
                entries.append(CompareEntry(path=path, status="added"))
            elif path not in new:
                entries.append(CompareEntry(path=path, status="removed"))
            elif old[path] != new[path]:
                entries.append(CompareEntry(path=path, status="modified"))
        return entries

    async def get_viewer(self) -> str:
        await self._enter("get_viewer")
        return "octocat"
