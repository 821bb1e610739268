"""GitHub object store using PyGithub's git data API."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from collections.abc import Callable
from functools import cached_property
from typing import TypeVar

from github import Auth, Github, GithubException, InputGitTreeElement, RateLimitExceededException
from github.Repository import Repository
from requests.exceptions import RequestException

from branchsync.config.models import GitHubConfig
from branchsync.errors import (
    BranchSyncError,
    ConflictError,
    NetworkError,
    NotFound,
    RateLimited,
)
from branchsync.remote.base import ObjectStore
from branchsync.remote.models import BranchInfo, CompareEntry, NewTreeEntry, RefInfo, TreeItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _retry_after(exc: GithubException) -> float | None:
    headers = getattr(exc, "headers", None) or {}
    value = headers.get("retry-after") or headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def translate_error(
    exc: Exception, operation: str, *, ref_write: bool = False
) -> BranchSyncError:
    """Map a PyGithub/requests exception onto the engine's error taxonomy."""
    if isinstance(exc, RateLimitExceededException):
        return RateLimited(
            f"{operation}: rate limit exceeded",
            operation=operation,
            status=exc.status,
            retry_after=_retry_after(exc),
        )
    if isinstance(exc, GithubException):
        status = exc.status
        detail = str(exc.data) if exc.data else str(exc)
        if status == 404:
            return NotFound(f"{operation}: not found", operation=operation, status=status)
        if status == 429 or (status == 403 and "rate limit" in detail.lower()):
            return RateLimited(
                f"{operation}: rate limited ({detail})",
                operation=operation,
                status=status,
                retry_after=_retry_after(exc),
            )
        if ref_write and status in (409, 422):
            return ConflictError(
                f"{operation}: {detail}; {ConflictError.hint}",
                operation=operation,
                status=status,
            )
        return NetworkError(f"{operation}: GitHub returned {status}: {detail}", operation=operation, status=status)
    return NetworkError(f"{operation}: {exc}", operation=operation)


class GitHubObjectStore(ObjectStore):
    """ObjectStore backed by the GitHub REST git data API.

    PyGithub is synchronous, so every call runs in asyncio.to_thread() and is
    bounded by ``request_timeout``. The same timeout is handed to PyGithub so
    the worker thread is released as well.
    """

    def __init__(self, token: str | None = None, config: GitHubConfig | None = None):
        self._config = config or GitHubConfig()
        self._token = token or os.environ.get(self._config.token_env, "")
        if not self._token:
            raise ValueError(
                f"GitHub token required. Pass token= or set {self._config.token_env} env var."
            )

    @cached_property
    def _client(self) -> Github:
        kwargs: dict = {
            "auth": Auth.Token(self._token),
            "timeout": int(self._config.request_timeout),
            "retry": self._config.max_retries,
            "per_page": self._config.per_page,
        }
        if self._config.base_url:
            kwargs["base_url"] = self._config.base_url
        return Github(**kwargs)

    def _get_repo(self, repo: str) -> Repository:
        """Lazy repository handle: no request until an attribute is needed."""
        return self._client.get_repo(repo, lazy=True)

    async def _call(self, operation: str, fn: Callable[[], T], *, ref_write: bool = False) -> T:
        timeout = self._config.request_timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{operation} timed out after {timeout}s", operation=operation) from e
        except (GithubException, RequestException) as e:
            raise translate_error(e, operation, ref_write=ref_write) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_branches(self, repo: str) -> list[BranchInfo]:
        def _sync() -> list[BranchInfo]:
            return [
                BranchInfo(name=b.name, tip_sha=b.commit.sha)
                for b in self._get_repo(repo).get_branches()
            ]

        return await self._call("list_branches", _sync)

    async def get_ref(self, repo: str, branch: str) -> RefInfo | None:
        def _sync() -> RefInfo:
            ref = self._get_repo(repo).get_git_ref(f"heads/{branch}")
            return RefInfo(branch=branch, commit_sha=ref.object.sha)

        try:
            return await self._call("get_ref", _sync)
        except NotFound:
            return None

    async def get_commit_tree(self, repo: str, commit_sha: str) -> str:
        def _sync() -> str:
            return self._get_repo(repo).get_git_commit(commit_sha).tree.sha

        return await self._call("get_commit", _sync)

    async def get_tree(self, repo: str, tree_sha: str, recursive: bool = True) -> list[TreeItem]:
        """List a tree; a truncated recursive listing is rebuilt one level at a time."""

        def _walk(gh_repo: Repository, sha: str, prefix: str) -> list[TreeItem]:
            tree = gh_repo.get_git_tree(sha, recursive=False)
            if tree.raw_data.get("truncated"):
                raise NetworkError(
                    f"get_tree: tree {prefix or sha} has too many entries to list",
                    operation="get_tree",
                )
            items: list[TreeItem] = []
            for e in tree.tree:
                path = f"{prefix}{e.path}"
                items.append(TreeItem(path=path, sha=e.sha, mode=e.mode, type=e.type, size=e.size))
                if e.type == "tree":
                    items.extend(_walk(gh_repo, e.sha, f"{path}/"))
            return items

        def _sync() -> list[TreeItem]:
            gh_repo = self._get_repo(repo)
            tree = gh_repo.get_git_tree(tree_sha, recursive=recursive)
            if tree.raw_data.get("truncated"):
                if not recursive:
                    raise NetworkError(
                        f"get_tree: tree {tree_sha} has too many entries to list",
                        operation="get_tree",
                    )
                logger.warning(
                    "Tree %s of %s was truncated by GitHub, walking subtrees instead", tree_sha, repo
                )
                return _walk(gh_repo, tree_sha, "")
            return [
                TreeItem(path=e.path, sha=e.sha, mode=e.mode, type=e.type, size=e.size)
                for e in tree.tree
            ]

        return await self._call("get_tree", _sync)

    async def get_blob(self, repo: str, sha: str) -> bytes:
        def _sync() -> bytes:
            blob = self._get_repo(repo).get_git_blob(sha)
            if blob.encoding == "base64":
                return base64.b64decode(blob.content)
            return (blob.content or "").encode("utf-8")

        return await self._call("get_blob", _sync)

    async def get_file_at(self, repo: str, path: str, ref: str) -> bytes:
        def _sync() -> bytes:
            gh_repo = self._get_repo(repo)
            content = gh_repo.get_contents(path, ref=ref)
            if isinstance(content, list):
                raise ValueError(f"Path '{path}' is a directory, not a file.")
            if content.encoding == "base64":
                return content.decoded_content
            # Files over 1 MB come back without inline content
            blob = gh_repo.get_git_blob(content.sha)
            return base64.b64decode(blob.content)

        return await self._call("get_file_at", _sync)

    async def compare_refs(self, repo: str, base: str, head: str) -> list[CompareEntry]:
        def _sync() -> list[CompareEntry]:
            comparison = self._get_repo(repo).compare(base, head)
            return [CompareEntry(path=f.filename, status=f.status) for f in comparison.files]

        return await self._call("compare_refs", _sync)

    async def get_viewer(self) -> str:
        def _sync() -> str:
            return self._client.get_user().login

        return await self._call("get_viewer", _sync)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_blob(self, repo: str, data: bytes) -> str:
        def _sync() -> str:
            encoded = base64.b64encode(data).decode("ascii")
            return self._get_repo(repo).create_git_blob(encoded, "base64").sha

        return await self._call("create_blob", _sync)

    async def create_tree(
        self, repo: str, base_tree: str | None, entries: list[NewTreeEntry]
    ) -> str:
        def _sync() -> str:
            gh_repo = self._get_repo(repo)
            # sha=None is sent as null, which removes the path from the base tree
            elements = [
                InputGitTreeElement(path=e.path, mode=e.mode, type="blob", sha=e.sha)
                for e in entries
            ]
            if base_tree is None:
                return gh_repo.create_git_tree(elements).sha
            return gh_repo.create_git_tree(elements, base_tree=gh_repo.get_git_tree(base_tree)).sha

        return await self._call("create_tree", _sync)

    async def create_commit(
        self, repo: str, message: str, tree_sha: str, parents: list[str]
    ) -> str:
        def _sync() -> str:
            gh_repo = self._get_repo(repo)
            tree = gh_repo.get_git_tree(tree_sha)
            parent_commits = [gh_repo.get_git_commit(p) for p in parents]
            return gh_repo.create_git_commit(message, tree, parent_commits).sha

        return await self._call("create_commit", _sync)

    async def create_ref(self, repo: str, branch: str, commit_sha: str) -> None:
        def _sync() -> None:
            self._get_repo(repo).create_git_ref(f"refs/heads/{branch}", commit_sha)

        await self._call("create_ref", _sync, ref_write=True)

    async def update_ref(
        self,
        repo: str,
        branch: str,
        commit_sha: str,
        expected_sha: str | None = None,
    ) -> None:
        def _sync() -> None:
            ref = self._get_repo(repo).get_git_ref(f"heads/{branch}")
            if expected_sha is not None and ref.object.sha != expected_sha:
                raise ConflictError(
                    f"update_ref: {branch} is at {ref.object.sha[:7]}, expected "
                    f"{expected_sha[:7]}; {ConflictError.hint}",
                    operation="update_ref",
                )
            ref.edit(commit_sha, force=False)

        await self._call("update_ref", _sync, ref_write=True)
