"""Cached tree snapshots keyed by (repository, ref)."""

from __future__ import annotations

import asyncio
import logging

from branchsync.paths import PathFilter, normalize_path
from branchsync.remote.base import ObjectStore
from branchsync.snapshot.models import DEFAULT_MODE, TreeSnapshot

logger = logging.getLogger(__name__)


class TreeSnapshotStore:
    """Fetches and caches the tracked files of a ref.

    The store is the only writer of its cache. Each (repo, ref) key has its own
    asyncio.Lock, so concurrent requests for one key share a single fetch and
    an invalidation never interleaves with a fill; different keys never wait
    on each other.
    """

    def __init__(self, remote: ObjectStore, path_filter: PathFilter | None = None) -> None:
        self.remote = remote
        self.path_filter = path_filter or PathFilter()
        self._cache: dict[tuple[str, str], TreeSnapshot] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, key: tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get_snapshot(self, repo: str, ref: str) -> TreeSnapshot:
        """Return the snapshot of *ref*, fetching it on a cache miss.

        A ref that does not exist yields ``TreeSnapshot.absent`` rather than
        an error. Absent results are not cached.
        """
        key = (repo, ref)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Snapshot cache hit: %s@%s", repo, ref)
            return cached

        async with self._lock_for(key):
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            logger.debug("Snapshot cache miss: %s@%s", repo, ref)
            snapshot = await self._fetch(repo, ref)
            if snapshot.exists:
                self._cache[key] = snapshot
            return snapshot

    async def invalidate(self, repo: str, ref: str) -> None:
        """Drop the cached snapshot so the next read reflects recent writes."""
        key = (repo, ref)
        async with self._lock_for(key):
            if self._cache.pop(key, None) is not None:
                logger.debug("Snapshot invalidated: %s@%s", repo, ref)

    def clear(self) -> None:
        self._cache.clear()

    def cached_keys(self) -> list[tuple[str, str]]:
        return list(self._cache)

    async def _fetch(self, repo: str, ref: str) -> TreeSnapshot:
        ref_info = await self.remote.get_ref(repo, ref)
        if ref_info is None:
            logger.info("Ref %s does not exist in %s", ref, repo)
            return TreeSnapshot.absent(repo, ref)

        tree_sha = await self.remote.get_commit_tree(repo, ref_info.commit_sha)
        items = await self.remote.get_tree(repo, tree_sha, recursive=True)

        entries: dict[str, str] = {}
        modes: dict[str, str] = {}
        for item in items:
            if item.type != "blob":
                continue
            path = normalize_path(item.path)
            if not self.path_filter.matches(path):
                continue
            entries[path] = item.sha
            if item.mode != DEFAULT_MODE:
                modes[path] = item.mode

        logger.debug(
            "Fetched %s@%s (%s): %d tracked of %d entries",
            repo, ref, ref_info.commit_sha[:7], len(entries), len(items),
        )
        return TreeSnapshot(
            repo=repo,
            ref=ref,
            entries=entries,
            commit_sha=ref_info.commit_sha,
            tree_sha=tree_sha,
            modes=modes,
        )
