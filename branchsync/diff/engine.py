"""Directed file-level comparison of a content source against a target branch."""

from __future__ import annotations

import asyncio
import difflib
import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace

from branchsync.concurrency import CancelToken, map_limit, unwrap_results
from branchsync.diff.models import ContentSource, DiffEntry, DiffStatus, DiffSummary
from branchsync.diff.sources import SnapshotSource
from branchsync.errors import EncodingError, NotFound
from branchsync.normalize import TextNormalizer
from branchsync.remote.models import CompareEntry
from branchsync.snapshot.models import TreeSnapshot
from branchsync.snapshot.store import TreeSnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_FETCH_CONCURRENCY = 24


def classify(
    source: Mapping[str, str],
    target: Mapping[str, str],
    include_deletions: bool = False,
) -> list[DiffEntry]:
    """Classify every source path against the target by content address.

    Output follows source enumeration order. Paths that exist only in the
    target are reported as REMOVED, after all source paths, only when
    *include_deletions* is set.
    """
    entries: list[DiffEntry] = []
    for path, address in source.items():
        target_address = target.get(path)
        if target_address is None:
            status = DiffStatus.ADDED
        elif target_address == address:
            status = DiffStatus.SAME
        else:
            status = DiffStatus.MODIFIED
        entries.append(
            DiffEntry(
                path=path,
                status=status,
                source_address=address,
                target_address=target_address,
            )
        )

    if include_deletions:
        for path, target_address in target.items():
            if path not in source:
                entries.append(
                    DiffEntry(path=path, status=DiffStatus.REMOVED, target_address=target_address)
                )
    return entries


def summarize(entries: Iterable[DiffEntry]) -> DiffSummary:
    counts = {
        "added": 0, "modified": 0, "removed": 0,
        "same": 0, "normalized_same": 0, "fetch_errors": 0,
    }
    for entry in entries:
        if entry.status is DiffStatus.FETCH_ERROR:
            counts["fetch_errors"] += 1
        elif entry.status is DiffStatus.SAME:
            counts["same"] += 1
            if entry.identical_after_normalization:
                counts["normalized_same"] += 1
        else:
            counts[entry.status.value] += 1
    return DiffSummary(**counts)


def render_text_diff(
    old: bytes | None,
    new: bytes | None,
    from_label: str,
    to_label: str,
    normalizer: TextNormalizer | None = None,
) -> list[str]:
    """Unified diff of the normalized texts, for display only.

    Raises EncodingError when either side is not decodable text.
    """
    normalizer = normalizer or TextNormalizer()
    old_lines = normalizer.normalize_bytes(old or b"").splitlines()
    new_lines = normalizer.normalize_bytes(new or b"").splitlines()
    return list(
        difflib.unified_diff(old_lines, new_lines, fromfile=from_label, tofile=to_label, lineterm="")
    )


class DiffEngine:
    """Compares a source (branch or archive) with a target branch.

    Content is never fetched during classification; ``inspect`` fetches it
    only for the entries the caller wants to look at, with at most
    ``fetch_concurrency`` requests in flight. Starting a comparison for a
    (repo, source, target) key cancels any comparison still running for the
    same key.
    """

    def __init__(
        self,
        snapshots: TreeSnapshotStore,
        *,
        fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
        normalizer: TextNormalizer | None = None,
        item_timeout: float | None = None,
    ) -> None:
        self.snapshots = snapshots
        self.remote = snapshots.remote
        self.fetch_concurrency = fetch_concurrency
        self.normalizer = normalizer or TextNormalizer()
        self.item_timeout = item_timeout
        self._inflight: dict[tuple[str, str, str], CancelToken] = {}

    # ------------------------------------------------------------------
    # Supersession
    # ------------------------------------------------------------------

    def _begin(self, key: tuple[str, str, str], cancel_token: CancelToken | None) -> CancelToken:
        previous = self._inflight.get(key)
        if previous is not None and previous is not cancel_token:
            logger.debug("Superseding in-flight comparison %s", key)
            previous.cancel("superseded by a newer comparison")
        token = cancel_token or CancelToken()
        self._inflight[key] = token
        return token

    def _end(self, key: tuple[str, str, str], token: CancelToken) -> None:
        if self._inflight.get(key) is token:
            del self._inflight[key]

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def source_for(self, repo: str, ref: str) -> SnapshotSource:
        """Snapshot-backed source for *ref*; raises NotFound if the branch is absent."""
        snapshot = await self.snapshots.get_snapshot(repo, ref)
        if not snapshot.exists:
            raise NotFound(f"Source branch {ref!r} does not exist in {repo}", operation="get_ref")
        return SnapshotSource(snapshot, self.remote)

    async def diff(
        self,
        repo: str,
        source_ref: str,
        target_ref: str,
        *,
        include_deletions: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> list[DiffEntry]:
        """What would *source_ref* bring to *target_ref*.

        An absent target branch is a valid outcome: every source path is ADDED.
        """
        key = (repo, f"branch:{source_ref}", target_ref)
        token = self._begin(key, cancel_token)
        try:
            source_snapshot, target_snapshot = await asyncio.gather(
                self.snapshots.get_snapshot(repo, source_ref),
                self.snapshots.get_snapshot(repo, target_ref),
            )
            token.raise_if_cancelled()
            if not source_snapshot.exists:
                raise NotFound(
                    f"Source branch {source_ref!r} does not exist in {repo}", operation="get_ref"
                )
            entries = classify(source_snapshot.entries, target_snapshot.entries, include_deletions)
        finally:
            self._end(key, token)
        logger.info(
            "Compared %s -> %s in %s: %s", source_ref, target_ref, repo, summarize(entries)
        )
        return entries

    async def diff_archive(
        self,
        repo: str,
        archive: ContentSource,
        target_ref: str,
        *,
        include_deletions: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> list[DiffEntry]:
        """Compare an in-memory archive with *target_ref*."""
        key = (repo, archive.label, target_ref)
        token = self._begin(key, cancel_token)
        try:
            target_snapshot = await self.snapshots.get_snapshot(repo, target_ref)
            token.raise_if_cancelled()
            entries = self.compare(archive, target_snapshot, include_deletions)
        finally:
            self._end(key, token)
        logger.info(
            "Compared %s -> %s in %s: %s", archive.label, target_ref, repo, summarize(entries)
        )
        return entries

    def compare(
        self, source: ContentSource, target: TreeSnapshot, include_deletions: bool = False
    ) -> list[DiffEntry]:
        """Classify *source* against an already fetched target snapshot."""
        return classify(source.entries, target.entries, include_deletions)

    async def quick_compare(self, repo: str, base: str, head: str) -> list[CompareEntry]:
        """Tracked files the remote compare API reports as changed.

        Only a hint: the compare API follows history, not content, and caps
        the number of files it returns.
        """
        reported = await self.remote.compare_refs(repo, base, head)
        return [e for e in reported if self.snapshots.path_filter.matches(e.path)]

    # ------------------------------------------------------------------
    # Content inspection
    # ------------------------------------------------------------------

    async def inspect(
        self,
        repo: str,
        entries: list[DiffEntry],
        source: ContentSource,
        target_ref: str,
        *,
        cancel_token: CancelToken | None = None,
    ) -> list[DiffEntry]:
        """Fetch content for changed entries and re-judge MODIFIED ones.

        A MODIFIED entry whose texts are equal after normalization comes back
        as SAME with ``identical_after_normalization=True``; its addresses
        still differ. A failed fetch turns that single entry into FETCH_ERROR.
        Order of the returned list matches *entries*.
        """
        key = (repo, source.label, target_ref)
        token = self._begin(key, cancel_token)

        async def _one(entry: DiffEntry) -> DiffEntry:
            token.raise_if_cancelled()
            if entry.status is DiffStatus.ADDED:
                data = entry.content if entry.content is not None else await source.read(entry.path)
                return entry.with_content(content=data)
            if entry.status is DiffStatus.REMOVED:
                data = entry.target_content
                if data is None:
                    data = await self.remote.get_blob(repo, entry.target_address)
                return entry.with_content(target_content=data)
            if entry.status is DiffStatus.MODIFIED:
                src = entry.content if entry.content is not None else await source.read(entry.path)
                tgt = entry.target_content
                if tgt is None:
                    tgt = await self.remote.get_blob(repo, entry.target_address)
                return self._judge(entry, src, tgt)
            return entry

        try:
            results = await map_limit(
                entries,
                self.fetch_concurrency,
                _one,
                cancel_token=token,
                timeout=self.item_timeout,
            )
        finally:
            self._end(key, token)

        inspected: list[DiffEntry] = []
        for entry, result in zip(entries, results):
            if result.ok:
                inspected.append(result.value)
                continue
            logger.warning("Failed to fetch %s: %s", entry.path, result.error)
            inspected.append(
                replace(entry, status=DiffStatus.FETCH_ERROR, error=str(result.error) or type(result.error).__name__)
            )
        return inspected

    def _judge(self, entry: DiffEntry, src: bytes, tgt: bytes) -> DiffEntry:
        equivalent = self.normalizer.equivalent(src, tgt)
        if equivalent is None:
            # Not text: the raw bytes are the only thing we can compare
            status = DiffStatus.SAME if src == tgt else DiffStatus.MODIFIED
            return replace(entry, status=status, content=src, target_content=tgt, encoding_error=True)
        if equivalent:
            return replace(
                entry,
                status=DiffStatus.SAME,
                content=src,
                target_content=tgt,
                identical_after_normalization=True,
            )
        return entry.with_content(content=src, target_content=tgt)

    async def load_content(
        self,
        entries: list[DiffEntry],
        source: ContentSource,
        *,
        cancel_token: CancelToken | None = None,
    ) -> list[DiffEntry]:
        """Attach source bytes to ADDED/MODIFIED entries that lack them."""

        async def _one(entry: DiffEntry) -> DiffEntry:
            if entry.content is not None or entry.status not in (DiffStatus.ADDED, DiffStatus.MODIFIED):
                return entry
            return entry.with_content(content=await source.read(entry.path))

        results = await map_limit(
            entries, self.fetch_concurrency, _one, cancel_token=cancel_token, timeout=self.item_timeout
        )
        loaded: list[DiffEntry] = []
        for entry, result in zip(entries, results):
            if result.ok:
                loaded.append(result.value)
            else:
                logger.warning("Failed to load %s: %s", entry.path, result.error)
                loaded.append(replace(entry, status=DiffStatus.FETCH_ERROR, error=str(result.error)))
        return loaded

    async def collect_files(self, repo: str, ref: str, paths: list[str]) -> dict[str, bytes]:
        """Fetch the exact bytes of *paths* at *ref* (for export).

        Raises NotFound for a path the branch does not track and re-raises the
        first fetch error; a partial export is never returned.
        """
        snapshot = await self.snapshots.get_snapshot(repo, ref)
        missing = [p for p in paths if snapshot.address_of(p) is None]
        if missing:
            raise NotFound(f"Not tracked in {ref}: {', '.join(missing)}", operation="collect_files")

        async def _one(path: str) -> bytes:
            return await self.remote.get_blob(repo, snapshot.entries[path])

        results = await map_limit(paths, self.fetch_concurrency, _one, timeout=self.item_timeout)
        return dict(zip(paths, unwrap_results(results)))

    def text_diff(self, entry: DiffEntry, from_label: str, to_label: str) -> list[str]:
        """Display diff for an inspected entry (target -> source)."""
        try:
            return render_text_diff(
                entry.target_content, entry.content, from_label, to_label, self.normalizer
            )
        except EncodingError:
            return [f"Binary or undecodable content in {entry.path}; no text diff available."]
