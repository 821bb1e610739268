"""Turn selected diff entries into a single commit on the target branch."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from branchsync.concurrency import map_limit
from branchsync.diff.models import ContentSource, DiffEntry, DiffStatus
from branchsync.diff.sources import SnapshotSource
from branchsync.errors import BranchSyncError, CommitError, ConflictError, NotFound
from branchsync.remote.models import NewTreeEntry
from branchsync.snapshot.models import DEFAULT_MODE, TreeSnapshot
from branchsync.snapshot.store import TreeSnapshotStore
from branchsync.sync.models import CommitPlan, CommitResult, PlanEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_UPLOAD_CONCURRENCY = 8


class SyncPlanner:
    """Builds and writes commits that make the target match selected source paths.

    Content already known to the remote (anything addressed by the source
    snapshot or already present in the target) is referenced by address and
    never re-uploaded. Only bytes with no remote address, e.g. files from an
    archive, become new blobs.
    """

    def __init__(
        self,
        snapshots: TreeSnapshotStore,
        *,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
    ) -> None:
        self.snapshots = snapshots
        self.remote = snapshots.remote
        self.upload_concurrency = upload_concurrency

    async def _current_target(self, repo: str, target_ref: str) -> TreeSnapshot:
        """Target snapshot that matches where the ref points right now."""
        snapshot = await self.snapshots.get_snapshot(repo, target_ref)
        ref_info = await self.remote.get_ref(repo, target_ref)
        current = ref_info.commit_sha if ref_info else None
        if current != snapshot.commit_sha:
            logger.info("Target %s moved since it was cached, refreshing", target_ref)
            await self.snapshots.invalidate(repo, target_ref)
            snapshot = await self.snapshots.get_snapshot(repo, target_ref)
        return snapshot

    async def prepare(
        self,
        repo: str,
        target_ref: str,
        source: ContentSource,
        selected: Iterable[DiffEntry],
        message: str,
    ) -> CommitPlan:
        """Resolve the target and decide, per selected path, what to write.

        Entries whose content already matches the target are dropped (SAME
        entries included, whether raw-equal or equal after normalization).
        REMOVED entries become deletions. Raises ValueError for entries
        without usable content (FETCH_ERROR, or paths the source lacks) and
        ConflictError when the target changed a selected path after the diff
        was taken. A target that moved only elsewhere is simply refreshed.
        """
        target = await self._current_target(repo, target_ref)

        reusable = set(target.addresses)
        if isinstance(source, SnapshotSource):
            reusable |= source.snapshot.addresses

        selected = list(selected)
        failed = [e.path for e in selected if e.status is DiffStatus.FETCH_ERROR]
        if failed:
            raise ValueError(f"Cannot commit entries whose content failed to load: {', '.join(failed)}")

        stale = [
            e.path
            for e in selected
            if e.is_change and e.target_address != target.address_of(e.path)
        ]
        if stale:
            await self.snapshots.invalidate(repo, target_ref)
            raise ConflictError(
                f"{target_ref} changed {', '.join(stale)} since the diff was taken; {ConflictError.hint}",
                operation="prepare",
            )

        entries: list[PlanEntry] = []
        skipped: list[str] = []
        seen: set[str] = set()
        for entry in selected:
            if entry.path in seen:
                continue
            seen.add(entry.path)
            target_address = target.address_of(entry.path)

            if entry.status is DiffStatus.REMOVED:
                if target_address is None:
                    skipped.append(entry.path)
                else:
                    entries.append(PlanEntry(path=entry.path, mode=target.mode_of(entry.path)))
                continue

            if entry.status is DiffStatus.SAME:
                skipped.append(entry.path)
                continue

            address = source.entries.get(entry.path)
            if address is None:
                raise ValueError(f"{entry.path} is not part of {source.label}")
            if address == target_address:
                skipped.append(entry.path)
                continue

            entries.append(
                PlanEntry(
                    path=entry.path,
                    mode=self._mode_for(entry.path, source, target),
                    address=address,
                    upload=address not in reusable,
                )
            )

        plan = CommitPlan(
            repo=repo,
            target_ref=target_ref,
            source_label=source.label,
            source_ref=source.ref,
            base_commit=target.commit_sha,
            base_tree=target.tree_sha,
            entries=entries,
            message=message,
            skipped=skipped,
        )
        logger.info(
            "Planned %d write(s) to %s (%d upload, %d already identical)",
            len(entries), target_ref, len(plan.uploads), len(skipped),
        )
        return plan

    @staticmethod
    def _mode_for(path: str, source: ContentSource, target: TreeSnapshot) -> str:
        if isinstance(source, SnapshotSource):
            return source.snapshot.mode_of(path)
        if target.address_of(path) is not None:
            return target.mode_of(path)
        return DEFAULT_MODE

    async def commit(self, plan: CommitPlan, source: ContentSource) -> CommitResult:
        """Write *plan*: blobs, then tree, then commit, then the ref.

        The ref moves last, so a failure at any earlier step leaves the branch
        untouched. Failures raise CommitError naming the step; a target that
        moved since it was read raises ConflictError and is never retried.
        """
        if plan.is_noop:
            return CommitResult.noop_result(plan.target_ref, plan.skipped)

        repo = plan.repo
        created: dict[str, list[str]] = {"blobs": [], "trees": [], "commits": []}

        async def _step(step: str, call: Callable[[], Awaitable[T]]) -> T:
            try:
                return await call()
            except ConflictError:
                logger.warning(
                    "%s on %s rejected: %s. Unreferenced objects: %s",
                    step, plan.target_ref, ConflictError.hint, created,
                )
                await self.snapshots.invalidate(repo, plan.target_ref)
                raise
            except BranchSyncError as e:
                raise CommitError(step, e, created) from e

        uploaded = await self._upload_blobs(plan, source, created)

        tree_entries = [
            NewTreeEntry(path=e.path, mode=e.mode, sha=uploaded.get(e.path, e.address))
            for e in plan.entries
        ]
        tree_sha = await _step(
            "create_tree", lambda: self.remote.create_tree(repo, plan.base_tree, tree_entries)
        )
        created["trees"].append(tree_sha)
        logger.info("Created tree %s on %s", tree_sha[:7], plan.base_tree[:7] if plan.base_tree else "scratch")

        parents = [plan.base_commit] if plan.base_commit else []
        commit_sha = await _step(
            "create_commit", lambda: self.remote.create_commit(repo, plan.message, tree_sha, parents)
        )
        created["commits"].append(commit_sha)
        logger.info("Created commit %s", commit_sha[:7])

        if plan.creates_ref:
            await _step("create_ref", lambda: self.remote.create_ref(repo, plan.target_ref, commit_sha))
            logger.info("Created branch %s at %s", plan.target_ref, commit_sha[:7])
        else:
            await _step(
                "update_ref",
                lambda: self.remote.update_ref(
                    repo, plan.target_ref, commit_sha, expected_sha=plan.base_commit
                ),
            )
            logger.info("Moved %s to %s", plan.target_ref, commit_sha[:7])

        await self.snapshots.invalidate(repo, plan.target_ref)
        if plan.source_ref is not None:
            await self.snapshots.invalidate(repo, plan.source_ref)

        written = [e.path for e in plan.entries if not e.is_deletion]
        return CommitResult(
            commit_sha=commit_sha,
            updated_ref=plan.target_ref,
            created_ref=plan.creates_ref,
            written_paths=written,
            deleted_paths=[e.path for e in plan.entries if e.is_deletion],
            skipped_paths=list(plan.skipped),
            uploaded_blobs=len(uploaded),
            reused_blobs=len(written) - len(uploaded),
        )

    async def _upload_blobs(
        self, plan: CommitPlan, source: ContentSource, created: dict[str, list[str]]
    ) -> dict[str, str]:
        paths = plan.uploads
        if not paths:
            return {}

        async def _upload(path: str) -> str:
            data = await source.read(path)
            return await self.remote.create_blob(plan.repo, data)

        results = await map_limit(paths, self.upload_concurrency, _upload)
        uploaded: dict[str, str] = {}
        first_error: BaseException | None = None
        for path, result in zip(paths, results):
            if result.ok:
                uploaded[path] = result.value
                created["blobs"].append(result.value)
            elif first_error is None:
                first_error = result.error
        if first_error is not None:
            raise CommitError("create_blob", first_error, created) from first_error

        expected = {e.path: e.address for e in plan.entries if e.upload}
        for path, sha in uploaded.items():
            if sha != expected[path]:
                logger.warning("Remote address %s for %s differs from local %s", sha, path, expected[path])
        logger.info("Uploaded %d blob(s)", len(uploaded))
        return uploaded

    async def plan(
        self,
        repo: str,
        target_ref: str,
        source: ContentSource,
        selected: Iterable[DiffEntry],
        message: str,
    ) -> CommitResult:
        """Prepare and commit in one go. Returns a no-op result when nothing differs."""
        commit_plan = await self.prepare(repo, target_ref, source, list(selected), message)
        if commit_plan.is_noop:
            logger.info("Nothing to write to %s", target_ref)
            return CommitResult.noop_result(target_ref, commit_plan.skipped)
        return await self.commit(commit_plan, source)

    async def create_branch(self, repo: str, new_branch: str, from_branch: str) -> str:
        """Create *new_branch* at the tip of *from_branch* and return that commit."""
        origin = await self.remote.get_ref(repo, from_branch)
        if origin is None:
            raise NotFound(f"Branch {from_branch!r} does not exist in {repo}", operation="create_branch")
        if await self.remote.get_ref(repo, new_branch) is not None:
            raise ConflictError(f"Branch {new_branch!r} already exists in {repo}", operation="create_branch")
        await self.remote.create_ref(repo, new_branch, origin.commit_sha)
        await self.snapshots.invalidate(repo, new_branch)
        logger.info("Created branch %s from %s at %s", new_branch, from_branch, origin.commit_sha[:7])
        return origin.commit_sha
