"""Error taxonomy shared by the snapshot, diff and sync subsystems."""

from __future__ import annotations


class BranchSyncError(Exception):
    """Base class for every error raised by the engine.

    ``operation`` names the remote call or engine step that failed and
    ``status`` carries the HTTP status code when one is known.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        status: int | None = None,
    ) -> None:
        self.operation = operation
        self.status = status
        super().__init__(message)


class NetworkError(BranchSyncError):
    """Transport or HTTP failure talking to the remote store (includes timeouts)."""


class NotFound(BranchSyncError):
    """A ref, tree, blob or path does not exist.

    Not necessarily fatal: an absent target ref means "create the branch".
    """


class RateLimited(BranchSyncError):
    """The remote API refused the call because of rate limiting."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, operation=operation, status=status)
        self.retry_after = retry_after


class ConflictError(BranchSyncError):
    """The target ref moved since it was read (or already exists on create).

    Never retried automatically: the caller must re-diff before retrying.
    """

    hint = "target moved, re-diff before retrying"


class EncodingError(BranchSyncError):
    """Content cannot be decoded as text for normalized comparison."""


class ArchiveParseError(BranchSyncError):
    """An uploaded archive is corrupt or contains unsafe entries."""


class OperationCancelled(BranchSyncError):
    """Work was abandoned because a newer comparison superseded it."""


class CommitError(BranchSyncError):
    """A commit attempt failed part way through.

    ``step`` is one of ``create_blob``, ``create_tree``, ``create_commit``,
    ``update_ref`` or ``create_ref``. ``created`` lists the remote objects that
    already exist; none of them is reachable from a ref because the ref is only
    moved in the final step.
    """

    def __init__(
        self,
        step: str,
        cause: Exception,
        created: dict[str, list[str]] | None = None,
    ) -> None:
        self.step = step
        self.created = created or {}
        status = getattr(cause, "status", None)
        leftovers = ", ".join(
            f"{len(shas)} {kind}" for kind, shas in self.created.items() if shas
        )
        detail = f" (unreferenced objects left behind: {leftovers})" if leftovers else ""
        super().__init__(
            f"commit failed at {step}: {cause}{detail}",
            operation=step,
            status=status,
        )
        self.__cause__ = cause
