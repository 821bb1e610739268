"""Pydantic models for commit plans and their results."""

from pydantic import BaseModel, ConfigDict, Field


class PlanEntry(BaseModel):
    """One path written by a commit. ``address=None`` deletes the path."""

    model_config = ConfigDict(frozen=True)

    path: str
    mode: str = "100644"
    address: str | None = Field(
        default=None,
        description="Blob address to reference; for uploads, the locally computed address",
    )
    upload: bool = Field(default=False, description="Bytes must be uploaded as a new blob")

    @property
    def is_deletion(self) -> bool:
        return self.address is None


class CommitPlan(BaseModel):
    """Everything needed to write one commit onto ``target_ref``."""

    repo: str
    target_ref: str
    source_label: str
    source_ref: str | None = None
    base_commit: str | None = Field(default=None, description="Parent commit; None creates the branch")
    base_tree: str | None = None
    entries: list[PlanEntry] = Field(default_factory=list)
    message: str
    skipped: list[str] = Field(
        default_factory=list, description="Selected paths already identical in the target"
    )

    @property
    def uploads(self) -> list[str]:
        return [e.path for e in self.entries if e.upload]

    @property
    def is_noop(self) -> bool:
        return not self.entries

    @property
    def creates_ref(self) -> bool:
        return self.base_commit is None


class CommitResult(BaseModel):
    """Outcome of a sync. ``noop=True`` means nothing was written at all."""

    commit_sha: str | None = None
    updated_ref: str
    created_ref: bool = False
    noop: bool = False
    written_paths: list[str] = Field(default_factory=list)
    deleted_paths: list[str] = Field(default_factory=list)
    skipped_paths: list[str] = Field(default_factory=list)
    uploaded_blobs: int = 0
    reused_blobs: int = 0

    @classmethod
    def noop_result(cls, target_ref: str, skipped_paths: list[str] | None = None) -> "CommitResult":
        return cls(updated_ref=target_ref, noop=True, skipped_paths=list(skipped_paths or []))
