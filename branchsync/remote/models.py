"""Pydantic models for data exchanged with the remote object store."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BranchInfo(BaseModel):
    """A branch and the commit it currently points at."""

    model_config = ConfigDict(frozen=True)

    name: str
    tip_sha: str


class RefInfo(BaseModel):
    """A resolved branch ref."""

    model_config = ConfigDict(frozen=True)

    branch: str
    commit_sha: str


class TreeItem(BaseModel):
    """One entry of a (recursively listed) git tree."""

    model_config = ConfigDict(frozen=True)

    path: str
    sha: str = Field(description="Content address of the blob or subtree")
    mode: str = "100644"
    type: Literal["blob", "tree", "commit"] = "blob"
    size: int | None = None


class NewTreeEntry(BaseModel):
    """An entry written into a new tree. ``sha=None`` deletes the path."""

    model_config = ConfigDict(frozen=True)

    path: str
    mode: str = "100644"
    sha: str | None = None


class CompareEntry(BaseModel):
    """A file reported by the remote compare API (a hint, not authoritative)."""

    model_config = ConfigDict(frozen=True)

    path: str
    status: str = Field(description="added | modified | removed | renamed | ...")
