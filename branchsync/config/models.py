from typing import Literal

from pydantic import BaseModel, Field, field_validator


class GitHubConfig(BaseModel):
    token_env: str = "GITHUB_TOKEN"
    base_url: str | None = None
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    per_page: int = Field(default=100, gt=0, le=100)


class SyncConfig(BaseModel):
    extensions: list[str] = Field(default_factory=lambda: [".xml"])
    exclude: list[str] = Field(default_factory=list)
    fetch_concurrency: int = Field(default=24, gt=0)
    upload_concurrency: int = Field(default=8, gt=0)
    include_deletions: bool = False
    repair_mojibake: bool = False
    encoding: str = "utf-8"
    default_message: str = "Sync {count} file(s) from {source}"

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: list[str]) -> list[str]:
        cleaned = [e.strip() for e in v if e.strip()]
        return [e if e.startswith(".") else f".{e}" for e in cleaned]


class BranchSyncConfig(BaseModel):
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
