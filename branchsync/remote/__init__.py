"""Remote object stores for branchsync."""

import os

from branchsync.config.models import GitHubConfig
from branchsync.remote.base import ObjectStore
from branchsync.remote.github import GitHubObjectStore
from branchsync.remote.models import BranchInfo, CompareEntry, NewTreeEntry, RefInfo, TreeItem


def create_store(config: GitHubConfig) -> ObjectStore:
    """Create the GitHub object store from config.

    Resolves the token from the environment variable named in config.token_env.
    """
    token = os.environ.get(config.token_env, "")
    if not token:
        raise ValueError(
            f"GitHub token not found. Set the {config.token_env} environment variable."
        )
    return GitHubObjectStore(token=token, config=config)


__all__ = [
    "BranchInfo",
    "CompareEntry",
    "GitHubObjectStore",
    "NewTreeEntry",
    "ObjectStore",
    "RefInfo",
    "TreeItem",
    "create_store",
]
