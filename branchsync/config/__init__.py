from .loader import DEFAULT_CONFIG_TEMPLATE, load_config
from .models import BranchSyncConfig, GitHubConfig, SyncConfig

__all__ = [
    "BranchSyncConfig",
    "DEFAULT_CONFIG_TEMPLATE",
    "GitHubConfig",
    "SyncConfig",
    "load_config",
]
