"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import BranchSyncConfig


def load_config(cli_path: str | None = None) -> BranchSyncConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults."""
    if cli_path and not Path(cli_path).exists():
        raise ValueError(f"Config file not found: {cli_path}")

    config_paths = [
        Path(cli_path) if cli_path else None,
        Path("./branchsync.yaml"),
        Path.home() / ".branchsync" / "config.yaml",
    ]

    for path in config_paths:
        if path and path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f)
                if raw is None:
                    continue
                raw = _expand_env_vars(raw)
                return BranchSyncConfig(**raw)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
            except ValidationError as e:
                raise ValueError(f"Invalid config in {path}: {e}") from e

    return BranchSyncConfig()


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} references in strings."""
    if isinstance(obj, str):
        return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `branchsync config init`
DEFAULT_CONFIG_TEMPLATE = """\
# branchsync.yaml

# GitHub access
github:
  token_env: "GITHUB_TOKEN"    # env var holding a token with `repo` scope
  # base_url: "https://github.example.com/api/v3"
  request_timeout: 30          # seconds, applied to every API call
  max_retries: 3
  per_page: 100

# Comparison and commit behaviour
sync:
  extensions: [".xml"]         # tracked file extensions
  # exclude: ["*.generated.xml", "build/*"]
  fetch_concurrency: 24        # parallel content fetches while inspecting
  upload_concurrency: 8        # parallel blob uploads while committing
  include_deletions: false     # also report files that exist only in the target
  repair_mojibake: false       # fix UTF-8-read-as-Latin-1 text before comparing
  encoding: "utf-8"
  default_message: "Sync {count} file(s) from {source}"

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
