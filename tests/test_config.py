"""Tests for branchsync.config — models and YAML loader."""

import os
import pytest
from unittest.mock import patch
from pydantic import ValidationError

from branchsync.config.models import BranchSyncConfig, GitHubConfig, SyncConfig
from branchsync.config.loader import DEFAULT_CONFIG_TEMPLATE, load_config, _expand_env_vars


# ── BranchSyncConfig defaults ──────────────────────────────────────


class TestBranchSyncConfigDefaults:
    def test_default_log_level(self):
        assert BranchSyncConfig().log_level == "info"

    def test_default_log_format(self):
        assert BranchSyncConfig().log_format == "text"

    def test_default_extensions(self):
        assert BranchSyncConfig().sync.extensions == [".xml"]

    def test_default_concurrency(self):
        cfg = BranchSyncConfig()
        assert cfg.sync.fetch_concurrency == 24
        assert cfg.sync.upload_concurrency == 8

    def test_deletions_and_repair_are_opt_in(self):
        cfg = BranchSyncConfig()
        assert cfg.sync.include_deletions is False
        assert cfg.sync.repair_mojibake is False

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            BranchSyncConfig(log_level="verbose")


# ── Individual config model validations ─────────────────────────────


class TestGitHubConfig:
    def test_defaults(self):
        cfg = GitHubConfig()
        assert cfg.token_env == "GITHUB_TOKEN"
        assert cfg.base_url is None
        assert cfg.request_timeout == 30.0
        assert cfg.max_retries == 3

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            GitHubConfig(request_timeout=0)

    def test_per_page_capped(self):
        with pytest.raises(ValidationError):
            GitHubConfig(per_page=500)


class TestSyncConfig:
    def test_extensions_get_leading_dot(self):
        cfg = SyncConfig(extensions=["xml", ".xsd", "  "])
        assert cfg.extensions == [".xml", ".xsd"]

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            SyncConfig(fetch_concurrency=0)

    def test_default_message_template(self):
        msg = SyncConfig().default_message.format(count=3, source="branch:feature")
        assert msg == "Sync 3 file(s) from branch:feature"


# ── _expand_env_vars ────────────────────────────────────────────────


class TestExpandEnvVars:
    def test_expands_string_variable(self):
        with patch.dict(os.environ, {"MY_TOKEN_ENV": "GH_PAT"}):
            assert _expand_env_vars("${MY_TOKEN_ENV}") == "GH_PAT"

    def test_missing_var_becomes_empty(self):
        os.environ.pop("BRANCHSYNC_UNSET_VAR", None)
        assert _expand_env_vars("x${BRANCHSYNC_UNSET_VAR}y") == "xy"

    def test_expands_nested_structures(self):
        with patch.dict(os.environ, {"A": "alpha", "B": "beta"}):
            result = _expand_env_vars({"outer": {"inner": "${A}"}, "list": ["${B}"]})
            assert result == {"outer": {"inner": "alpha"}, "list": ["beta"]}

    def test_non_string_passthrough(self):
        assert _expand_env_vars(42) == 42
        assert _expand_env_vars(True) is True
        assert _expand_env_vars(None) is None


# ── load_config ─────────────────────────────────────────────────────


class TestLoadConfig:
    def test_returns_defaults_when_no_file_exists(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")
        config = load_config()
        assert config.sync.extensions == [".xml"]
        assert config.log_level == "info"

    def test_loads_valid_yaml(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "branchsync.yaml").write_text(
            "sync:\n  extensions: [xml, xsd]\n  fetch_concurrency: 8\nlog_level: debug\n"
        )
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")
        config = load_config()
        assert config.sync.extensions == [".xml", ".xsd"]
        assert config.sync.fetch_concurrency == 8
        assert config.log_level == "debug"

    def test_raises_on_invalid_yaml(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "branchsync.yaml").write_text("  bad:\nyaml: [unterminated")
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config()

    def test_raises_on_invalid_config_values(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "branchsync.yaml").write_text("github:\n  request_timeout: -1\n")
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")
        with pytest.raises(ValueError, match="Invalid config"):
            load_config()

    def test_missing_cli_path_raises(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_config(cli_path=str(tmp_path / "nope.yaml"))

    def test_cli_path_takes_priority(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "branchsync.yaml").write_text("log_level: warn\n")
        cli_file = tmp_path / "custom.yaml"
        cli_file.write_text("log_level: error\n")

        config = load_config(cli_path=str(cli_file))
        assert config.log_level == "error"

    def test_user_global_config_used_as_fallback(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        fake_home = tmp_path / "fakehome"
        (fake_home / ".branchsync").mkdir(parents=True)
        (fake_home / ".branchsync" / "config.yaml").write_text("log_format: json\n")
        monkeypatch.setattr("pathlib.Path.home", lambda: fake_home)

        config = load_config()
        assert config.log_format == "json"

    def test_env_vars_expanded_in_loaded_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("GHE_URL", "https://github.example.com/api/v3")
        (tmp_path / "branchsync.yaml").write_text("github:\n  base_url: ${GHE_URL}\n")
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")

        config = load_config()
        assert config.github.base_url == "https://github.example.com/api/v3"

    def test_empty_yaml_file_returns_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "branchsync.yaml").write_text("")
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")

        config = load_config()
        assert config.sync.upload_concurrency == 8

    def test_default_template_is_valid_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "branchsync.yaml").write_text(DEFAULT_CONFIG_TEMPLATE)
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")

        config = load_config()
        assert config == BranchSyncConfig()
