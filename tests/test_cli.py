"""Tests for the branchsync CLI, driven against the in-memory object store."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest
from typer.testing import CliRunner

from branchsync.cli import app

runner = CliRunner()

REPO = "acme/configs"


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch):
    """Run every command in an empty directory with no user config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "fakehome")


@pytest.fixture
def cli_store(store, monkeypatch):
    monkeypatch.setattr("branchsync.cli.create_store", lambda cfg: store)
    return store


# ── branches ─────────────────────────────────────────────────────────


def test_branches_lists_tips(cli_store):
    result = runner.invoke(app, ["branches", REPO])
    assert result.exit_code == 0
    assert "feature" in result.output
    assert "main" in result.output
    assert cli_store.head(REPO, "main")[:7] in result.output


def test_invalid_repo_identifier(cli_store):
    result = runner.invoke(app, ["branches", "not-a-repo"])
    assert result.exit_code == 1
    assert "expected 'owner/repo'" in result.output


def test_missing_token_is_reported(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    result = runner.invoke(app, ["branches", REPO])
    assert result.exit_code == 1
    assert "GITHUB_TOKEN" in result.output


# ── diff ─────────────────────────────────────────────────────────────


def test_diff_shows_tree_and_summary(cli_store):
    result = runner.invoke(app, ["diff", REPO, "feature", "main"])
    assert result.exit_code == 0
    assert "db.xml" in result.output
    assert "redis.xml" in result.output
    assert "Summary" in result.output
    # unchanged files are hidden unless --all
    assert "app.xml" not in result.output
    assert cli_store.write_calls == []


def test_diff_inspect_flags_normalization_only_changes(cli_store):
    result = runner.invoke(app, ["diff", REPO, "feature", "main", "--inspect"])
    assert result.exit_code == 0
    assert "identical after normalization" in result.output


def test_diff_show_prints_text_diff(cli_store):
    result = runner.invoke(app, ["diff", REPO, "feature", "main", "--show", "config/db.xml"])
    assert result.exit_code == 0
    assert "db.internal" in result.output
    assert "localhost" in result.output


def test_diff_show_unknown_path(cli_store):
    result = runner.invoke(app, ["diff", REPO, "feature", "main", "--show", "nope.xml"])
    assert result.exit_code == 1
    assert "not part of this comparison" in result.output


def test_diff_new_target_branch_notice(cli_store):
    result = runner.invoke(app, ["diff", REPO, "feature", "release"])
    assert result.exit_code == 0
    assert "does not exist" in result.output


def test_diff_missing_source_branch(cli_store):
    result = runner.invoke(app, ["diff", REPO, "ghost", "main"])
    assert result.exit_code == 1
    assert "ghost" in result.output


# ── sync ─────────────────────────────────────────────────────────────


def test_sync_requires_selection(cli_store):
    result = runner.invoke(app, ["sync", REPO, "feature", "main"])
    assert result.exit_code == 1
    assert "--path" in result.output


def test_sync_selected_path(cli_store, feature_files):
    result = runner.invoke(app, ["sync", REPO, "feature", "main", "--path", "config/db.xml"])
    assert result.exit_code == 0, result.output
    assert "Sync Complete" in result.output
    files = cli_store.files_at(REPO, "main")
    assert files["config/db.xml"] == feature_files["config/db.xml"]
    assert "config/cache/redis.xml" not in files


def test_sync_all_skips_normalization_only_changes(cli_store, feature_files):
    result = runner.invoke(app, ["sync", REPO, "feature", "main", "--all", "-m", "bulk"])
    assert result.exit_code == 0, result.output
    files = cli_store.files_at(REPO, "main")
    assert files["config/legacy.xml"] == b"<legacy/>\n"
    assert files["config/cache/redis.xml"] == feature_files["config/cache/redis.xml"]
    commit = cli_store.commits[cli_store.head(REPO, "main")]
    assert commit.message == "bulk"


def test_sync_dry_run_writes_nothing(cli_store):
    result = runner.invoke(app, ["sync", REPO, "feature", "main", "--all", "--dry-run"])
    assert result.exit_code == 0
    assert "dry run" in result.output
    assert "reuse" in result.output
    assert cli_store.write_calls == []


def test_sync_noop(cli_store):
    result = runner.invoke(app, ["sync", REPO, "main", "main", "--all"])
    assert result.exit_code == 0
    assert "Nothing to do" in result.output
    assert cli_store.write_calls == []


def test_sync_from_archive(cli_store, tmp_path: Path):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("bundle/config/new.xml", b"<new/>\n")
        zf.writestr("bundle/notes.txt", b"ignored")
    archive = tmp_path / "bundle.zip"
    archive.write_bytes(buf.getvalue())

    result = runner.invoke(
        app, ["sync", REPO, "-", "main", "--archive", str(archive), "--strip", "1", "--all"]
    )
    assert result.exit_code == 0, result.output
    assert cli_store.files_at(REPO, "main")["config/new.xml"] == b"<new/>\n"
    assert [c[0] for c in cli_store.write_calls][0] == "create_blob"


def test_sync_default_message(cli_store):
    result = runner.invoke(app, ["sync", REPO, "feature", "main", "--path", "config/cache/*"])
    assert result.exit_code == 0, result.output
    commit = cli_store.commits[cli_store.head(REPO, "main")]
    assert commit.message == "Sync 1 file(s) from branch:feature"


# ── create-branch ────────────────────────────────────────────────────


def test_create_branch(cli_store):
    result = runner.invoke(app, ["create-branch", REPO, "hotfix", "main"])
    assert result.exit_code == 0
    assert cli_store.head(REPO, "hotfix") == cli_store.head(REPO, "main")


def test_create_existing_branch_prints_conflict_hint(cli_store):
    result = runner.invoke(app, ["create-branch", REPO, "feature", "main"])
    assert result.exit_code == 1
    assert "Conflict" in result.output
    assert "re-diff" in result.output


# ── export ───────────────────────────────────────────────────────────


def test_export_changed_files_against_other_branch(cli_store, main_files, tmp_path: Path):
    result = runner.invoke(app, ["export", REPO, "main", "--against", "feature"])
    assert result.exit_code == 0, result.output
    out = tmp_path / "export_configs_feature_vs_main.zip"
    assert out.is_file()
    with zipfile.ZipFile(out) as zf:
        assert sorted(zf.namelist()) == ["config/db.xml", "config/legacy.xml"]
        assert zf.read("config/db.xml") == main_files["config/db.xml"]


def test_export_selected_paths_to_named_file(cli_store, tmp_path: Path):
    out = tmp_path / "picked.zip"
    result = runner.invoke(app, ["export", REPO, "main", "--path", "config/app.xml", "-o", str(out)])
    assert result.exit_code == 0
    with zipfile.ZipFile(out) as zf:
        assert zf.namelist() == ["config/app.xml"]


# ── config ───────────────────────────────────────────────────────────


def test_config_init_and_show(tmp_path: Path):
    result = runner.invoke(app, ["config", "init"])
    assert result.exit_code == 0
    assert (tmp_path / "branchsync.yaml").is_file()

    again = runner.invoke(app, ["config", "init"])
    assert again.exit_code == 1
    assert "already exists" in again.output

    shown = runner.invoke(app, ["config", "show"])
    assert shown.exit_code == 0
    assert "fetch_concurrency" in shown.output


def test_bad_config_file_exits(tmp_path: Path):
    (tmp_path / "branchsync.yaml").write_text("log_level: loud\n")
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 1
    assert "Invalid config" in result.output
