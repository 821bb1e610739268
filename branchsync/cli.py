"""CLI entry point for branchsync."""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
import yaml
from rich import print as rprint
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from branchsync.archive import ArchiveSource, default_export_name, export_archive, read_archive_file
from branchsync.config import BranchSyncConfig, load_config
from branchsync.config.loader import DEFAULT_CONFIG_TEMPLATE
from branchsync.diff import (
    ContentSource,
    DiffDirNode,
    DiffEngine,
    DiffEntry,
    DiffStatus,
    build_diff_tree,
    summarize,
)
from branchsync.errors import BranchSyncError, CommitError, ConflictError
from branchsync.normalize import TextNormalizer
from branchsync.paths import build_path_filter
from branchsync.remote import ObjectStore, create_store
from branchsync.snapshot import TreeSnapshotStore
from branchsync.sync import CommitPlan, CommitResult, SyncPlanner

T = TypeVar("T")

app = typer.Typer(
    name="branchsync",
    help="Compare branches (or a ZIP archive) and sync selected files as one commit.",
)

config_app = typer.Typer(help="Manage branchsync configuration.")
app.add_typer(config_app, name="config")

# Global state
_config: BranchSyncConfig | None = None

_STATUS_STYLE = {
    DiffStatus.ADDED: "green",
    DiffStatus.MODIFIED: "yellow",
    DiffStatus.REMOVED: "red",
    DiffStatus.SAME: "dim",
    DiffStatus.FETCH_ERROR: "bold red",
}

_LOG_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def _get_config() -> BranchSyncConfig:
    if _config is None:
        return load_config()
    return _config


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _setup_logging(cfg: BranchSyncConfig, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else _LOG_LEVELS[cfg.log_level]
    if cfg.log_format == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(_JsonFormatter())
    else:
        handler = RichHandler(show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(level=level, handlers=[handler], force=True)


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to branchsync.yaml")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Debug logging")] = False,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _setup_logging(_config, verbose)


@dataclass
class _Session:
    remote: ObjectStore
    snapshots: TreeSnapshotStore
    engine: DiffEngine
    planner: SyncPlanner


def _open_session(cfg: BranchSyncConfig) -> _Session:
    """Wire remote, snapshot cache, diff engine and planner from config."""
    try:
        remote = create_store(cfg.github)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    snapshots = TreeSnapshotStore(remote, build_path_filter(cfg.sync.extensions, cfg.sync.exclude))
    normalizer = TextNormalizer(encoding=cfg.sync.encoding, repair=cfg.sync.repair_mojibake)
    engine = DiffEngine(snapshots, fetch_concurrency=cfg.sync.fetch_concurrency, normalizer=normalizer)
    planner = SyncPlanner(snapshots, upload_concurrency=cfg.sync.upload_concurrency)
    return _Session(remote=remote, snapshots=snapshots, engine=engine, planner=planner)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning engine errors into a message and exit code 1."""
    try:
        return asyncio.run(coro)
    except ConflictError as e:
        rprint(f"[red]Conflict:[/red] {e}")
        rprint(f"[yellow]Hint:[/yellow] {ConflictError.hint}")
        raise typer.Exit(1)
    except CommitError as e:
        rprint(f"[red]Commit failed at {e.step}:[/red] {e}")
        raise typer.Exit(1)
    except (BranchSyncError, ValueError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _validate_repo_id(repo_id: str) -> str:
    """Validate an 'owner/repo' identifier. Raises typer.Exit on bad input."""
    parts = repo_id.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        rprint(f"[red]Error:[/red] Invalid repo identifier '{repo_id}': expected 'owner/repo'")
        raise typer.Exit(1)
    return repo_id


def _load_archive(path: str | None, cfg: BranchSyncConfig, strip: int) -> ArchiveSource | None:
    if path is None:
        return None
    try:
        return read_archive_file(
            Path(path),
            build_path_filter(cfg.sync.extensions, cfg.sync.exclude),
            strip_components=strip,
        )
    except BranchSyncError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


async def _resolve_and_diff(
    session: _Session,
    repo: str,
    source_ref: str,
    target: str,
    archive: ArchiveSource | None,
    deletions: bool,
) -> tuple[ContentSource, list[DiffEntry]]:
    if archive is not None:
        entries = await session.engine.diff_archive(repo, archive, target, include_deletions=deletions)
        return archive, entries
    source = await session.engine.source_for(repo, source_ref)
    entries = await session.engine.diff(repo, source_ref, target, include_deletions=deletions)
    return source, entries


def _select(entries: list[DiffEntry], patterns: list[str]) -> list[DiffEntry]:
    """Entries whose path equals, or glob-matches, one of *patterns*."""
    return [e for e in entries if any(e.path == p or fnmatch.fnmatch(e.path, p) for p in patterns)]


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def _add_dir(parent: Tree, node: DiffDirNode) -> None:
    for name in sorted(node.children):
        child = node.children[name]
        if isinstance(child, DiffDirNode):
            _add_dir(parent.add(f"[bold]{name}/[/bold]"), child)
            continue
        style = _STATUS_STYLE[child.entry.status]
        parent.add(f"[{style}]{name}[/{style}] [dim]{child.entry.describe()}[/dim]")


def _display_diff(entries: list[DiffEntry], title: str, show_same: bool) -> None:
    shown = [e for e in entries if show_same or e.status is not DiffStatus.SAME or e.identical_after_normalization]
    tree = Tree(f"[bold]{title}[/bold] ({len(shown)})")
    _add_dir(tree, build_diff_tree(shown))
    rprint(tree)

    s = summarize(entries)
    rprint(Panel(
        f"[green]Added:[/green]     {s.added}\n"
        f"[yellow]Modified:[/yellow]  {s.modified}\n"
        f"[red]Removed:[/red]   {s.removed}\n"
        f"[dim]Same:[/dim]      {s.same} ({s.normalized_same} only after normalization)\n"
        f"[bold red]Errors:[/bold red]    {s.fetch_errors}",
        title="Summary",
        border_style="blue",
    ))
    if s.normalized_same:
        rprint(
            "[yellow]Note:[/yellow] files marked 'identical after normalization' still differ "
            "byte for byte; their content addresses do not match."
        )


def _display_plan(plan: CommitPlan) -> None:
    table = Table(title=f"Commit plan for {plan.target_ref} ({len(plan.entries)} write(s))")
    table.add_column("Path", style="cyan")
    table.add_column("Action")
    table.add_column("Mode", style="dim")
    table.add_column("Blob", style="dim")
    for e in plan.entries:
        if e.is_deletion:
            action = "[red]delete[/red]"
        elif e.upload:
            action = "[yellow]upload[/yellow]"
        else:
            action = "[green]reuse[/green]"
        table.add_row(e.path, action, e.mode, (e.address or "-")[:10])
    rprint(table)
    base = plan.base_commit[:7] if plan.base_commit else "none (branch will be created)"
    rprint(f"[dim]Parent:[/dim] {base}   [dim]Message:[/dim] {plan.message}")
    if plan.skipped:
        rprint(f"[dim]Already identical, skipped:[/dim] {', '.join(plan.skipped)}")


def _display_result(result: CommitResult) -> None:
    if result.noop:
        rprint("[green]Nothing to do.[/green] All selected files already match the target.")
        return
    rprint(Panel(
        f"[dim]Commit:[/dim]   {result.commit_sha}\n"
        f"[dim]Branch:[/dim]   {result.updated_ref}{' (created)' if result.created_ref else ''}\n"
        f"[dim]Written:[/dim]  {len(result.written_paths)} "
        f"({result.uploaded_blobs} uploaded, {result.reused_blobs} reused)\n"
        f"[dim]Deleted:[/dim]  {len(result.deleted_paths)}\n"
        f"[dim]Skipped:[/dim]  {len(result.skipped_paths)}",
        title="Sync Complete",
        border_style="green",
    ))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def branches(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
) -> None:
    """List branches and their tip commits."""
    repo = _validate_repo_id(repo)
    session = _open_session(_get_config())
    items = _run(session.remote.list_branches(repo))
    if not items:
        rprint(f"[yellow]No branches found in '{repo}'.[/yellow]")
        raise typer.Exit(0)
    table = Table(title=f"Branches ({len(items)})")
    table.add_column("Name", style="cyan")
    table.add_column("Tip", style="dim")
    for b in items:
        table.add_row(b.name, b.tip_sha[:7])
    rprint(table)


@app.command()
def diff(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
    source: str = typer.Argument(..., help="Source branch (ignored with --archive)"),
    target: str = typer.Argument(..., help="Target branch"),
    archive: Annotated[
        str | None, typer.Option("--archive", "-a", help="Use a ZIP archive as the source")
    ] = None,
    strip: Annotated[int, typer.Option("--strip", help="Leading folders to drop from archive paths")] = 0,
    deletions: Annotated[
        bool | None,
        typer.Option("--deletions/--no-deletions", help="Also list files only in the target"),
    ] = None,
    inspect: Annotated[
        bool, typer.Option("--inspect", help="Fetch content and re-check modified files")
    ] = False,
    show: Annotated[
        str | None, typer.Option("--show", help="Print the text diff of one path")
    ] = None,
    show_same: Annotated[bool, typer.Option("--all", help="Include unchanged files")] = False,
) -> None:
    """Show what SOURCE (or an archive) would bring to TARGET."""
    repo = _validate_repo_id(repo)
    cfg = _get_config()
    include_deletions = cfg.sync.include_deletions if deletions is None else deletions
    archive_source = _load_archive(archive, cfg, strip)
    session = _open_session(cfg)

    async def _go() -> tuple[list[DiffEntry], bool]:
        src, entries = await _resolve_and_diff(
            session, repo, source, target, archive_source, include_deletions
        )
        if inspect:
            entries = await session.engine.inspect(repo, entries, src, target)
        elif show:
            picked = [e for e in entries if e.path == show]
            if picked:
                inspected = await session.engine.inspect(repo, picked, src, target)
                entries = [inspected[0] if e.path == show else e for e in entries]
        target_exists = (await session.snapshots.get_snapshot(repo, target)).exists
        return entries, target_exists

    entries, target_exists = _run(_go())
    source_label = archive_source.label if archive_source else source

    if not target_exists:
        rprint(f"[yellow]Branch '{target}' does not exist; syncing would create it.[/yellow]")
    _display_diff(entries, f"{source_label} -> {target}", show_same)

    if show:
        match = next((e for e in entries if e.path == show), None)
        if match is None:
            rprint(f"[red]Error:[/red] '{show}' is not part of this comparison")
            raise typer.Exit(1)
        if match.status is DiffStatus.FETCH_ERROR:
            rprint(f"[red]Error:[/red] {match.describe()}")
            raise typer.Exit(1)
        lines = session.engine.text_diff(match, f"{target}/{show}", f"{source_label}/{show}")
        if lines:
            rprint(Syntax("\n".join(lines), "diff", theme="monokai"))
        else:
            rprint(f"[green]{show}: no differences after normalization.[/green]")


@app.command()
def sync(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
    source: str = typer.Argument(..., help="Source branch (ignored with --archive)"),
    target: str = typer.Argument(..., help="Target branch (created if absent)"),
    archive: Annotated[
        str | None, typer.Option("--archive", "-a", help="Use a ZIP archive as the source")
    ] = None,
    strip: Annotated[int, typer.Option("--strip", help="Leading folders to drop from archive paths")] = 0,
    paths: Annotated[
        list[str] | None, typer.Option("--path", "-p", help="Path or glob to sync (repeatable)")
    ] = None,
    sync_all: Annotated[bool, typer.Option("--all", help="Sync every changed file")] = False,
    deletions: Annotated[
        bool | None,
        typer.Option("--deletions/--no-deletions", help="Delete files that exist only in the target"),
    ] = None,
    message: Annotated[str | None, typer.Option("--message", "-m", help="Commit message")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show the commit plan only")] = False,
    write_normalized: Annotated[
        bool,
        typer.Option(
            "--write-normalized",
            help="Also write files that only differ in formatting noise",
        ),
    ] = False,
) -> None:
    """Write selected changes from SOURCE (or an archive) to TARGET as one commit."""
    repo = _validate_repo_id(repo)
    if not paths and not sync_all:
        rprint("[red]Error:[/red] select files with --path or pass --all")
        raise typer.Exit(1)

    cfg = _get_config()
    include_deletions = cfg.sync.include_deletions if deletions is None else deletions
    archive_source = _load_archive(archive, cfg, strip)
    session = _open_session(cfg)

    async def _go() -> tuple[CommitPlan, CommitResult | None]:
        src, entries = await _resolve_and_diff(
            session, repo, source, target, archive_source, include_deletions
        )
        selected = [e for e in entries if e.is_change]
        if paths:
            selected = _select(selected, paths)
        if not write_normalized:
            selected = await session.engine.inspect(repo, selected, src, target)
        commit_message = message or cfg.sync.default_message.format(
            count=sum(1 for e in selected if e.is_change), source=src.label, target=target
        )
        plan = await session.planner.prepare(repo, target, src, selected, commit_message)
        if dry_run or plan.is_noop:
            return plan, None
        return plan, await session.planner.commit(plan, src)

    plan, result = _run(_go())
    if dry_run:
        rprint("[yellow](dry run, nothing written)[/yellow]\n")
        _display_plan(plan)
        return
    _display_result(result or CommitResult.noop_result(target, plan.skipped))


@app.command(name="create-branch")
def create_branch(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
    new_branch: str = typer.Argument(..., help="Branch to create"),
    from_branch: str = typer.Argument(..., help="Branch whose tip the new branch starts at"),
) -> None:
    """Create NEW_BRANCH at the tip of FROM_BRANCH."""
    repo = _validate_repo_id(repo)
    session = _open_session(_get_config())
    sha = _run(session.planner.create_branch(repo, new_branch, from_branch))
    rprint(f"[green]Created[/green] {new_branch} at {sha[:7]} (from {from_branch})")


@app.command()
def export(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
    ref: str = typer.Argument(..., help="Branch whose file content is exported"),
    paths: Annotated[
        list[str] | None, typer.Option("--path", "-p", help="Path or glob to export (repeatable)")
    ] = None,
    against: Annotated[
        str | None,
        typer.Option("--against", help="Only export files that differ from this branch"),
    ] = None,
    output: Annotated[str | None, typer.Option("--output", "-o", help="ZIP file to write")] = None,
) -> None:
    """Export tracked files of REF into a ZIP archive."""
    repo = _validate_repo_id(repo)
    session = _open_session(_get_config())

    async def _go() -> dict[str, bytes]:
        snapshot = await session.snapshots.get_snapshot(repo, ref)
        if not snapshot.exists:
            raise ValueError(f"Branch '{ref}' does not exist in {repo}")
        selected = list(snapshot.entries)
        if against is not None:
            entries = await session.engine.diff(repo, against, ref)
            changed = {e.path for e in entries if e.status is DiffStatus.MODIFIED}
            selected = [p for p in selected if p in changed]
        if paths:
            selected = [p for p in selected if any(p == pat or fnmatch.fnmatch(p, pat) for pat in paths)]
        return await session.engine.collect_files(repo, ref, selected)

    files = _run(_go())
    if not files:
        rprint("[yellow]No files to export.[/yellow]")
        raise typer.Exit(0)

    if output is None:
        output = default_export_name(repo, against, ref) if against else default_export_name(repo, ref)
    Path(output).write_bytes(export_archive(files))
    rprint(f"[green]Exported[/green] {len(files)} file(s) to {output}")


# ---------------------------------------------------------------------------
# Config commands
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default branchsync.yaml in current directory."""
    target = Path("branchsync.yaml")
    if target.exists() and not force:
        rprint("[yellow]branchsync.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")
