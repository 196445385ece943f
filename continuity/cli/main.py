# continuity/cli/main.py
"""
CLI for recording, verifying, backing up and inspecting agent action streams.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from continuity.backup.rotator import BACKUP_KINDS, BackupRotator
from continuity.chain.writer import ActionLog
from continuity.core.config import Settings, load_settings
from continuity.core.paths import stream_path, utc_today
from continuity.core.types import Severity
from continuity.ops.health import RestartReport, health_check, status_summary, verify_on_restart
from continuity.ops.manifest import pre_compaction_checkpoint
from continuity.ops.workflows import list_workflows
from continuity.query.engine import DEFAULT_QUERY_LIMIT, last_action, query, recall
from continuity.verify.verifier import IntegrityValidator

app = typer.Typer(
    name="continuity",
    help="Record, verify and back up tamper-evident agent action streams",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

MAX_EXIT_CODE = 125


def setup_logging(level: int) -> None:
    root = logging.getLogger("continuity")
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(console=err_console, show_path=False))
    root.setLevel(level)


def get_settings(ctx: typer.Context, base_dir: Optional[Path] = None) -> Settings:
    """Resolve settings in this order:
    1. --base-dir on the command
    2. --base-dir before the command
    3. CONTINUITY_BASE_DIR environment variable / default ~/.continuity
    """
    if base_dir is None and ctx.obj:
        base_dir = ctx.obj.get("base_dir")
    return load_settings(base_dir=base_dir.resolve() if base_dir else None)


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


def problem_exit(count: int) -> None:
    """Exit with the number of problems found (capped), or 0."""
    if count:
        raise typer.Exit(min(count, MAX_EXIT_CODE))


def print_row(row: dict) -> None:
    console.print(json.dumps(row, separators=(",", ":")), markup=False, highlight=False, soft_wrap=True)


def print_restart_report(report: RestartReport) -> None:
    marks = {"ok": "[green]✓[/]", "info": "[blue]ℹ[/]", "warn": "[yellow]⚠[/]", "error": "[red]✗[/]"}
    console.print("=== Continuity Verification ===")
    for check in report.checks:
        console.print(f"{marks[check.level]} {check.name}: ", end="")
        console.print(check.detail, markup=False, highlight=False)

    if report.passed:
        console.print("[green]✅ Verification PASSED[/]")
    else:
        console.print(f"[red]❌ Verification FAILED ({report.errors} errors)[/]")


def status_table(summary: dict) -> Table:
    table = Table(title="Continuity Status")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Today's Actions", str(summary["today_actions"]))
    table.add_row("Active Workflows", str(summary["active_workflows"]))
    table.add_row("Last Action", summary["last_action_time"] or "none")
    integrity = {
        "valid": "✓ valid",
        "invalid": f"✗ {summary['integrity_failures']} failures",
    }.get(summary["integrity"], "⚠ no chain")
    table.add_row("Integrity", integrity)
    table.add_row("Sequence", str(summary["sequence"]) if summary["sequence"] is not None else "?")
    table.add_row("Backups", f"{summary['backups']} files")
    table.add_row("Disk", f"{summary['disk_free_mb']}MB free" if summary["disk_free_mb"] is not None else "unknown")
    return table


def print_workflows(base_dir: Path) -> None:
    active = list_workflows(base_dir)
    if not active:
        console.print("No active workflows")
        return
    for wf in active:
        console.print(f"- {wf.name} (updated: {wf.updated.isoformat(timespec='seconds')})", markup=False)
    console.print(f"({len(active)} workflows active)")


@app.callback()
def main(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(
        None,
        "--base-dir",
        help="Continuity directory (overrides CONTINUITY_BASE_DIR env var)",
    ),
):
    """Manage tamper-evident agent action streams."""
    ctx.obj = {"base_dir": base_dir}
    setup_logging(load_settings(base_dir=base_dir).log_level)


def _append(ctx, base_dir, type, platform, description, cost, proof, metadata, severity):
    settings = get_settings(ctx, base_dir)
    try:
        meta = json.loads(metadata) if metadata else None
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--metadata must be a JSON object: {e.msg}")
    if meta is not None and not isinstance(meta, dict):
        raise typer.BadParameter("--metadata must be a JSON object")

    log = ActionLog(settings=settings)
    if severity == Severity.CRITICAL:
        return log.append_critical(type, platform, description, cost=cost, proof=proof, metadata=meta)
    return log.append(type, platform, description, cost=cost, proof=proof, metadata=meta, severity=severity)


@app.command("log")
def log_action(
    ctx: typer.Context,
    type: str = typer.Argument(..., help="Action type, e.g. purchase, commit, message"),
    platform: str = typer.Argument(..., help="Where the action happened"),
    description: str = typer.Argument(..., help="Human-readable description"),
    cost: Optional[str] = typer.Option(None, "--cost", help="Nonnegative amount; anything else is stored as null"),
    proof: Optional[str] = typer.Option(None, "--proof", help="External verification reference, e.g. tx hash"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="JSON object of extra fields"),
    severity: Severity = typer.Option(Severity.MEDIUM, "--severity", case_sensitive=False),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Append an action to today's stream."""
    result = _append(ctx, base_dir, type, platform, description, cost, proof, metadata, severity)
    if not result:
        console.print(f"[red]✗ Failed to log {type} ({result.reason}); see EMERGENCY_RECOVERY.jsonl[/]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Logged: {type} on {platform} (seq: {result.sequence})[/]")
    console.print(result.action_id, markup=False, highlight=False)


@app.command("log-critical")
def log_critical(
    ctx: typer.Context,
    type: str = typer.Argument(...),
    platform: str = typer.Argument(...),
    description: str = typer.Argument(...),
    cost: Optional[str] = typer.Option(None, "--cost"),
    proof: Optional[str] = typer.Option(None, "--proof"),
    metadata: Optional[str] = typer.Option(None, "--metadata"),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Append a critical action. Do NOT perform the action unless this exits 0."""
    result = _append(ctx, base_dir, type, platform, description, cost, proof, metadata, Severity.CRITICAL)
    if not result:
        console.print(f"[red]CRITICAL: Failed to log critical action ({result.reason}). ABORTING.[/]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Logged: {type} on {platform} (seq: {result.sequence})[/]")
    console.print(result.action_id, markup=False, highlight=False)


@app.command()
def backup(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="hourly | daily | manual"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Label for manual backups"),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Create a backup (hourly copy, daily gzip archive or manual copy) and rotate old ones."""
    if kind not in BACKUP_KINDS:
        raise typer.BadParameter(f"kind must be one of: {', '.join(BACKUP_KINDS)}")
    settings = get_settings(ctx, base_dir)
    result = BackupRotator(settings.base_dir, settings).create(kind, description)

    if not result:
        console.print(f"[red]✗ {kind.capitalize()} backup failed: {result.reason}[/]")
        raise typer.Exit(1)
    if result.path is not None and not result.reason:
        console.print(f"[green]✓ {kind.capitalize()} backup created: {result.path.name}[/]")
    else:
        console.print(f"[yellow]{result.reason}[/]")
    for path in result.removed:
        console.print(f"  Removed: {path.name}")


@app.command()
def validate(
    ctx: typer.Context,
    day: Optional[str] = typer.Option(None, "--date", help="Stream date YYYY-MM-DD (default: today)"),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Replay the hash chain of a stream. Exit code = number of failures."""
    settings = get_settings(ctx, base_dir)
    path = stream_path(settings.base_dir, parse_date(day) or utc_today())

    if not path.exists():
        console.print(f"[red]Action stream not found: {path}[/]")
        raise typer.Exit(1)

    console.print("=== Validating Action Stream Integrity ===")
    result = IntegrityValidator().validate_file(path)
    for failure in result.failures:
        console.print(f"[red]✗ Line {failure.index}: {failure.category}: {failure.message}[/]")

    if result.is_valid:
        console.print(f"[green]✅ Integrity validation PASSED ({result.entries} entries verified)[/]")
    else:
        console.print(f"[red]❌ Integrity validation FAILED ({len(result.failures)} errors in {result.entries} entries)[/]")
    problem_exit(len(result.failures))


@app.command()
def verify(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Verify continuity on restart: stream, chain, disk, workflows, backups, emergency log."""
    settings = get_settings(ctx, base_dir)
    report = verify_on_restart(settings.base_dir, settings)
    print_restart_report(report)
    problem_exit(report.errors)


@app.command()
def health(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Print a JSON health report. Exit 1 unless healthy."""
    settings = get_settings(ctx, base_dir)
    report = health_check(settings.base_dir, settings)
    console.print_json(data=report.to_dict())
    if not report.healthy:
        raise typer.Exit(1)


@app.command("query")
def query_actions(
    ctx: typer.Context,
    type: Optional[str] = typer.Option(None, "--type"),
    platform: Optional[str] = typer.Option(None, "--platform"),
    since: Optional[str] = typer.Option(None, "--since", help="Minimum timestamp (RFC 3339 prefix)"),
    limit: int = typer.Option(DEFAULT_QUERY_LIMIT, "--limit", "-n", min=1),
    day: Optional[str] = typer.Option(None, "--date", help="Stream date YYYY-MM-DD (default: today)"),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Filter a stream by type / platform / time."""
    settings = get_settings(ctx, base_dir)
    path = stream_path(settings.base_dir, parse_date(day) or utc_today())
    if not path.exists():
        console.print("[yellow]No action stream found[/]")
        raise typer.Exit(1)

    rows = query(path, type=type, platform=platform, since=since, limit=limit)
    for row in rows:
        print_row(row)
    console.print(f"({len(rows)} results)")


@app.command()
def last(
    ctx: typer.Context,
    platform: Optional[str] = typer.Option(None, "--platform"),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Show the most recent action today (optionally on one platform)."""
    settings = get_settings(ctx, base_dir)
    path = stream_path(settings.base_dir, utc_today())
    if not path.exists():
        console.print("[yellow]No action stream found[/]")
        raise typer.Exit(1)

    row = last_action(path, platform=platform)
    if row is None:
        console.print("[yellow]No actions found[/]")
        raise typer.Exit(1)
    print_row(row)


@app.command()
def workflows(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """List checkpointed workflows that have not completed."""
    settings = get_settings(ctx, base_dir)
    print_workflows(settings.base_dir)


@app.command()
def status(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Show a one-screen summary of the continuity directory."""
    settings = get_settings(ctx, base_dir)
    console.print(status_table(status_summary(settings.base_dir, settings)))


@app.command()
def checkpoint(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Write COMPACTION_MANIFEST.json before a context compaction."""
    settings = get_settings(ctx, base_dir)
    manifest = pre_compaction_checkpoint(settings.base_dir, settings)
    console.print("[green]✓ Pre-compaction checkpoint created[/]")
    console.print(f"  Uncommitted actions: {manifest['uncommitted_actions']}")
    console.print(f"  Active workflows: {manifest['active_workflows']}")
    console.print(f"  Disk space: {manifest['disk_space_kb']}KB")


@app.command("recall")
def recall_actions(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Print recent actions per CONTINUITY_RECALL_MODE / CONTINUITY_RECALL_LIMIT."""
    settings = get_settings(ctx, base_dir)
    if settings.recall_mode == "off":
        console.print("[yellow]Recall is off (CONTINUITY_RECALL_MODE=off)[/]")
        return
    rows = recall(settings.base_dir, settings)
    for row in rows:
        print_row(row)
    console.print(f"({len(rows)} recalled)")


@app.command()
def wake(
    ctx: typer.Context,
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", hidden=True),
):
    """Re-establish context after a restart: verify, status, workflows, recent actions."""
    settings = get_settings(ctx, base_dir)
    console.print("=== Waking Up ===")
    report = verify_on_restart(settings.base_dir, settings)
    print_restart_report(report)
    console.print()
    console.print(status_table(status_summary(settings.base_dir, settings)))
    console.print()
    print_workflows(settings.base_dir)

    rows = recall(settings.base_dir, settings)
    if rows:
        console.print()
        console.print("Recent activity:")
        for row in rows:
            print_row(row)
    console.print()
    console.print("=== Ready ===")
    problem_exit(report.errors)


if __name__ == "__main__":
    app()
