"""Prompt Ops CLI: prompt-ops command."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import click

from prompt_ops.config import get_settings
from prompt_ops.core.aggregation import MetricsAggregator
from prompt_ops.core.backup import BackupManager, RestoreOptions
from prompt_ops.core.errors import PromptOpsError
from prompt_ops.core.maintenance import DatabaseMaintenance
from prompt_ops.db.client import StoreClient
from prompt_ops.utils.logging import setup_logging
from prompt_ops.utils.timeutils import utcnow

PERIODS = click.Choice(["hour", "day", "week", "month"])
ENVIRONMENTS = click.Choice(["production", "development"])


def _format_table(rows: list[dict], columns: list[str]) -> str:
    """Simple table formatter."""
    if not rows:
        return "No results."
    widths = {c: len(c) for c in columns}
    for row in rows:
        for c in columns:
            widths[c] = max(widths[c], len(str(row.get(c, ""))))

    header = "  ".join(c.upper().ljust(widths[c]) for c in columns)
    separator = "  ".join("-" * widths[c] for c in columns)
    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(str(row.get(c, "")).ljust(widths[c]) for c in columns))
    return "\n".join(lines)


def _format_report(data: dict[str, Any], indent: int = 0) -> str:
    """Render a nested report as indented ``key: value`` lines."""
    lines = []
    pad = "  " * indent
    for key, value in data.items():
        if isinstance(value, dict):
            lines.append(f"{pad}{key}:")
            lines.append(_format_report(value, indent + 1))
        elif isinstance(value, list):
            lines.append(f"{pad}{key}: {len(value)}")
            for item in value[:10]:
                lines.append(f"{pad}  - {item}")
            if len(value) > 10:
                lines.append(f"{pad}  ... and {len(value) - 10} more")
        else:
            lines.append(f"{pad}{key}: {value}")
    return "\n".join(line for line in lines if line)


@click.group()
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run")
@click.pass_context
def cli(ctx: click.Context, output_format: str, log_level: str | None) -> None:
    """Prompt Ops CLI: backups, database maintenance and metrics rollups."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    ctx.obj = StoreClient(settings)
    ctx.meta["output_format"] = output_format


def _store(ctx: click.Context) -> StoreClient:
    """Connect on first use; the connection is closed when the command ends."""
    store: StoreClient = ctx.find_root().obj
    if not store.is_connected:
        store.connect()
        ctx.find_root().call_on_close(store.disconnect)
    return store


def _output(ctx: click.Context, data: Any, columns: list[str] | None = None) -> None:
    fmt = ctx.find_root().meta.get("output_format", "table")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list) and columns:
        click.echo(_format_table(data, columns))
    elif isinstance(data, dict):
        click.echo(_format_report(data))
    else:
        click.echo(json.dumps(data, indent=2, default=str))


def _backups(ctx: click.Context, directory: str | None) -> BackupManager:
    return BackupManager(_store(ctx), backups_dir=directory)


# --- Backup commands ---


@cli.group()
def backup() -> None:
    """Create, inspect and restore backups."""


@backup.command("create")
@click.option("--no-compress", is_flag=True, help="Always write plain JSON")
@click.option("--dir", "directory", default=None, help="Backups directory")
@click.pass_context
def backup_create(ctx: click.Context, no_compress: bool, directory: str | None) -> None:
    """Snapshot every table into a new backup file."""
    try:
        path = _backups(ctx, directory).create_backup(compress=not no_compress)
    except PromptOpsError as e:
        raise click.ClickException(str(e))
    _output(ctx, {"backup": str(path)})


@backup.command("list")
@click.option("--dir", "directory", default=None, help="Backups directory")
@click.pass_context
def backup_list(ctx: click.Context, directory: str | None) -> None:
    """List backups, newest first. Corrupted files are shown, not hidden."""
    backups = BackupManager(ctx.find_root().obj, backups_dir=directory).list_backups()
    _output(
        ctx,
        [b.to_dict() for b in backups],
        ["filename", "timestamp", "size", "integrity", "compressed"],
    )


@backup.command("verify")
@click.argument("path")
@click.pass_context
def backup_verify(ctx: click.Context, path: str) -> None:
    """Check a backup's structure and row counts."""
    manager = BackupManager(ctx.find_root().obj)
    try:
        metadata = manager.load_backup(path)["metadata"]
    except PromptOpsError as e:
        raise click.ClickException(str(e))
    _output(ctx, {"backup": path, "integrity": "valid", "collections": metadata["collections"]})


@backup.command("restore")
@click.argument("path")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Report what would be imported without writing")
@click.option("--mode", type=click.Choice(["replace", "merge"]), default="replace")
@click.pass_context
def backup_restore(ctx: click.Context, path: str, force: bool, dry_run: bool, mode: str) -> None:
    """Restore a backup. Replace mode deletes all existing data first."""

    def confirm(metadata: dict[str, Any]) -> bool:
        counts = ", ".join(f"{k}={v}" for k, v in metadata.get("collections", {}).items())
        click.echo(f"Backup from {metadata.get('timestamp')} contains {counts}", err=True)
        warning = (
            "This will permanently delete all existing data. Continue?"
            if mode == "replace"
            else "Merge this backup into the existing data?"
        )
        return click.confirm(warning, default=False, err=True)

    options = RestoreOptions(force=force, dry_run=dry_run, mode=mode, confirm=confirm)
    try:
        report = _backups(ctx, None).restore_from_backup(path, options)
    except PromptOpsError as e:
        raise click.ClickException(str(e))

    if report.cancelled:
        click.echo("Restore cancelled.", err=True)
        return
    _output(ctx, report.to_dict())
    if report.total_errors:
        ctx.exit(1)


@backup.command("cleanup")
@click.option(
    "--keep", "keep_count", type=click.IntRange(min=0), default=None, help="Valid backups to keep"
)
@click.option("--dir", "directory", default=None, help="Backups directory")
@click.pass_context
def backup_cleanup(ctx: click.Context, keep_count: int | None, directory: str | None) -> None:
    """Delete all but the newest valid backups. Corrupted files are left in place."""
    keep = get_settings().backup_keep_count if keep_count is None else keep_count
    deleted = BackupManager(ctx.find_root().obj, backups_dir=directory).cleanup_old_backups(keep)
    _output(ctx, {"deleted": deleted, "kept": keep})


@backup.command("delete")
@click.argument("filename")
@click.option("--dir", "directory", default=None, help="Backups directory")
@click.pass_context
def backup_delete(ctx: click.Context, filename: str, directory: str | None) -> None:
    """Delete one backup file, corrupted or not."""
    try:
        BackupManager(ctx.find_root().obj, backups_dir=directory).delete_backup(filename)
    except (OSError, ValueError) as e:
        raise click.ClickException(str(e))
    _output(ctx, {"deleted": filename})


# --- Database commands ---


@cli.group()
def db() -> None:
    """Database maintenance."""


@db.command("init")
@click.option("--force", is_flag=True, help="Clear existing data without asking")
@click.pass_context
def db_init(ctx: click.Context, force: bool) -> None:
    """Create indexes on an empty database, clearing existing rows if confirmed."""

    def confirm(counts: dict[str, int]) -> bool:
        if force:
            return True
        click.echo(f"Existing rows: {counts}", err=True)
        return click.confirm(
            "This will DELETE ALL existing data and reset the database. Continue?",
            default=False,
            err=True,
        )

    report = DatabaseMaintenance(_store(ctx)).init(confirm=confirm)
    _output(ctx, report.to_dict())


@db.command("reset")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def db_reset(ctx: click.Context, force: bool) -> None:
    """Delete every row of every table."""
    if not force and not click.confirm(
        "This will permanently delete all data. Continue?", default=False, err=True
    ):
        click.echo("Reset cancelled.", err=True)
        return
    report = DatabaseMaintenance(_store(ctx)).reset()
    _output(ctx, report.to_dict())


@db.command("migrate")
@click.option("--dry-run", is_flag=True)
@click.pass_context
def db_migrate(ctx: click.Context, dry_run: bool) -> None:
    """Repair primary versions on rows written by the legacy schema."""
    report = DatabaseMaintenance(_store(ctx)).migrate(dry_run=dry_run)
    _output(ctx, report.to_dict())
    if report.errors:
        ctx.exit(1)


@db.command("validate")
@click.pass_context
def db_validate(ctx: click.Context) -> None:
    """Check every row; exits non-zero when errors are found."""
    report = DatabaseMaintenance(_store(ctx)).validate()
    _output(ctx, report.to_dict())
    if not report.is_valid:
        ctx.exit(1)


# --- Metrics commands ---


@cli.group()
def metrics() -> None:
    """Metrics rollups and reports."""


@metrics.command("rollup")
@click.option("--period", type=PERIODS, required=True)
@click.option(
    "--timestamp", type=click.DateTime(), default=None, help="Any time in the bucket (UTC)"
)
@click.option("--environment", type=ENVIRONMENTS, default=None)
@click.pass_context
def metrics_rollup(
    ctx: click.Context, period: str, timestamp: datetime | None, environment: str | None
) -> None:
    """Upsert every bucket that has results in the given period."""
    report = MetricsAggregator(_store(ctx)).rollup(
        period, timestamp or utcnow(), environment=environment
    )
    _output(ctx, report.to_dict())
    if report.errors:
        ctx.exit(1)


@metrics.command("summary")
@click.argument("prompt_id")
@click.option("--period", type=PERIODS, required=True)
@click.option("--start", type=click.DateTime(), required=True)
@click.option("--end", type=click.DateTime(), required=True)
@click.option("--environment", type=ENVIRONMENTS, default=None)
@click.option("--version", "prompt_version", default=None)
@click.pass_context
def metrics_summary(
    ctx: click.Context,
    prompt_id: str,
    period: str,
    start: datetime,
    end: datetime,
    environment: str | None,
    prompt_version: str | None,
) -> None:
    """Summary of a prompt's stored buckets in a date range."""
    result = MetricsAggregator(_store(ctx)).aggregate_metrics(
        prompt_id, period, start, end, environment=environment, prompt_version=prompt_version
    )
    _output(ctx, result["summary"])


@metrics.command("top")
@click.option("--period", type=PERIODS, required=True)
@click.option("--start", type=click.DateTime(), required=True)
@click.option("--end", type=click.DateTime(), required=True)
@click.option("--environment", type=ENVIRONMENTS, default=None)
@click.option("--limit", type=int, default=10)
@click.pass_context
def metrics_top(
    ctx: click.Context,
    period: str,
    start: datetime,
    end: datetime,
    environment: str | None,
    limit: int,
) -> None:
    """Best prompt versions by average score, then success rate."""
    top = MetricsAggregator(_store(ctx)).get_top_performing_prompts(
        period, start, end, environment=environment, limit=limit
    )
    _output(
        ctx,
        top,
        [
            "prompt_name",
            "prompt_version",
            "agent_type",
            "average_score",
            "success_rate",
            "total_requests",
        ],
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
