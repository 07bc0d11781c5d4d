"""Backup/Restore Manager: portable JSON snapshots of the four tables.

A backup file is ``{"metadata": {...}, "data": {...}}`` with camelCase
collection keys. Rows are written exactly as the store returns them so a
restore can re-insert them with their original ids. Files are gzipped when
compression is requested and the JSON exceeds the size threshold.
"""

from __future__ import annotations

import gzip
import json
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel

from prompt_ops.config import get_settings
from prompt_ops.core.errors import IntegrityError, PartialImportError, PromptOpsError
from prompt_ops.db.client import TABLES, StoreClient
from prompt_ops.db.models import (
    PromptMetricsRecord,
    PromptRecord,
    TestCaseRecord,
    TestResultRecord,
    parse,
)
from prompt_ops.utils.timeutils import utcnow

logger = structlog.get_logger()

BACKUP_FORMAT_VERSION = "1.0.0"

# Restore order: prompts before the rows that reference them
COLLECTION_MODELS: dict[str, type[BaseModel]] = {
    "prompts": PromptRecord,
    "testCases": TestCaseRecord,
    "testResults": TestResultRecord,
    "promptMetrics": PromptMetricsRecord,
}


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


@dataclass
class BackupInfo:
    """One entry of ``list_backups``. Corrupted files carry placeholder metadata."""

    filename: str
    path: Path
    size_bytes: int
    metadata: dict[str, Any]

    @property
    def integrity(self) -> str:
        return self.metadata.get("integrity", "corrupted")

    @property
    def is_valid(self) -> bool:
        return self.integrity == "valid"

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "size": _format_size(self.size_bytes),
            "size_bytes": self.size_bytes,
            "timestamp": self.metadata.get("timestamp"),
            "integrity": self.integrity,
            "compressed": self.metadata.get("compressed", False),
            "collections": self.metadata.get("collections", {}),
        }


@dataclass
class RestoreOptions:
    force: bool = False
    dry_run: bool = False
    mode: str = "replace"
    # Asked before any write unless ``force``; receives the backup metadata
    confirm: Callable[[dict[str, Any]], bool] | None = None

    def __post_init__(self) -> None:
        if self.mode not in ("replace", "merge"):
            raise ValueError(f"Unknown restore mode '{self.mode}', expected replace or merge")


@dataclass
class CollectionStats:
    imported: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class RestoreReport:
    backup: str
    mode: str
    dry_run: bool = False
    cancelled: bool = False
    collections: dict[str, CollectionStats] = field(
        default_factory=lambda: {name: CollectionStats() for name in COLLECTION_MODELS}
    )
    errors: list[str] = field(default_factory=list)

    @property
    def total_imported(self) -> int:
        return sum(s.imported for s in self.collections.values())

    @property
    def total_skipped(self) -> int:
        return sum(s.skipped for s in self.collections.values())

    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.collections.values())

    def record_error(self, collection: str, message: str) -> None:
        self.collections[collection].errors += 1
        self.errors.append(message)

    def raise_for_errors(self) -> None:
        if self.total_errors:
            raise PartialImportError(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup": self.backup,
            "mode": self.mode,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "collections": {
                name: {"imported": s.imported, "skipped": s.skipped, "errors": s.errors}
                for name, s in self.collections.items()
            },
            "total_imported": self.total_imported,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "errors": self.errors,
        }


def validate_backup_data(backup: Any) -> None:
    """Structural and count cross-check. Raises ``IntegrityError``, never repairs."""
    if not isinstance(backup, dict) or not backup.get("metadata") or "data" not in backup:
        raise IntegrityError("Invalid backup format: missing metadata or data")

    metadata, data = backup["metadata"], backup["data"]
    if not isinstance(metadata, dict) or not metadata.get("timestamp"):
        raise IntegrityError("Invalid backup metadata: missing timestamp")
    counts = metadata.get("collections")
    if not isinstance(counts, dict) or not isinstance(data, dict):
        raise IntegrityError("Invalid backup metadata: missing collection counts")

    for name in COLLECTION_MODELS:
        rows = data.get(name)
        if not isinstance(rows, list):
            raise IntegrityError(f"Invalid backup data: '{name}' must be a list")
        if len(rows) != counts.get(name):
            raise IntegrityError(
                f"Backup integrity check failed: {name} has {len(rows)} rows, "
                f"metadata says {counts.get(name)}"
            )


class BackupManager:
    """Creates, inspects, prunes and restores backup files in one directory."""

    def __init__(
        self,
        db: StoreClient,
        backups_dir: str | Path | None = None,
        compress_threshold: int | None = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.backups_dir = Path(backups_dir) if backups_dir else settings.backups_path
        self.compress_threshold = (
            settings.backup_compress_threshold if compress_threshold is None else compress_threshold
        )

    def _ensure_dir(self) -> None:
        self.backups_dir.mkdir(parents=True, exist_ok=True)

    def _new_backup_path(self) -> tuple[Path, datetime]:
        """Pick a filename from the current UTC time that no existing backup uses."""
        created = utcnow()
        while True:
            stem = f"backup-{created:%Y-%m-%d-%H-%M-%S-%f}.json"
            path = self.backups_dir / stem
            if not path.exists() and not path.with_name(stem + ".gz").exists():
                return path, created
            created += timedelta(microseconds=1)

    def create_backup(self, compress: bool = True) -> Path:
        """Snapshot every row of every table into a new file and return its path."""
        self._ensure_dir()
        path, created = self._new_backup_path()

        data = {name: self.db.select(table) for name, table in TABLES.items()}
        metadata = {
            "timestamp": created.isoformat(),
            "version": BACKUP_FORMAT_VERSION,
            "collections": {name: len(rows) for name, rows in data.items()},
            "databaseUri": self.db.uri,
            "integrity": "valid",
            "compressed": False,
        }
        backup = {"metadata": metadata, "data": data}
        validate_backup_data(backup)

        payload = json.dumps(backup, indent=2, default=str).encode("utf-8")
        if compress and len(payload) > self.compress_threshold:
            metadata["compressed"] = True
            payload = gzip.compress(json.dumps(backup, indent=2, default=str).encode("utf-8"))
            path = path.with_name(path.name + ".gz")

        path.write_bytes(payload)
        logger.info(
            "backup.created",
            path=str(path),
            size=_format_size(len(payload)),
            compressed=metadata["compressed"],
            **metadata["collections"],
        )
        return path

    def load_backup(self, path: str | Path) -> dict[str, Any]:
        """Read, decompress and validate a backup. Any failure is an ``IntegrityError``."""
        path = Path(path)
        try:
            raw = path.read_bytes()
            if path.name.endswith(".gz"):
                raw = gzip.decompress(raw)
            backup = json.loads(raw.decode("utf-8"))
        except (OSError, EOFError, ValueError, RecursionError, zlib.error) as e:
            raise IntegrityError(f"Failed to load backup from {path}: {e}") from e

        validate_backup_data(backup)
        return backup

    def validate_backup_integrity(self, path: str | Path) -> bool:
        try:
            self.load_backup(path)
        except IntegrityError:
            return False
        return True

    def list_backups(self) -> list[BackupInfo]:
        """All backup files, newest first. Unreadable files are marked corrupted."""
        self._ensure_dir()
        files = [
            p
            for p in self.backups_dir.iterdir()
            if p.is_file()
            and p.name.startswith("backup-")
            and (p.name.endswith(".json") or p.name.endswith(".json.gz"))
        ]
        files.sort(key=lambda p: p.name.removesuffix(".gz"), reverse=True)

        backups = []
        for path in files:
            try:
                metadata = self.load_backup(path)["metadata"]
            except IntegrityError as e:
                logger.warning("backup.corrupted", filename=path.name, error=str(e))
                metadata = {
                    "timestamp": None,
                    "version": "unknown",
                    "collections": {name: 0 for name in COLLECTION_MODELS},
                    "databaseUri": "unknown",
                    "integrity": "corrupted",
                    "compressed": path.name.endswith(".gz"),
                }
            backups.append(
                BackupInfo(
                    filename=path.name,
                    path=path,
                    size_bytes=path.stat().st_size,
                    metadata=metadata,
                )
            )
        return backups

    def delete_backup(self, filename: str) -> None:
        """Delete one backup file by name, valid or corrupted."""
        if Path(filename).name != filename:
            raise ValueError(f"Backup filename must not contain a path: {filename}")
        (self.backups_dir / filename).unlink()
        logger.info("backup.deleted", filename=filename)

    def cleanup_old_backups(self, keep_count: int = 10) -> int:
        """Keep the newest ``keep_count`` valid backups. Corrupted files are left alone.

        A file that cannot be removed is logged and skipped; the return value
        counts only the files actually deleted.
        """
        if keep_count < 0:
            raise ValueError(f"keep_count must not be negative: {keep_count}")
        valid = [b for b in self.list_backups() if b.is_valid]
        deleted = 0
        for backup in valid[keep_count:]:
            try:
                self.delete_backup(backup.filename)
            except OSError as e:
                logger.warning("backup.cleanup_failed", filename=backup.filename, error=str(e))
                continue
            deleted += 1
        logger.info("backup.cleanup", kept=min(len(valid), keep_count), deleted=deleted)
        return deleted

    def restore_from_backup(
        self,
        path: str | Path,
        options: RestoreOptions | None = None,
    ) -> RestoreReport:
        """Load a backup into the store.

        Replace mode empties every table first; merge mode keeps existing rows
        and skips backup rows whose id is already present. Each row is validated
        and inserted on its own so one bad row never aborts its collection.
        """
        options = options or RestoreOptions()
        backup = self.load_backup(path)
        report = RestoreReport(backup=str(path), mode=options.mode, dry_run=options.dry_run)

        if not options.force and not options.dry_run:
            if options.confirm is None or not options.confirm(backup["metadata"]):
                report.cancelled = True
                logger.info("backup.restore_cancelled", path=str(path))
                return report

        existing: dict[str, set[str]] = {name: set() for name in COLLECTION_MODELS}
        existing_names: set[str] = set()
        if options.mode == "merge":
            for name, table in TABLES.items():
                rows = self.db.select(table)
                existing[name] = {str(r.get("id")) for r in rows}
                if name == "prompts":
                    existing_names = {r.get("name") for r in rows}
        elif not options.dry_run:
            for table in TABLES.values():
                removed = self.db.delete_all(table)
                logger.info("backup.table_cleared", table=table, removed=removed)

        for name, table in TABLES.items():
            self._import_collection(
                name, table, backup["data"][name], existing[name], existing_names, options, report
            )

        if not options.dry_run:
            self.db.ensure_indexes()

        logger.info(
            "backup.restored",
            path=str(path),
            mode=options.mode,
            dry_run=options.dry_run,
            imported=report.total_imported,
            skipped=report.total_skipped,
            errors=report.total_errors,
        )
        return report

    def _import_collection(
        self,
        name: str,
        table: str,
        rows: list[Any],
        existing_ids: set[str],
        existing_names: set[str],
        options: RestoreOptions,
        report: RestoreReport,
    ) -> None:
        stats = report.collections[name]
        model = COLLECTION_MODELS[name]

        for index, row in enumerate(rows):
            label = f"{name}[{index}]"
            if not isinstance(row, dict):
                report.record_error(name, f"{label}: row is not an object")
                continue
            if row.get("id") is not None and str(row["id"]) in existing_ids:
                stats.skipped += 1
                continue
            try:
                parse(model, row, label)
                if name == "prompts":
                    if row["name"] in existing_names:
                        raise IntegrityError(f"{label}: prompt name '{row['name']}' already exists")
                    existing_names.add(row["name"])
                if not options.dry_run:
                    self.db.insert(table, row)
            except PromptOpsError as e:
                report.record_error(name, str(e))
                logger.warning("backup.row_failed", collection=name, index=index, error=str(e))
                continue
            except Exception as e:
                # Store rejections (constraint violations, bad column values)
                report.record_error(name, f"{label}: {e}")
                logger.warning("backup.row_failed", collection=name, index=index, error=str(e))
                continue

            stats.imported += 1
            if row.get("id") is not None:
                existing_ids.add(str(row["id"]))
