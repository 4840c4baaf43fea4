"""
Deployment backups.

Before a deployment replaces anything, the current application tree is copied
to ``<backup_dir>/backup-YYYYmmdd-HHMMSS``. Only the ``keep`` most recent
backups are retained. ``restore_backup`` puts one back for a rollback.
"""

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog

from deploy.src.errors import DeploymentError

logger = structlog.get_logger(__name__)

BACKUP_PREFIX = "backup-"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def _sort_key(path: Path):
    return (path.stat().st_mtime, path.name)


def list_backups(backup_dir: Path) -> List[Path]:
    """Backups in ``backup_dir``, newest first."""
    backup_dir = Path(backup_dir)
    if not backup_dir.is_dir():
        return []

    entries = [p for p in backup_dir.iterdir() if p.name.startswith(BACKUP_PREFIX)]
    return sorted(entries, key=_sort_key, reverse=True)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def prune_backups(backup_dir: Path, keep: int) -> List[Path]:
    """
    Delete all but the ``keep`` most recent backups.

    Entries not named ``backup-*`` are never touched.

    Args:
        backup_dir: Backup directory
        keep: Number of backups to retain (>= 1)

    Returns:
        Paths that were removed
    """
    if keep < 1:
        raise ValueError(f"keep must be >= 1, got {keep}")

    removed = []
    for stale in list_backups(backup_dir)[keep:]:
        _remove(stale)
        removed.append(stale)

    if removed:
        logger.info(
            "backups_pruned",
            backup_dir=str(backup_dir),
            removed=[p.name for p in removed],
            kept=keep,
        )
    return removed


def _unique_backup_path(backup_dir: Path, now: datetime) -> Path:
    base = f"{BACKUP_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}"
    candidate = backup_dir / base
    suffix = 1
    while candidate.exists():
        candidate = backup_dir / f"{base}-{suffix}"
        suffix += 1
    return candidate


def create_backup(
    app_dir: Path,
    backup_dir: Path,
    keep: int = 5,
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Copy the current deployment into a new timestamped backup, then prune.

    Args:
        app_dir: Application directory to back up
        backup_dir: Directory holding backups
        keep: Number of backups to retain after this one is created
        now: Timestamp for the backup name (defaults to the current time)

    Returns:
        Path of the new backup, or None when there is nothing to back up
    """
    app_dir = Path(app_dir)
    backup_dir = Path(backup_dir)

    if not app_dir.is_dir():
        logger.info("backup_skipped_no_deployment", app_dir=str(app_dir))
        return None

    backup_dir.mkdir(parents=True, exist_ok=True)
    target = _unique_backup_path(backup_dir, now or datetime.now())

    ignore = None
    resolved_backup_dir = backup_dir.resolve()
    if resolved_backup_dir.is_relative_to(app_dir.resolve()):
        # Never copy the backup directory into itself
        def ignore(directory, names):
            return [n for n in names if (Path(directory) / n).resolve() == resolved_backup_dir]

    shutil.copytree(app_dir, target, symlinks=True, ignore=ignore)
    # copytree carries over the source mtime; retention orders by backup time
    os.utime(target)
    logger.info("backup_created", backup=str(target), app_dir=str(app_dir))

    prune_backups(backup_dir, keep)
    return target


def restore_backup(backup_dir: Path, app_dir: Path, name: Optional[str] = None) -> Path:
    """
    Replace the application tree with a backup.

    Args:
        backup_dir: Directory holding backups
        app_dir: Application directory to replace
        name: Backup to restore (defaults to the most recent)

    Returns:
        Path of the restored backup

    A backup directory that lives inside ``app_dir`` is carried over into the
    restored tree, so the other backups survive the rollback.

    Raises:
        DeploymentError: If no matching backup exists, or ``backup_dir`` is
            ``app_dir`` itself
    """
    backup_dir = Path(backup_dir)
    app_dir = Path(app_dir)

    nested = None
    resolved_backup_dir = backup_dir.resolve()
    resolved_app_dir = app_dir.resolve()
    if resolved_backup_dir == resolved_app_dir:
        raise DeploymentError(f"Backup directory must not be the application directory: {app_dir}")
    if resolved_backup_dir.is_relative_to(resolved_app_dir):
        nested = resolved_backup_dir.relative_to(resolved_app_dir)

    if name:
        source = backup_dir / name
        if not source.is_dir():
            raise DeploymentError(f"Backup not found: {source}")
    else:
        backups = [p for p in list_backups(backup_dir) if p.is_dir()]
        if not backups:
            raise DeploymentError(f"No backups available in {backup_dir}")
        source = backups[0]

    staging = app_dir.with_name(f"{app_dir.name}.restore")
    if staging.exists():
        shutil.rmtree(staging)

    shutil.copytree(source, staging, symlinks=True)
    if nested is not None:
        kept = staging / nested
        if kept.exists():
            _remove(kept)
        kept.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(resolved_backup_dir), str(kept))
        source = app_dir / nested / source.name
    if app_dir.exists():
        shutil.rmtree(app_dir)
    staging.rename(app_dir)

    logger.info("backup_restored", backup=str(source), app_dir=str(app_dir))
    return source
