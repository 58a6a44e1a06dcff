"""Backup store for files mutated by the engine.

Every file is copied into the audit directory before its first mutation in a
run. Backups are never overwritten or pruned; restoring one is an operator
action.

Layout:
    .rns/backups/{run-id}-{tag}/{path relative to project root}
"""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from rns.config.parser import STATE_DIR
from rns.core.errors import MutationError
from rns.utils.ledger import relative_posix

logger = logging.getLogger("rns.backup")

BACKUP_DIR = "backups"


def make_run_id(now: datetime | None = None) -> str:
    """Build a filesystem-safe, sortable run identifier from a timestamp."""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S.%f")
    return stamp.replace(":", "-").replace(".", "-").replace("T", "_")


def backups_root(project_root: Path) -> Path:
    return project_root / STATE_DIR / BACKUP_DIR


class BackupStore:
    """Per-run backup store.

    One instance is created for each pipeline run. The first backup of a
    given file wins; later calls for the same file return the same path.
    """

    def __init__(self, project_root: Path, run_id: str | None = None) -> None:
        """Initialize the backup store.

        Args:
            project_root: Path to the project root directory
            run_id: Run identifier (defaults to the current timestamp)
        """
        self.project_root = project_root
        self.run_id = run_id or make_run_id()
        self._backups: dict[str, Path] = {}

    @property
    def backups(self) -> dict[str, Path]:
        """Backups taken in this run, keyed by relative file path."""
        return dict(self._backups)

    def backup_dir(self, tag: str) -> Path:
        safe_tag = tag.replace("/", "-").replace(":", "-")
        return backups_root(self.project_root) / f"{self.run_id}-{safe_tag}"

    def get(self, file: Path | str) -> Path | None:
        rel = relative_posix(self.project_root, file)
        return self._backups.get(rel) if rel else None

    def backup(self, file: Path | str, tag: str) -> Path | None:
        """Copy a file into the audit directory before it is mutated.

        Args:
            file: File to back up (absolute or relative to the project root)
            tag: Operation tag, usually the capability id

        Returns:
            Path of the backup copy, or None if the file does not exist yet

        Raises:
            MutationError: If the file is outside the project or cannot be copied
        """
        rel = relative_posix(self.project_root, file)
        if rel is None:
            raise MutationError(f"Cannot back up file outside the project: {file}", str(file))

        if rel in self._backups:
            return self._backups[rel]

        source = self.project_root / rel
        if not source.exists():
            return None

        dest = self.backup_dir(tag) / rel
        if dest.exists():
            # Never overwrite an existing backup
            self._backups[rel] = dest
            return dest

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
        except OSError as e:
            raise MutationError(f"Cannot back up {rel}: {e}", rel) from e

        logger.debug("Backed up %s to %s", rel, dest)
        self._backups[rel] = dest
        return dest


def list_backup_directories(project_root: Path) -> list[Path]:
    """List backup directories, newest first."""
    root = backups_root(project_root)
    if not root.exists():
        return []
    return sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name, reverse=True)


def restore_backup(project_root: Path, backup_dir: Path) -> list[str]:
    """Copy every file in a backup directory back into the project.

    Args:
        project_root: Path to the project root directory
        backup_dir: One directory returned by list_backup_directories

    Returns:
        Relative paths of restored files

    Raises:
        FileNotFoundError: If the backup directory does not exist
    """
    if not backup_dir.is_dir():
        raise FileNotFoundError(f"Backup directory not found: {backup_dir}")

    restored = []
    for source in sorted(backup_dir.rglob("*")):
        if not source.is_file():
            continue
        rel = source.relative_to(backup_dir).as_posix()
        dest = project_root / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        restored.append(rel)
        logger.info("Restored %s", rel)
    return restored
