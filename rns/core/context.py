"""Per-run pipeline state.

A PipelineContext is created for every plan/apply run and passed explicitly to
the patchers, so sequential runs in one process never share state.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from rns.core.backup import BackupStore, make_run_id
from rns.core.errors import MutationError
from rns.utils.ledger import relative_posix

logger = logging.getLogger("rns.context")


@dataclass
class PipelineContext:
    """State carried through one pipeline run."""

    project_root: Path
    dry_run: bool = False
    assume_yes: bool = False
    run_id: str = field(default_factory=make_run_id)
    install_dependencies: bool = False
    package_manager_timeout: int = 600
    warnings: list[str] = field(default_factory=list)
    written_files: list[str] = field(default_factory=list)
    backup_store: BackupStore = field(init=False)

    def __post_init__(self) -> None:
        self.project_root = self.project_root.resolve()
        self.backup_store = BackupStore(self.project_root, self.run_id)

    @property
    def backups(self) -> dict[str, Path]:
        return self.backup_store.backups

    def rel(self, path: Path | str) -> str:
        """Project-relative POSIX form of a path (the path itself if outside)."""
        return relative_posix(self.project_root, path) or str(path)

    def resolve(self, file: str | Path) -> Path:
        return self.project_root / file

    def backup(self, file: Path | str, tag: str) -> Path | None:
        """Back up a file before mutation (no-op in dry-run mode)."""
        if self.dry_run:
            return None
        return self.backup_store.backup(file, tag)

    def write_text(self, file: Path | str, content: str, tag: str) -> Path | None:
        """Back up a file, then write new content to it.

        Args:
            file: Target file (absolute or relative to the project root)
            content: New file content
            tag: Backup tag, usually the capability id

        Returns:
            Backup path, or None if the file did not exist before

        Raises:
            MutationError: If the file cannot be written
        """
        return self._write(file, content.encode("utf-8"), tag)

    def write_bytes(self, file: Path | str, content: bytes, tag: str) -> Path | None:
        """Like write_text, for content that is copied verbatim."""
        return self._write(file, content, tag)

    def _write(self, file: Path | str, content: bytes, tag: str) -> Path | None:
        if self.dry_run:
            raise MutationError(f"Refusing to write {file} during a dry run", str(file))

        path = Path(file)
        if not path.is_absolute():
            path = self.project_root / path
        backup_path = self.backup(path, tag)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise MutationError(f"Cannot write {self.rel(path)}: {e}", self.rel(path)) from e

        rel = self.rel(path)
        if rel not in self.written_files:
            self.written_files.append(rel)
        logger.debug("Wrote %s", rel)
        return backup_path

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)
