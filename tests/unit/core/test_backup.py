"""Tests for rns.core.backup and rns.core.context modules."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from rns.core.backup import BackupStore, list_backup_directories, make_run_id, restore_backup
from rns.core.context import PipelineContext
from rns.core.errors import MutationError


class TestMakeRunId:
    """Tests for make_run_id function."""

    def test_format(self):
        """Run ids are filesystem-safe timestamps."""
        run_id = make_run_id(datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc))
        assert run_id == "2024-05-06_07-08-09-123456"


class TestBackupStore:
    """Tests for BackupStore class."""

    def test_backs_up_under_run_and_tag(self, temp_dir: Path):
        """Copies the file to .rns/backups/<run>-<tag>/<rel>."""
        (temp_dir / "app.json").write_text("{}")
        store = BackupStore(temp_dir, "run1")

        dest = store.backup(temp_dir / "app.json", "nav")

        assert dest == temp_dir / ".rns" / "backups" / "run1-nav" / "app.json"
        assert dest.read_text() == "{}"
        assert store.backups == {"app.json": dest}

    def test_first_backup_wins(self, temp_dir: Path):
        """A second backup of the same file in a run keeps the original content."""
        path = temp_dir / "file.ts"
        path.write_text("original")
        store = BackupStore(temp_dir, "run1")
        first = store.backup(path, "a")

        path.write_text("changed")
        second = store.backup(path, "b")

        assert second == first
        assert first.read_text() == "original"

    def test_missing_file_returns_none(self, temp_dir: Path):
        """New files have nothing to back up."""
        assert BackupStore(temp_dir, "run1").backup("new.ts", "a") is None

    def test_outside_project_rejected(self, temp_dir: Path):
        """Files outside the project cannot be backed up."""
        with pytest.raises(MutationError, match="outside the project"):
            BackupStore(temp_dir / "project", "run1").backup(temp_dir / "other.txt", "a")

    def test_list_and_restore(self, temp_dir: Path):
        """Backups can be listed newest first and restored."""
        path = temp_dir / "packages" / "@rns" / "runtime" / "index.tsx"
        path.parent.mkdir(parents=True)
        path.write_text("v1")
        BackupStore(temp_dir, "2024-01-01_00-00-00-000000").backup(path, "a")
        path.write_text("v2")
        BackupStore(temp_dir, "2024-02-01_00-00-00-000000").backup(path, "b")
        path.write_text("v3")

        directories = list_backup_directories(temp_dir)
        assert [d.name for d in directories] == [
            "2024-02-01_00-00-00-000000-b",
            "2024-01-01_00-00-00-000000-a",
        ]

        restored = restore_backup(temp_dir, directories[1])
        assert restored == ["packages/@rns/runtime/index.tsx"]
        assert path.read_text() == "v1"


class TestPipelineContext:
    """Tests for PipelineContext class."""

    def test_write_text_backs_up_existing(self, temp_dir: Path):
        """Writing an existing file backs it up first."""
        path = temp_dir / "packages" / "@rns" / "x.ts"
        path.parent.mkdir(parents=True)
        path.write_text("old")
        ctx = PipelineContext(temp_dir, run_id="run1")

        backup = ctx.write_text(path, "new", tag="cap")

        assert path.read_text() == "new"
        assert backup is not None and backup.read_text() == "old"
        assert ctx.written_files == ["packages/@rns/x.ts"]

    def test_write_text_refused_in_dry_run(self, temp_dir: Path):
        """Dry runs never write."""
        ctx = PipelineContext(temp_dir, dry_run=True)

        with pytest.raises(MutationError, match="dry run"):
            ctx.write_text("a.ts", "x", tag="cap")
        assert not (temp_dir / "a.ts").exists()

    def test_separate_runs_do_not_share_state(self, temp_dir: Path):
        """Every context gets its own backups and warnings."""
        first = PipelineContext(temp_dir)
        first.warn("something")
        second = PipelineContext(temp_dir)

        assert second.warnings == []
        assert second.backup_store is not first.backup_store
