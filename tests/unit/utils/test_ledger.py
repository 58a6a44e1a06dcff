"""Tests for rns.utils.ledger module."""

from pathlib import Path

import pytest

from rns.core.errors import ValidationError
from rns.utils.ledger import (
    assert_managed,
    assert_not_user_owned,
    find_duplicate_records,
    has_record,
    has_record_in_content,
    insert_record,
    is_managed_path,
    is_user_path,
    list_records,
    make_record,
    write_record,
)
from rns.utils.markers import find_marker

REGION = """\
function boot() {
  // @rns-marker:init-steps:start
  initA();
  // @rns-marker:init-steps:end
}
"""


class TestRecords:
    """Tests for fingerprint records."""

    def test_make_record(self):
        """Creates line and JSX fingerprint comments."""
        assert make_record("auth-providers-provider") == "// @rns-inject:auth-providers-provider"
        assert make_record("x", jsx=True) == "{/* @rns-inject:x */}"

    def test_list_records_in_order(self):
        """Lists recorded ids in file order, both comment forms."""
        content = "// @rns-inject:b\n{/* @rns-inject:a */}\n"
        assert list_records(content) == ["b", "a"]

    def test_exact_match_only(self):
        """A prefix of a recorded id does not count as recorded."""
        content = "// @rns-inject:auth-imports-import\n"

        assert has_record_in_content(content, "auth-imports-import")
        assert not has_record_in_content(content, "auth-imports")
        assert not has_record_in_content(content, "auth-imports-import-2")

    def test_find_duplicates(self):
        """Reports ids recorded more than once."""
        content = "// @rns-inject:a\n// @rns-inject:b\n// @rns-inject:a\n"
        assert find_duplicate_records(content) == ["a"]

    def test_has_record_missing_file(self, temp_dir: Path):
        """A missing file has no records."""
        assert not has_record(temp_dir / "nope.ts", "a")


class TestInsertRecord:
    """Tests for insert_record and write_record functions."""

    def test_inserts_before_end_sentinel(self):
        """The record lands right before the end sentinel with content indent."""
        region = find_marker(REGION, "init-steps")
        updated = insert_record(REGION, "cap-init-steps-init-step", region)

        lines = updated.split("\n")
        assert lines[3] == "  // @rns-inject:cap-init-steps-init-step"
        assert lines[4] == "  // @rns-marker:init-steps:end"

    def test_insert_is_idempotent(self):
        """Inserting an existing record leaves content unchanged."""
        region = find_marker(REGION, "init-steps")
        once = insert_record(REGION, "x", region)
        twice = insert_record(once, "x", find_marker(once, "init-steps"))

        assert once == twice

    def test_write_record_appends_without_region(self, temp_dir: Path):
        """Without a region the record goes at the end of the file."""
        path = temp_dir / "file.ts"
        path.write_text("const a = 1;")

        assert write_record(path, "op")
        assert path.read_text() == "const a = 1;\n// @rns-inject:op\n"
        assert not write_record(path, "op")


class TestZones:
    """Tests for ownership zone checks."""

    def test_system_zone(self, temp_dir: Path):
        """packages/@rns/** and .rns/** are managed."""
        assert is_managed_path(temp_dir, "packages/@rns/runtime/index.tsx")
        assert is_managed_path(temp_dir, ".rns/rn-init.json")
        assert not is_managed_path(temp_dir, "src/App.tsx")
        assert not is_managed_path(temp_dir, "packages/other/index.ts")

    def test_user_zone(self, temp_dir: Path):
        """src/** and assets/** are user-owned."""
        assert is_user_path(temp_dir, "src/App.tsx")
        assert is_user_path(temp_dir, "assets/logo.png")
        assert not is_user_path(temp_dir, "app.json")

    def test_assert_managed_rejects_user_code(self, temp_dir: Path):
        """Wiring into user code is refused."""
        with pytest.raises(ValidationError, match="only allowed in SYSTEM ZONE"):
            assert_managed(temp_dir, "src/App.tsx")

    def test_assert_not_user_owned(self, temp_dir: Path):
        """Patches may target config files but not user code."""
        assert_not_user_owned(temp_dir, "app.json")
        with pytest.raises(ValidationError, match="user-owned"):
            assert_not_user_owned(temp_dir, "src/index.ts")

    def test_outside_project_rejected(self, temp_dir: Path):
        """Paths escaping the project are rejected."""
        with pytest.raises(ValidationError, match="outside the project"):
            assert_not_user_owned(temp_dir, "../elsewhere.json")
