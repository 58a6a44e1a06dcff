"""Tests for rns.core.resolver module."""

import pytest

from rns.config.schemas import CapabilityDescriptor
from rns.core.errors import ExitCode
from rns.core.resolver import ConflictError, check_conflicts, find_dependents


def descriptor(cap_id: str, **kwargs) -> CapabilityDescriptor:
    return CapabilityDescriptor.model_validate({"id": cap_id, **kwargs})


class TestCheckConflicts:
    """Tests for check_conflicts function."""

    def test_clean_install(self):
        """No conflicts for a plain capability on an empty project."""
        result = check_conflicts([], descriptor("theme"), "expo", ["ios", "android"])

        assert result.ok
        assert result.conflicts == []

    def test_unsupported_target(self):
        """A capability that only supports bare is rejected on expo."""
        candidate = descriptor("native", support={"targets": ["bare"]})

        result = check_conflicts([], candidate, "expo")

        assert [c.kind for c in result.errors] == ["target"]

    def test_partial_platform_support_warns(self):
        """Missing one of several platforms is a warning."""
        candidate = descriptor("ios-only", support={"platforms": ["ios"]})

        result = check_conflicts([], candidate, "expo", ["ios", "android"])

        assert result.ok
        assert result.warnings[0].message == "ios-only does not support: android"

    def test_no_platform_support_is_error(self):
        """Supporting none of the project's platforms is an error."""
        candidate = descriptor("web-only", support={"platforms": ["web"]})

        result = check_conflicts([], candidate, "expo", ["ios", "android"])

        assert [c.kind for c in result.errors] == ["platform"]

    def test_declared_conflict_either_direction(self):
        """Conflicts are detected whichever side declares them."""
        installed = [descriptor("redux", conflicts_with=["mobx"])]

        result = check_conflicts(installed, descriptor("mobx"), "expo")

        assert result.errors[0].kind == "conflicts-with"
        assert result.errors[0].capability_id == "redux"

    def test_single_slot_occupied(self):
        """A second occupant of a single slot is rejected."""
        installed = [descriptor("auth.firebase", slots=[{"slot": "auth", "mode": "single"}])]
        candidate = descriptor("auth.supabase", slots=[{"slot": "auth", "mode": "single"}])

        result = check_conflicts(installed, candidate, "expo")

        assert result.errors[0].message == "Slot 'auth' is single-occupancy and already used by auth.firebase"

    def test_installed_single_slot_blocks_multi_candidate(self):
        """An installed single-mode occupant blocks even a multi-mode candidate."""
        installed = [descriptor("auth.firebase", slots=[{"slot": "auth", "mode": "single"}])]
        candidate = descriptor("auth.extra", slots=[{"slot": "auth", "mode": "multi"}])

        assert not check_conflicts(installed, candidate, "expo").ok

    def test_multi_slot_allows_several(self):
        """Multi slots accept any number of occupants."""
        installed = [descriptor("analytics.a", slots=[{"slot": "analytics"}])]
        candidate = descriptor("analytics.b", slots=[{"slot": "analytics"}])

        assert check_conflicts(installed, candidate, "expo").ok

    def test_reinstall_does_not_conflict_with_itself(self):
        """The candidate is excluded from the installed set."""
        auth = descriptor("auth.firebase", slots=[{"slot": "auth", "mode": "single"}])

        assert check_conflicts([auth], auth, "expo").ok

    def test_missing_requirement(self):
        """A required capability must be installed."""
        result = check_conflicts([], descriptor("analytics", requires={"theme": "^1.0.0"}), "expo")

        assert result.errors[0].message == "analytics requires theme, which is not installed"

    def test_requirement_version_range(self):
        """Installed requirements must satisfy the declared range."""
        candidate = descriptor("analytics", requires={"theme": "^1.0.0"})

        assert check_conflicts([descriptor("theme", version="1.4.0")], candidate, "expo").ok
        result = check_conflicts([descriptor("theme", version="2.0.0")], candidate, "expo")
        assert "requires theme ^1.0.0, but 2.0.0 is installed" in result.errors[0].message

    def test_installed_versions_override(self):
        """Recorded versions take precedence over catalog versions."""
        candidate = descriptor("analytics", requires={"theme": "^1.0.0"})

        result = check_conflicts(
            [descriptor("theme", version="2.0.0")], candidate, "expo", installed_versions={"theme": "1.0.0"}
        )

        assert result.ok


class TestConflictError:
    """Tests for ResolutionResult.raise_for_errors."""

    def test_raises_with_all_errors(self):
        """Every error-level conflict is listed in the exception."""
        installed = [descriptor("auth.firebase", slots=[{"slot": "auth", "mode": "single"}])]
        candidate = descriptor(
            "auth.supabase", slots=[{"slot": "auth", "mode": "single"}], requires=["theme"]
        )

        with pytest.raises(ConflictError) as exc_info:
            check_conflicts(installed, candidate, "expo").raise_for_errors()

        assert len(exc_info.value.conflicts) == 2
        assert exc_info.value.exit_code == ExitCode.VALIDATION_FAILURE
        assert str(exc_info.value).startswith("Cannot install auth.supabase:")

    def test_warnings_do_not_raise(self):
        """Warnings alone never block an install."""
        candidate = descriptor("ios-only", support={"platforms": ["ios"]})
        check_conflicts([], candidate, "expo", ["ios", "android"]).raise_for_errors()


class TestFindDependents:
    """Tests for find_dependents function."""

    def test_lists_requirers(self):
        """Returns the sorted ids that require the capability."""
        installed = [
            descriptor("theme"),
            descriptor("charts", requires=["theme"]),
            descriptor("analytics", requires={"theme": "^1.0.0"}),
        ]

        assert find_dependents(installed, "theme") == ["analytics", "charts"]
        assert find_dependents(installed, "charts") == []
