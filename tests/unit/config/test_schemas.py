"""Tests for rns.config.schemas module."""

import pytest
from pydantic import ValidationError

from rns.config.schemas import (
    AnchorPatch,
    CapabilityDescriptor,
    CapabilityEffects,
    ExpoConfigPatch,
    InstalledCapability,
    MarkerPatch,
    PermissionRequirement,
    ProjectIdentity,
    ProjectManifest,
    ProviderContribution,
    RuntimeContribution,
    SymbolRef,
    WiringOperation,
)


class TestContributions:
    """Tests for contribution models."""

    def test_discriminated_by_type(self):
        """The contribution union is selected by its type field."""
        entry = RuntimeContribution.model_validate(
            {"contribution": {"type": "provider", "symbol": "ThemeProvider"}, "order": 5}
        )

        assert isinstance(entry.contribution, ProviderContribution)
        assert entry.order == 5
        assert entry.file is None

    def test_statement_kinds(self):
        """Init steps accept call references and raw statements."""
        call = RuntimeContribution.model_validate(
            {"contribution": {"type": "init-step", "step": {"kind": "call", "symbol": "Sentry.init"}}}
        )
        raw = RuntimeContribution.model_validate(
            {"contribution": {"type": "init-step", "step": {"kind": "raw", "code": "setup();"}}}
        )

        assert call.contribution.step.symbol == "Sentry.init"
        assert raw.contribution.step.code == "setup();"

    def test_empty_raw_statement_rejected(self):
        """Raw statements must carry code."""
        with pytest.raises(ValidationError):
            RuntimeContribution.model_validate(
                {"contribution": {"type": "init-step", "step": {"kind": "raw", "code": "  "}}}
            )

    def test_invalid_import_symbol(self):
        """Import symbols must be identifiers."""
        with pytest.raises(ValidationError, match="Invalid import symbol"):
            SymbolRef(symbol="not valid", source="x")


class TestWiringOperation:
    """Tests for WiringOperation model."""

    def test_operation_id_is_deterministic(self):
        """The id combines capability, marker and kind, without timestamps."""
        op = WiringOperation(
            capability_id="theme",
            file="packages/@rns/runtime/index.tsx",
            marker_type="providers",
            contribution=ProviderContribution(symbol="ThemeProvider"),
        )

        assert op.operation_id == "theme-providers-provider"
        assert op.kind == "provider"

    def test_sort_key(self):
        """Operations sort by order, then capability id."""
        ops = [
            WiringOperation(
                capability_id=cap,
                file="f.tsx",
                marker_type="providers",
                contribution=ProviderContribution(symbol="P"),
                order=order,
            )
            for cap, order in [("b", 1), ("a", 1), ("c", 0)]
        ]

        assert [op.capability_id for op in sorted(ops, key=lambda o: o.sort_key)] == ["c", "a", "b"]


class TestMarkerPatch:
    """Tests for MarkerPatch model."""

    def test_fingerprint_defaults_to_capability_and_marker(self):
        """Without an explicit id the fingerprint is capability-marker."""
        patch = MarkerPatch(file="f.ts", marker="init-steps", content="x();", capability_id="sentry")
        assert patch.fingerprint_id == "sentry-init-steps"

    def test_explicit_operation_id(self):
        """An explicit operation id wins."""
        patch = MarkerPatch(file="f.ts", marker="init-steps", content="x();", operation_id="custom")
        assert patch.fingerprint_id == "custom"


class TestPatchOps:
    """Tests for patch operation models."""

    def test_patch_id_namespaced(self):
        """Patch ids are namespaced by capability once bound."""
        patch = ExpoConfigPatch(id="scheme", path="expo.scheme", value="app", capability_id="nav")
        assert patch.patch_id == "nav:scheme"
        assert patch.file == "app.json"

    def test_anchor_defaults(self):
        """Anchor patches insert after the anchor by default."""
        patch = AnchorPatch(type="podfile", id="pods", file="ios/Podfile", anchor="target", content="pod 'X'")
        assert patch.position == "after"


class TestCapabilityDescriptor:
    """Tests for CapabilityDescriptor model."""

    def test_package_naming(self):
        """Dots and underscores become dashes in package names."""
        descriptor = CapabilityDescriptor(id="auth.firebase_v2")

        assert descriptor.package_slug == "auth-firebase-v2"
        assert descriptor.package_name == "@rns/plugin-auth-firebase-v2"
        assert descriptor.package_dir == "packages/@rns/plugin-auth-firebase-v2"
        assert descriptor.display_name == "auth.firebase_v2"

    def test_requires_list_shorthand(self):
        """A list of requirements means any version."""
        descriptor = CapabilityDescriptor(id="analytics", requires=["theme"])
        assert descriptor.requires == {"theme": "*"}

    def test_invalid_id(self):
        """Ids must be lowercase and dot-namespaced."""
        with pytest.raises(ValidationError, match="Invalid capability id"):
            CapabilityDescriptor(id="Auth Firebase")

    def test_duplicate_patch_ids(self):
        """Patch ids must be unique within a descriptor."""
        patch = {"type": "expo-config", "id": "p", "path": "expo.x", "value": 1}
        with pytest.raises(ValidationError, match="Duplicate patch id"):
            CapabilityDescriptor(id="x", patches=[patch, patch])

    def test_self_conflict(self):
        """A capability cannot conflict with itself."""
        with pytest.raises(ValidationError, match="conflict with itself"):
            CapabilityDescriptor(id="x", conflicts_with=["x"])


class TestProjectManifest:
    """Tests for ProjectManifest model."""

    def _manifest(self) -> ProjectManifest:
        return ProjectManifest(identity=ProjectIdentity(name="app"))

    def test_rejects_other_schema_version(self):
        """Only the current schema version validates."""
        with pytest.raises(ValidationError, match="Unsupported schema version"):
            ProjectManifest(schema_version="1.0.0", identity=ProjectIdentity(name="app"))

    def test_permission_aggregation(self):
        """A permission is mandatory if any capability requires it as mandatory."""
        manifest = self._manifest()
        manifest.add_capability(
            "auth", InstalledCapability(version="1.0.0", permissions=[PermissionRequirement(id="camera", mandatory=False)])
        )
        manifest.add_capability(
            "scanner", InstalledCapability(version="1.0.0", permissions=[PermissionRequirement(id="camera")])
        )

        trace = manifest.permissions["camera"]
        assert trace.mandatory is True
        assert trace.required_by == ["auth", "scanner"]

    def test_remove_capability_refreshes(self):
        """Removing a capability drops its permissions and ownership."""
        manifest = self._manifest()
        manifest.add_capability(
            "auth",
            InstalledCapability(
                version="1.0.0",
                effects=CapabilityEffects(owned_files=["packages/@rns/plugin-auth/index.ts"], package="packages/@rns/plugin-auth"),
                permissions=[PermissionRequirement(id="camera")],
            ),
        )
        assert "packages/@rns/plugin-auth" in manifest.owned_paths()

        removed = manifest.remove_capability("auth")

        assert removed is not None
        assert manifest.permissions == {}
        assert manifest.ownership == []
        assert manifest.remove_capability("auth") is None

    def test_reinstall_keeps_installed_at(self):
        """Replacing a record keeps the original install time."""
        manifest = self._manifest()
        manifest.add_capability("auth", InstalledCapability(version="1.0.0", installed_at="2024-01-01T00:00:00+00:00"))
        manifest.add_capability("auth", InstalledCapability(version="1.1.0"))

        record = manifest.get_capability("auth")
        assert record.installed_at == "2024-01-01T00:00:00+00:00"
        assert record.updated_at is not None
        assert record.version == "1.1.0"
