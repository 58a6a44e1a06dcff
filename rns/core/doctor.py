"""Read-only project inspection: plugin status and health checks."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from rns.config.schemas import CapabilityDescriptor, InstalledCapability, ProjectManifest
from rns.core.errors import RnsError
from rns.core.manifest import ManifestStore
from rns.core.registry import PluginRegistry
from rns.utils.ledger import find_duplicate_records
from rns.utils.markers import CANONICAL_MARKERS, read_source, validate_marker

logger = logging.getLogger("rns.doctor")

CheckStatus = Literal["ok", "warning", "error"]


@dataclass
class DoctorCheck:
    """Result of a single health check."""

    name: str
    status: CheckStatus
    message: str


@dataclass
class DoctorReport:
    """Collected health checks for a project."""

    checks: list[DoctorCheck] = field(default_factory=list)

    def add(self, name: str, status: CheckStatus, message: str) -> None:
        self.checks.append(DoctorCheck(name, status, message))

    @property
    def errors(self) -> list[DoctorCheck]:
        return [c for c in self.checks if c.status == "error"]

    @property
    def warnings(self) -> list[DoctorCheck]:
        return [c for c in self.checks if c.status == "warning"]

    @property
    def healthy(self) -> bool:
        return not self.errors


@dataclass
class StatusReport:
    """Installed, available and orphaned capabilities of a project."""

    installed: dict[str, InstalledCapability] = field(default_factory=dict)
    available: list[CapabilityDescriptor] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)


def plugin_status(manifest: ProjectManifest, registry: PluginRegistry) -> StatusReport:
    """Compare the manifest with the catalog.

    Orphaned capabilities are installed but no longer in the catalog.
    """
    report = StatusReport(installed=dict(sorted(manifest.capabilities.items())))
    for descriptor in registry.list():
        if not manifest.is_installed(descriptor.id):
            report.available.append(descriptor)
    report.orphaned = [cap_id for cap_id in report.installed if not registry.has(cap_id)]
    return report


def _check_markers(root: Path, report: DoctorReport) -> None:
    for marker_type, spec in CANONICAL_MARKERS.items():
        try:
            validation = validate_marker(root, spec.default_file, marker_type)
        except RnsError as e:
            report.add(f"marker:{marker_type}", "error", str(e))
            continue
        if validation.valid:
            report.add(f"marker:{marker_type}", "ok", f"{spec.default_file}")
        elif validation.required:
            report.add(f"marker:{marker_type}", "error", validation.message)
        else:
            report.add(f"marker:{marker_type}", "warning", validation.error or "optional marker missing")


def _check_records(root: Path, report: DoctorReport) -> None:
    files = sorted({spec.default_file for spec in CANONICAL_MARKERS.values()})
    for rel in files:
        path = root / rel
        if not path.exists():
            continue
        try:
            duplicates = find_duplicate_records(read_source(path, rel))
        except RnsError as e:
            report.add("fingerprints", "error", str(e))
            continue
        if duplicates:
            report.add("fingerprints", "error", f"Duplicate fingerprints in {rel}: {', '.join(duplicates)}")
    if not any(c.name == "fingerprints" for c in report.checks):
        report.add("fingerprints", "ok", "No duplicate fingerprints")


def _check_capabilities(root: Path, manifest: ProjectManifest, report: DoctorReport) -> None:
    for cap_id, record in sorted(manifest.capabilities.items()):
        effects = record.effects
        missing = [rel for rel in effects.owned_files if not (root / rel).exists()]
        if effects.package and not (root / effects.package).is_dir():
            report.add(f"plugin:{cap_id}", "error", f"Package directory missing: {effects.package}")
        elif missing:
            report.add(f"plugin:{cap_id}", "error", f"Missing owned files: {', '.join(missing)}")
        else:
            report.add(f"plugin:{cap_id}", "ok", f"{len(effects.owned_files)} files present")


def run_doctor(project_root: Path, registry: PluginRegistry | None = None) -> DoctorReport:
    """Run every health check against a project.

    Args:
        project_root: Project root directory
        registry: Catalog used to flag orphaned plugins (optional)

    Returns:
        DoctorReport (never raises for project problems)
    """
    report = DoctorReport()
    root = project_root.resolve()

    try:
        manifest = ManifestStore(root).read(persist_migration=False)
    except RnsError as e:
        report.add("manifest", "error", str(e))
        return report
    report.add("manifest", "ok", f"schema {manifest.schema_version}")

    _check_markers(root, report)
    _check_records(root, report)
    _check_capabilities(root, manifest, report)

    if registry is not None:
        try:
            for cap_id in plugin_status(manifest, registry).orphaned:
                report.add(f"plugin:{cap_id}", "warning", "Installed but not in the catalog")
        except RnsError as e:
            report.add("catalog", "warning", str(e))

    logger.info("Doctor: %d errors, %d warnings", len(report.errors), len(report.warnings))
    return report
