"""Plan/apply pipeline for installing and removing capabilities.

An install runs through strictly ordered phases, each gated on the previous
one succeeding:

    preflight -> plan -> scaffold -> link -> wire -> patch -> manifest -> verify

Planning is pure: it reads the manifest, the descriptor and the target files
but writes nothing, and a dry run stops right after it. Once mutation starts,
a failing phase halts the pipeline; committed phases are reported together
with the backups taken so far, and nothing is rolled back automatically. The
manifest is only written after the project files have been verified, so a
failed install is never recorded as installed.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from rns.config.schemas import (
    KIND_TO_MARKER,
    CallRef,
    CapabilityDescriptor,
    CapabilityEffects,
    DependencySpec,
    ImportContribution,
    InitStepContribution,
    InstalledCapability,
    MarkerPatch,
    PatchOp,
    PermissionRequirement,
    ProjectManifest,
    ProviderContribution,
    RegistrationContribution,
    RnsSettings,
    RootContribution,
    SymbolRef,
    WiringOperation,
)
from rns.core.context import PipelineContext
from rns.core.errors import MarkerError, RnsError, ValidationError
from rns.core.lock import ProjectLock
from rns.core.patch_ops import PatchResult, apply_patch, apply_patches
from rns.core.project import Project
from rns.core.registry import PluginRegistry
from rns.core.resolver import Conflict, ConflictError, check_conflicts, find_dependents
from rns.core.scaffold import ScaffoldFile, plan_files, scaffold
from rns.core.syntax import introduces_errors
from rns.core.text_patcher import MarkerPatchResult, patch_marker, patch_markers
from rns.core.wiring import (
    WiringResult,
    apply_wiring,
    apply_wiring_batch,
    sort_operations,
    strip_contributions,
    validate_wiring_ops,
)
from rns.core.workspace import link_capability, unlink_capability
from rns.template.engine import TemplateEngine, TemplateRenderError
from rns.utils.ledger import assert_managed, assert_not_user_owned, is_managed_path
from rns.utils.markers import CANONICAL_MARKERS, read_source, validate_marker

logger = logging.getLogger("rns.modulator")

Phase = Literal["preflight", "plan", "scaffold", "link", "wire", "patch", "manifest", "verify"]
PHASES: tuple[Phase, ...] = (
    "preflight",
    "plan",
    "scaffold",
    "link",
    "wire",
    "patch",
    "manifest",
    "verify",
)
PhaseAction = Literal["executed", "skipped", "error"]
OperationResult = WiringResult | MarkerPatchResult | PatchResult


@dataclass
class PhaseResult:
    """Outcome of one pipeline phase."""

    phase: Phase
    action: PhaseAction
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.action != "error"


@dataclass
class Plan:
    """Everything an install would do, computed without touching the project."""

    descriptor: CapabilityDescriptor
    files: list[ScaffoldFile] = field(default_factory=list)
    dependencies: DependencySpec = field(default_factory=DependencySpec)
    wiring: list[WiringOperation] = field(default_factory=list)
    text_patches: list[MarkerPatch] = field(default_factory=list)
    patches: list[PatchOp] = field(default_factory=list)
    permissions: list[PermissionRequirement] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def capability_id(self) -> str:
        return self.descriptor.id

    @property
    def affected_files(self) -> list[str]:
        """Every file the install may write, sorted."""
        files = {f.dest for f in self.files}
        files.update(op.file for op in self.wiring)
        files.update(p.file for p in self.text_patches)
        files.update(p.file for p in self.patches)
        return sorted(files)


@dataclass
class ModulatorResult:
    """Outcome of installing or removing one capability."""

    capability_id: str
    operation: Literal["add", "remove"]
    success: bool = False
    dry_run: bool = False
    message: str = ""
    plan: Plan | None = None
    phases: list[PhaseResult] = field(default_factory=list)
    operations: list[OperationResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    manifest_updated: bool = False
    backups: dict[str, Path] = field(default_factory=dict)
    exit_code: int = 0

    @property
    def committed_phases(self) -> list[Phase]:
        """Phases that ran to completion."""
        return [p.phase for p in self.phases if p.action == "executed"]

    @property
    def failed_phase(self) -> Phase | None:
        for p in self.phases:
            if p.action == "error":
                return p.phase
        return None


@dataclass
class BatchSummary:
    """Summary of a multi-capability command."""

    results: list[ModulatorResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def all_successful(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def exit_code(self) -> int:
        """Exit code of the first failure, 0 if everything succeeded."""
        for r in self.results:
            if not r.success:
                return r.exit_code
        return 0


def _merge_dependencies(target: DependencySpec, other: DependencySpec) -> None:
    target.runtime.update(other.runtime)
    target.dev.update(other.dev)


class Modulator:
    """Installs and removes capabilities in a project.

    A Modulator holds no per-run state; each call builds its own
    PipelineContext.
    """

    def __init__(
        self,
        project: Project,
        registry: PluginRegistry,
        settings: RnsSettings | None = None,
        engine: TemplateEngine | None = None,
    ) -> None:
        """Initialize the modulator.

        Args:
            project: Loaded project
            registry: Capability catalog
            settings: CLI settings (defaults apply when omitted)
            engine: Template engine for pack files
        """
        self.project = project
        self.registry = registry
        self.settings = settings or RnsSettings(install_dependencies=False)
        self.engine = engine or TemplateEngine()

    def _context(self, dry_run: bool) -> PipelineContext:
        return PipelineContext(
            self.project.root,
            dry_run=dry_run,
            install_dependencies=self.settings.install_dependencies,
            package_manager_timeout=self.settings.package_manager_timeout,
        )

    # =========================================================================
    # Planning
    # =========================================================================

    def installed_descriptors(self, manifest: ProjectManifest) -> list[CapabilityDescriptor]:
        """Descriptors of installed capabilities.

        Capabilities that have left the catalog are stood in for by their
        manifest record, so their slots, requirements and conflicts still hold.
        """
        descriptors = []
        for cap_id, record in sorted(manifest.capabilities.items()):
            if self.registry.has(cap_id):
                descriptors.append(self.registry.get(cap_id))
                continue
            logger.warning("Installed plugin %s is not in the catalog", cap_id)
            descriptors.append(
                CapabilityDescriptor(
                    id=cap_id,
                    version=record.version,
                    slots=record.slots,
                    requires=record.requires,
                    conflicts_with=record.conflicts_with,
                )
            )
        return descriptors

    @staticmethod
    def build_operations(descriptor: CapabilityDescriptor) -> list[WiringOperation]:
        """Turn a descriptor's runtime contributions into wiring operations.

        Import symbols are merged into one import operation per target file,
        including symbols referenced through ``source`` on providers, roots
        and calls, which are imported into the file that uses them.
        """
        operations: list[WiringOperation] = []
        imports: dict[str, list[SymbolRef]] = {}
        import_order: dict[str, int] = {}

        def add_import(file: str, ref: SymbolRef, order: int) -> None:
            refs = imports.setdefault(file, [])
            if ref not in refs:
                refs.append(ref)
            import_order[file] = min(import_order.get(file, order), order)

        for entry in descriptor.runtime:
            contribution = entry.contribution
            marker = entry.marker or KIND_TO_MARKER[contribution.type]
            file = entry.file or CANONICAL_MARKERS[marker].default_file

            if isinstance(contribution, ImportContribution):
                for ref in contribution.imports:
                    add_import(file, ref, entry.order)
                continue

            source = symbol = None
            if isinstance(contribution, ProviderContribution | RootContribution):
                source, symbol = contribution.source, contribution.symbol
            elif isinstance(contribution, InitStepContribution | RegistrationContribution):
                if isinstance(contribution.step, CallRef):
                    source, symbol = contribution.step.source, contribution.step.symbol.split(".")[0]
            if source and symbol:
                add_import(file, SymbolRef(symbol=symbol, source=source), entry.order)

            operations.append(
                WiringOperation(
                    capability_id=descriptor.id,
                    file=file,
                    marker_type=marker,
                    contribution=contribution,
                    order=entry.order,
                )
            )

        import_ops = [
            WiringOperation(
                capability_id=descriptor.id,
                file=file,
                marker_type="imports",
                contribution=ImportContribution(imports=refs),
                order=import_order[file],
            )
            for file, refs in imports.items()
        ]
        return sort_operations(import_ops + operations)

    def _check_targets(self, plan: Plan) -> None:
        """Validate every target before anything is mutated.

        Raises:
            ValidationError: If a target is outside its allowed zone
            MarkerError: If a required marker is missing or malformed
        """
        root = self.project.root
        for op in plan.wiring:
            assert_managed(root, op.file)
            validation = validate_marker(root, op.file, op.marker_type)
            if validation.valid:
                continue
            if not validation.required:
                plan.warnings.append(f"{validation.error}; {op.operation_id} will be skipped")
                continue
            raise MarkerError(validation.message, step="plan")

        for patch in plan.text_patches:
            assert_managed(root, patch.file)
            validation = validate_marker(root, patch.file, patch.marker)
            if not validation.valid and validation.required:
                raise MarkerError(validation.message, step="plan")

        for op in plan.patches:
            assert_not_user_owned(root, op.file)
            if not (root / op.file).exists():
                raise ValidationError(f"File not found: {op.file} (patch {op.id})", step="plan")

    def plan(self, capability_id: str, manifest: ProjectManifest | None = None) -> Plan:
        """Compute an install plan without mutating anything.

        Args:
            capability_id: Capability to install
            manifest: Manifest to plan against (defaults to the project's)

        Returns:
            The install plan

        Raises:
            UnknownCapabilityError: If the capability is not in the catalog
            ConflictError: If the capability cannot join the installed set
            ValidationError: If a target file or marker is invalid
        """
        manifest = manifest or self.project.manifest
        descriptor = self.registry.get(capability_id)

        resolution = check_conflicts(
            self.installed_descriptors(manifest),
            descriptor,
            manifest.target,
            manifest.platforms,
            {cap_id: record.version for cap_id, record in manifest.capabilities.items()},
        )
        resolution.raise_for_errors()

        plan = Plan(descriptor=descriptor, conflicts=resolution.conflicts)
        plan.warnings.extend(c.message for c in resolution.warnings)

        plan.wiring = self.build_operations(descriptor)
        errors = validate_wiring_ops(plan.wiring)
        seen: set[tuple[str, str]] = set()
        for op in plan.wiring:
            if (op.file, op.operation_id) in seen:
                errors.append(f"{descriptor.id}: more than one {op.kind} contribution to {op.marker_type} in {op.file}")
            seen.add((op.file, op.operation_id))

        plan.text_patches = [
            p.model_copy(update={"capability_id": descriptor.id}) for p in descriptor.text_patches
        ]
        for patch in plan.text_patches:
            if (patch.file, patch.fingerprint_id) in seen:
                errors.append(
                    f"{descriptor.id}: text patches to {patch.marker} in {patch.file} share the id "
                    f"'{patch.fingerprint_id}'; give each one an operation_id"
                )
            seen.add((patch.file, patch.fingerprint_id))
        if errors:
            raise ValidationError("Invalid runtime contributions:\n" + "\n".join(errors), step="plan")

        plan.patches = [p.model_copy(update={"capability_id": descriptor.id}) for p in descriptor.patches]
        self._check_targets(plan)

        files_dir = None
        if self.registry.has(capability_id):
            files_dir = self.registry.pack_files_dir(capability_id)
        try:
            plan.files = plan_files(descriptor, files_dir, manifest, self.engine)
        except TemplateRenderError as e:
            raise ValidationError(f"Cannot render plugin files: {e}", step="plan") from e

        provided = DependencySpec()
        for record in manifest.capabilities.values():
            _merge_dependencies(provided, record.effects.dependencies)
        plan.dependencies = DependencySpec(
            runtime={k: v for k, v in descriptor.dependencies.runtime.items() if provided.runtime.get(k) != v},
            dev={k: v for k, v in descriptor.dependencies.dev.items() if provided.dev.get(k) != v},
        )

        for requirement in descriptor.permissions:
            trace = manifest.permissions.get(requirement.id)
            if trace is None or (requirement.mandatory and not trace.mandatory):
                plan.permissions.append(requirement)

        logger.info(
            "Planned %s: %d files, %d wiring ops, %d text patches, %d patches",
            capability_id,
            len(plan.files),
            len(plan.wiring),
            len(plan.text_patches),
            len(plan.patches),
        )
        return plan

    # =========================================================================
    # Install
    # =========================================================================

    def add(self, capability_ids: Iterable[str], dry_run: bool = False) -> BatchSummary:
        """Install several capabilities, one pipeline run each.

        Capabilities run in install order (see ``install_order``), so the
        result does not depend on the order they were requested in. A failure
        is reported for its capability; the batch continues.
        """
        summary = BatchSummary()
        for capability_id in self.install_order(capability_ids):
            summary.results.append(self.apply(capability_id, dry_run=dry_run))
        return summary

    def install_order(self, capability_ids: Iterable[str]) -> list[str]:
        """Order a batch by lowest contribution order, then id.

        A capability required by another one in the same batch always comes
        first. Ids missing from the catalog keep their position at the end.
        """
        requested = list(dict.fromkeys(capability_ids))
        known = [cap_id for cap_id in requested if self.registry.has(cap_id)]
        unknown = [cap_id for cap_id in requested if cap_id not in known]

        def key(cap_id: str) -> tuple[int, str]:
            orders = [entry.order for entry in self.registry.get(cap_id).runtime]
            return (min(orders, default=0), cap_id)

        pending = sorted(known, key=key)
        ordered: list[str] = []
        while pending:
            for cap_id in pending:
                requires = self.registry.get(cap_id).requires
                if not any(r in pending and r != cap_id for r in requires):
                    break
            else:
                cap_id = pending[0]  # requirement cycle: resolver reports it
            ordered.append(cap_id)
            pending.remove(cap_id)
        return ordered + unknown

    def apply(self, capability_id: str, dry_run: bool = False) -> ModulatorResult:
        """Install one capability.

        Args:
            capability_id: Capability to install
            dry_run: Stop after planning

        Returns:
            ModulatorResult with per-phase and per-operation outcomes
        """
        result = ModulatorResult(capability_id, "add", dry_run=dry_run)
        ctx = self._context(dry_run)

        # Preflight
        try:
            manifest = self.project.store.read(ctx.backup_store, persist_migration=not dry_run)
        except RnsError as e:
            return self._fail(result, "preflight", e)

        if manifest.is_installed(capability_id):
            result.phases.append(PhaseResult("preflight", "executed"))
            result.success = True
            result.message = f"{capability_id} is already installed"
            logger.info(result.message)
            return result
        result.phases.append(PhaseResult("preflight", "executed"))

        # Plan
        try:
            plan = self.plan(capability_id, manifest)
        except RnsError as e:
            return self._fail(result, "plan", e)
        result.plan = plan
        result.warnings.extend(plan.warnings)
        result.phases.append(PhaseResult("plan", "executed", warnings=list(plan.warnings)))

        if dry_run:
            result.success = True
            result.message = f"Dry run: {capability_id} would be installed"
            return result

        try:
            with ProjectLock(self.project.root):
                self._run_install(ctx, plan, manifest, result)
        except RnsError as e:
            self._fail(result, "preflight", e)

        result.backups = ctx.backups
        result.warnings.extend(w for w in ctx.warnings if w not in result.warnings)
        return result

    def _run_install(
        self,
        ctx: PipelineContext,
        plan: Plan,
        manifest: ProjectManifest,
        result: ModulatorResult,
    ) -> None:
        steps = (
            ("scaffold", lambda: self._scaffold(ctx, plan)),
            ("link", lambda: self._link(ctx, plan, manifest)),
            ("wire", lambda: self._wire(ctx, plan, result)),
            ("patch", lambda: self._patch(ctx, plan, result)),
            ("manifest", lambda: self._update_manifest(plan, manifest, result)),
            ("verify", lambda: self._verify(plan)),
        )
        for phase, step in steps:
            written_before = len(ctx.written_files)
            try:
                warnings = step()
            except RnsError as e:
                self._fail(result, phase, e)  # type: ignore[arg-type]
                self._skip_remaining(result, phase)  # type: ignore[arg-type]
                return
            result.phases.append(
                PhaseResult(
                    phase,  # type: ignore[arg-type]
                    "executed",
                    warnings=warnings or [],
                    changed_files=ctx.written_files[written_before:],
                )
            )
            result.warnings.extend(warnings or [])

        result.success = True
        result.message = f"Installed {plan.capability_id}"

    def _scaffold(self, ctx: PipelineContext, plan: Plan) -> list[str]:
        scaffold(ctx, plan.capability_id, plan.files)
        return []

    def _link(self, ctx: PipelineContext, plan: Plan, manifest: ProjectManifest) -> list[str]:
        link_capability(ctx, plan.descriptor, manifest.package_manager)
        return []

    def _wire(self, ctx: PipelineContext, plan: Plan, result: ModulatorResult) -> list[str]:
        warnings: list[str] = []
        wiring = apply_wiring_batch(ctx, plan.wiring, stop_on_error=True)
        result.operations.extend(wiring)
        for outcome in wiring:
            warnings.extend(outcome.warnings)
            if not outcome.success:
                raise RnsError(f"{outcome.operation_id}: {outcome.error}", step="wire")

        for patch in plan.text_patches:
            outcome = patch_marker(ctx, patch)
            result.operations.append(outcome)
            if outcome.warning:
                warnings.append(outcome.warning)
            if not outcome.success:
                raise RnsError(f"{outcome.operation_id}: {outcome.error}", step="wire")
        return warnings

    def _patch(self, ctx: PipelineContext, plan: Plan, result: ModulatorResult) -> list[str]:
        outcomes = apply_patches(ctx, plan.patches, stop_on_error=True)
        result.operations.extend(outcomes)
        for outcome in outcomes:
            if not outcome.success:
                raise RnsError(f"{outcome.patch_id}: {outcome.error}", step="patch")
        return []

    def verify_files(self, plan: Plan) -> list[str]:
        """Check that every planned effect is present in the project.

        Each operation is re-run in dry-run mode; anything that would still
        inject is missing.

        Returns:
            Problems found (empty if the project matches the plan)
        """
        check = self._context(dry_run=True)
        problems = []
        for planned in plan.files:
            if not check.resolve(planned.dest).exists():
                problems.append(f"Missing scaffolded file {planned.dest}")

        outcomes: list[OperationResult] = []
        outcomes.extend(apply_wiring(check, op) for op in plan.wiring)
        outcomes.extend(patch_markers(check, plan.text_patches))
        outcomes.extend(apply_patch(check, op) for op in plan.patches)
        for outcome in outcomes:
            op_id = outcome.patch_id if isinstance(outcome, PatchResult) else outcome.operation_id
            if outcome.action == "injected":
                problems.append(f"{op_id} is not applied in {outcome.file}")
            elif outcome.action == "error":
                problems.append(f"{op_id}: {outcome.error}")
        return problems

    def _update_manifest(self, plan: Plan, manifest: ProjectManifest, result: ModulatorResult) -> list[str]:
        problems = self.verify_files(plan)
        if problems:
            raise RnsError("Verification failed before recording install:\n" + "\n".join(problems))

        descriptor = plan.descriptor
        record = InstalledCapability(
            version=descriptor.version,
            effects=CapabilityEffects(
                owned_files=[f.dest for f in plan.files],
                package=descriptor.package_dir,
                operations=sorted({op.operation_id for op in plan.wiring}),
                patches=[p.fingerprint_id for p in plan.text_patches] + [p.patch_id for p in plan.patches],
                dependencies=descriptor.dependencies,
            ),
            permissions=list(descriptor.permissions),
            slots=list(descriptor.slots),
            requires=dict(descriptor.requires),
            conflicts_with=list(descriptor.conflicts_with),
        )
        updated = manifest.model_copy(deep=True)
        updated.add_capability(descriptor.id, record)
        self.project.save(updated)
        result.manifest_updated = True
        return []

    def _verify(self, plan: Plan) -> list[str]:
        manifest = self.project.store.read()
        if not manifest.is_installed(plan.capability_id):
            raise RnsError(f"{plan.capability_id} missing from manifest after update", step="verify")
        problems = self.verify_files(plan)
        if problems:
            raise RnsError("Verification failed:\n" + "\n".join(problems), step="verify")
        return []

    # =========================================================================
    # Removal
    # =========================================================================

    def remove(self, capability_ids: Iterable[str], dry_run: bool = False) -> BatchSummary:
        """Remove several capabilities, one pipeline run each."""
        summary = BatchSummary()
        for capability_id in capability_ids:
            summary.results.append(self.uninstall(capability_id, dry_run=dry_run))
        return summary

    def uninstall(self, capability_id: str, dry_run: bool = False) -> ModulatorResult:
        """Remove one capability.

        Owned files are deleted (after backup), provider/init/registration
        blocks are unwired, the workspace link is dropped and the manifest
        entry removed. Imports and root replacements stay in place and are
        reported as warnings; platform patches are not reverted.

        Removing a capability that is not installed is a no-op.
        """
        result = ModulatorResult(capability_id, "remove", dry_run=dry_run)
        ctx = self._context(dry_run)

        try:
            manifest = self.project.store.read(ctx.backup_store, persist_migration=not dry_run)
        except RnsError as e:
            return self._fail(result, "preflight", e)
        result.phases.append(PhaseResult("preflight", "executed"))

        record = manifest.get_capability(capability_id)
        if record is None:
            result.success = True
            result.message = f"{capability_id} is not installed"
            return result

        try:
            dependents = find_dependents(self.installed_descriptors(manifest), capability_id)
            if dependents:
                conflict = Conflict("requires", f"Required by installed plugins: {', '.join(dependents)}")
                raise ConflictError(capability_id, [conflict], action="remove")
            descriptor = self.registry.get(capability_id) if self.registry.has(capability_id) else None
        except RnsError as e:
            return self._fail(result, "plan", e)

        warnings = self._removal_warnings(descriptor, record)
        result.warnings.extend(warnings)
        result.phases.append(PhaseResult("plan", "executed", warnings=warnings))

        if dry_run:
            result.success = True
            result.message = f"Dry run: {capability_id} would be removed"
            return result

        try:
            with ProjectLock(self.project.root):
                self._run_removal(ctx, capability_id, descriptor, record, manifest, result)
        except RnsError as e:
            self._fail(result, "preflight", e)

        result.backups = ctx.backups
        return result

    @staticmethod
    def _removal_warnings(descriptor: CapabilityDescriptor | None, record: InstalledCapability) -> list[str]:
        warnings = []
        if descriptor is None:
            warnings.append("Plugin is not in the catalog; removing recorded files only")
        kinds = {op_id.rsplit("-", 1)[-1] for op_id in record.effects.operations}
        if "import" in kinds:
            warnings.append("Imports added by this plugin are left in place")
        if "root" in kinds:
            warnings.append("Root component replacement is left in place")
        if record.effects.patches:
            warnings.append("Platform and config patches are not reverted")
        return warnings

    def _run_removal(
        self,
        ctx: PipelineContext,
        capability_id: str,
        descriptor: CapabilityDescriptor | None,
        record: InstalledCapability,
        manifest: ProjectManifest,
        result: ModulatorResult,
    ) -> None:
        def unscaffold() -> list[str]:
            for rel in record.effects.owned_files:
                path = ctx.resolve(rel)
                if not is_managed_path(ctx.project_root, rel) or not path.exists():
                    continue
                ctx.backup(path, capability_id)
                path.unlink()
                ctx.written_files.append(rel)
            if record.effects.package:
                _prune_empty_dirs(ctx.resolve(record.effects.package))
            return []

        def unlink() -> list[str]:
            if descriptor is not None:
                unlink_capability(ctx, descriptor)
            return []

        def unwire() -> list[str]:
            files = {CANONICAL_MARKERS[m].default_file for m in CANONICAL_MARKERS}
            if descriptor is not None:
                files.update(op.file for op in self.build_operations(descriptor))
            for rel in sorted(files):
                path = ctx.resolve(rel)
                if not path.exists() or not is_managed_path(ctx.project_root, rel):
                    continue
                content = read_source(path, rel)
                updated, removed = strip_contributions(content, capability_id)
                if not removed:
                    continue
                if introduces_errors(content, updated, rel):
                    raise RnsError(f"Unwiring {capability_id} would break {rel}", step="wire")
                ctx.write_text(path, updated, tag=capability_id)
                logger.info("Unwired %s from %s", ", ".join(removed), rel)
            return []

        def update_manifest() -> list[str]:
            updated = manifest.model_copy(deep=True)
            updated.remove_capability(capability_id)
            self.project.save(updated)
            result.manifest_updated = True
            return []

        def verify() -> list[str]:
            if self.project.store.read().is_installed(capability_id):
                raise RnsError(f"{capability_id} still recorded after removal", step="verify")
            return []

        steps = (
            ("scaffold", unscaffold),
            ("link", unlink),
            ("wire", unwire),
            ("manifest", update_manifest),
            ("verify", verify),
        )
        for phase, step in steps:
            try:
                step()
            except (RnsError, OSError) as e:
                self._fail(result, phase, e)  # type: ignore[arg-type]
                return
            result.phases.append(PhaseResult(phase, "executed"))  # type: ignore[arg-type]

        result.success = True
        result.message = f"Removed {capability_id}"

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _fail(result: ModulatorResult, phase: Phase, error: Exception) -> ModulatorResult:
        message = str(error)
        logger.error("%s failed during %s: %s", result.capability_id, phase, message)
        result.phases.append(PhaseResult(phase, "error", error=message))
        result.errors.append(message)
        result.success = False
        result.exit_code = int(getattr(error, "exit_code", 1))
        return result

    @staticmethod
    def _skip_remaining(result: ModulatorResult, failed: Phase) -> None:
        for phase in PHASES[PHASES.index(failed) + 1 :]:
            result.phases.append(PhaseResult(phase, "skipped"))


def _prune_empty_dirs(directory: Path) -> None:
    """Remove empty directories bottom-up, including the directory itself."""
    if not directory.is_dir():
        return
    for path in sorted(directory.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if path.is_dir() and not any(path.iterdir()):
            path.rmdir()
    if not any(directory.iterdir()):
        directory.rmdir()
