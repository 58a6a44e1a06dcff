"""Pydantic schemas for rns data files.

This module defines the data models for:
- plugin.json (capability descriptor, read from the catalog)
- .rns/rn-init.json (project manifest)
- .rns/config.yaml (CLI settings)
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# Common Types
# =============================================================================

MarkerType = Literal["imports", "providers", "init-steps", "root", "registrations"]
ContributionKind = Literal["import", "provider", "init-step", "registration", "root"]
Target = Literal["expo", "bare"]
Platform = Literal["ios", "android", "web"]
Language = Literal["ts", "js"]
PackageManager = Literal["npm", "pnpm", "yarn"]
SlotMode = Literal["single", "multi"]
InsertMode = Literal["append", "prepend", "replace"]
OperationAction = Literal["injected", "skipped", "error"]

MARKER_TYPES: tuple[MarkerType, ...] = ("imports", "providers", "init-steps", "root", "registrations")

# Marker region each contribution kind lands in
KIND_TO_MARKER: dict[str, MarkerType] = {
    "import": "imports",
    "provider": "providers",
    "init-step": "init-steps",
    "registration": "registrations",
    "root": "root",
}

MANIFEST_SCHEMA_VERSION = "2.0.0"

_CAPABILITY_ID = re.compile(r"^[a-z0-9]+(?:[-_][a-z0-9]+)*(?:\.[a-z0-9]+(?:[-_][a-z0-9]+)*)*$")
_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*(?:\.[A-Za-z_$][A-Za-z0-9_$]*)*$")


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Contribution Models
# =============================================================================


class SymbolRef(BaseModel):
    """A named symbol exported by an originating module."""

    symbol: str
    source: str

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Symbols must be plain identifiers."""
        if not re.match(r"^[A-Za-z_$][A-Za-z0-9_$]*$", v):
            raise ValueError(f"Invalid import symbol: {v!r}")
        return v


class CallRef(BaseModel):
    """A call to a referenced symbol, rendered as ``symbol(args...)``."""

    kind: Literal["call"] = "call"
    symbol: str
    args: list[Any] = Field(default_factory=list)
    source: str | None = None  # module to import the symbol from

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Callee must be an identifier or a dotted member path."""
        if not _IDENTIFIER.match(v):
            raise ValueError(f"Invalid call symbol: {v!r}")
        return v


class RawStatement(BaseModel):
    """Unstructured source statement.

    Raw statements are injected verbatim. They bypass syntax-tree
    deduplication and are only protected by their fingerprint record.
    """

    kind: Literal["raw"] = "raw"
    code: str

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Raw code must not be empty."""
        if not v.strip():
            raise ValueError("Raw statement code cannot be empty")
        return v


Statement = Annotated[CallRef | RawStatement, Field(discriminator="kind")]


class ImportContribution(BaseModel):
    """Named imports to ensure in the target file."""

    type: Literal["import"] = "import"
    imports: list[SymbolRef] = Field(default_factory=list)


class ProviderContribution(BaseModel):
    """A wrapper element nested around the providers region."""

    type: Literal["provider"] = "provider"
    symbol: str
    props: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None


class InitStepContribution(BaseModel):
    """A boot-time call placed in the init-steps region."""

    type: Literal["init-step"] = "init-step"
    step: Statement


class RegistrationContribution(BaseModel):
    """A registration call placed in the registrations region."""

    type: Literal["registration"] = "registration"
    step: Statement


class RootContribution(BaseModel):
    """The component that becomes the mounted root."""

    type: Literal["root"] = "root"
    symbol: str
    source: str | None = None


Contribution = Annotated[
    ImportContribution
    | ProviderContribution
    | InitStepContribution
    | RegistrationContribution
    | RootContribution,
    Field(discriminator="type"),
]


class RuntimeContribution(BaseModel):
    """A contribution as declared in a capability descriptor.

    - file: target file relative to the project root (defaults to the
      marker's canonical file)
    - marker: marker region (defaults to the region for the contribution kind)
    - order: position among contributions to the same region
    """

    contribution: Contribution
    file: str | None = None
    marker: MarkerType | None = None
    order: int = 0


class WiringOperation(BaseModel):
    """A contribution bound to its capability, file, and marker region."""

    model_config = {"frozen": True}

    capability_id: str
    file: str
    marker_type: MarkerType
    contribution: Contribution
    order: int = 0

    @property
    def kind(self) -> ContributionKind:
        return self.contribution.type

    @property
    def operation_id(self) -> str:
        """Fingerprint id: deterministic over capability, marker and kind."""
        return f"{self.capability_id}-{self.marker_type}-{self.contribution.type}"

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.order, self.capability_id)


class MarkerPatch(BaseModel):
    """Plain text injected into a marker region."""

    file: str
    marker: MarkerType
    content: str
    mode: InsertMode = "append"
    capability_id: str = ""
    operation_id: str | None = None

    @property
    def fingerprint_id(self) -> str:
        if self.operation_id:
            return self.operation_id
        return f"{self.capability_id}-{self.marker}"


# =============================================================================
# Patch Operation Models
# =============================================================================


class _PatchBase(BaseModel):
    id: str
    file: str
    capability_id: str = ""

    @property
    def patch_id(self) -> str:
        """Idempotency tag, namespaced by the owning capability."""
        if self.capability_id:
            return f"{self.capability_id}:{self.id}"
        return self.id


class ExpoConfigPatch(_PatchBase):
    """Set, merge or append a value at a dotted path inside a JSON config."""

    type: Literal["expo-config"] = "expo-config"
    file: str = "app.json"
    path: str
    action: Literal["set", "merge", "append"] = "set"
    value: Any = None


class PlistPatch(_PatchBase):
    """Add a key to the top-level dict of a plist or entitlements file."""

    type: Literal["plist", "entitlements"] = "plist"
    key: str
    value: str | bool | int | float | list[str]


class AnchorPatch(_PatchBase):
    """Insert content before or after an anchor string."""

    type: Literal["android-manifest", "gradle", "podfile", "text-anchor"] = "text-anchor"
    anchor: str
    content: str
    position: Literal["before", "after"] = "after"


PatchOp = Annotated[ExpoConfigPatch | PlistPatch | AnchorPatch, Field(discriminator="type")]


# =============================================================================
# Capability Descriptor Models
# =============================================================================


class SupportMatrix(BaseModel):
    """Targets and platforms a capability supports."""

    targets: list[Target] = Field(default_factory=lambda: ["expo", "bare"])
    platforms: list[Platform] = Field(default_factory=lambda: ["ios", "android"])


class SlotRule(BaseModel):
    """Slot membership of a capability."""

    slot: str
    mode: SlotMode = "multi"


class DependencySpec(BaseModel):
    """npm dependencies contributed by a capability."""

    runtime: dict[str, str] = Field(default_factory=dict)
    dev: dict[str, str] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.runtime and not self.dev


class PermissionRequirement(BaseModel):
    """A permission a capability needs."""

    id: str
    mandatory: bool = True


class CapabilityDescriptor(BaseModel):
    """Capability descriptor (plugin.json)."""

    id: str
    name: str | None = None
    description: str = ""
    version: str = "1.0.0"
    category: str = "general"
    support: SupportMatrix = Field(default_factory=SupportMatrix)
    slots: list[SlotRule] = Field(default_factory=list)
    requires: dict[str, str] = Field(default_factory=dict)  # capability id -> version range
    conflicts_with: list[str] = Field(default_factory=list)
    dependencies: DependencySpec = Field(default_factory=DependencySpec)
    runtime: list[RuntimeContribution] = Field(default_factory=list)
    text_patches: list[MarkerPatch] = Field(default_factory=list)
    patches: list[PatchOp] = Field(default_factory=list)
    permissions: list[PermissionRequirement] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Capability ids are lowercase, dot-namespaced."""
        if not _CAPABILITY_ID.match(v):
            raise ValueError(
                f"Invalid capability id '{v}': use lowercase letters, digits, "
                "hyphens and dots (e.g. 'auth.firebase')"
            )
        return v

    @field_validator("requires", mode="before")
    @classmethod
    def normalize_requires(cls, v: Any) -> Any:
        """Accept a plain list of ids as shorthand for any version."""
        if isinstance(v, list):
            return {cap_id: "*" for cap_id in v}
        return v

    @model_validator(mode="after")
    def validate_patch_ids(self) -> "CapabilityDescriptor":
        """Patch ids must be unique within a descriptor."""
        seen: set[str] = set()
        for patch in self.patches:
            if patch.id in seen:
                raise ValueError(f"Duplicate patch id '{patch.id}'")
            seen.add(patch.id)
        if self.id in self.conflicts_with:
            raise ValueError("A capability cannot conflict with itself")
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def package_slug(self) -> str:
        """Directory-safe form of the id (``auth.firebase`` -> ``auth-firebase``)."""
        return self.id.replace(".", "-").replace("_", "-")

    @property
    def package_name(self) -> str:
        return f"@rns/plugin-{self.package_slug}"

    @property
    def package_dir(self) -> str:
        return f"packages/@rns/plugin-{self.package_slug}"


# =============================================================================
# Project Manifest Models
# =============================================================================


class ProjectIdentity(BaseModel):
    """Identity of the generated project."""

    name: str
    display_name: str | None = None


class CapabilityEffects(BaseModel):
    """Everything an install changed, kept for status, doctor and removal."""

    owned_files: list[str] = Field(default_factory=list)
    package: str | None = None
    operations: list[str] = Field(default_factory=list)
    patches: list[str] = Field(default_factory=list)
    dependencies: DependencySpec = Field(default_factory=DependencySpec)


class InstalledCapability(BaseModel):
    """Manifest record for one installed capability."""

    version: str
    installed_at: str = Field(default_factory=utc_now)
    updated_at: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    effects: CapabilityEffects = Field(default_factory=CapabilityEffects)
    permissions: list[PermissionRequirement] = Field(default_factory=list)
    # Resolver inputs, recorded at install time
    slots: list[SlotRule] = Field(default_factory=list)
    requires: dict[str, str] = Field(default_factory=dict)
    conflicts_with: list[str] = Field(default_factory=list)


class PermissionTrace(BaseModel):
    """Aggregated permission and the capabilities that require it."""

    mandatory: bool = False
    required_by: list[str] = Field(default_factory=list)


class ProjectManifest(BaseModel):
    """Project manifest (.rns/rn-init.json)."""

    schema_version: str = MANIFEST_SCHEMA_VERSION
    identity: ProjectIdentity
    target: Target = "expo"
    language: Language = "ts"
    package_manager: PackageManager = "npm"
    platforms: list[Platform] = Field(default_factory=lambda: ["ios", "android"])
    capabilities: dict[str, InstalledCapability] = Field(default_factory=dict)
    permissions: dict[str, PermissionTrace] = Field(default_factory=dict)
    ownership: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: str) -> str:
        """Only the current schema is valid once loaded; older ones are migrated."""
        if v != MANIFEST_SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported schema version '{v}' (expected {MANIFEST_SCHEMA_VERSION})"
            )
        return v

    def is_installed(self, capability_id: str) -> bool:
        return capability_id in self.capabilities

    def get_capability(self, capability_id: str) -> InstalledCapability | None:
        return self.capabilities.get(capability_id)

    def add_capability(self, capability_id: str, record: InstalledCapability) -> None:
        """Record an installed capability and refresh derived fields."""
        existing = self.capabilities.get(capability_id)
        if existing is not None:
            record.installed_at = existing.installed_at
            record.updated_at = utc_now()
        self.capabilities[capability_id] = record
        self.refresh()

    def remove_capability(self, capability_id: str) -> InstalledCapability | None:
        """Drop a capability and refresh derived fields.

        Returns:
            The removed record, or None if it was not installed
        """
        record = self.capabilities.pop(capability_id, None)
        if record is not None:
            self.refresh()
        return record

    def aggregate_permissions(self) -> dict[str, PermissionTrace]:
        """Rebuild the permission aggregate from installed capabilities.

        A permission is mandatory if any capability requires it as mandatory.
        """
        aggregate: dict[str, PermissionTrace] = {}
        for cap_id in sorted(self.capabilities):
            for requirement in self.capabilities[cap_id].permissions:
                trace = aggregate.setdefault(requirement.id, PermissionTrace())
                trace.mandatory = trace.mandatory or requirement.mandatory
                if cap_id not in trace.required_by:
                    trace.required_by.append(cap_id)
        self.permissions = dict(sorted(aggregate.items()))
        return self.permissions

    def refresh(self) -> None:
        """Recompute permissions and ownership from installed capabilities."""
        self.aggregate_permissions()
        self.ownership = self._compute_ownership()

    def owned_paths(self) -> set[str]:
        return set(self.ownership)

    def _compute_ownership(self) -> list[str]:
        paths: set[str] = set()
        for record in self.capabilities.values():
            paths.update(record.effects.owned_files)
            if record.effects.package:
                paths.add(record.effects.package)
        return sorted(paths)


# =============================================================================
# CLI Settings
# =============================================================================


class RnsSettings(BaseModel):
    """CLI settings (.rns/config.yaml, environment, flags)."""

    catalog_dir: str | None = None
    install_dependencies: bool = True
    package_manager_timeout: int = 600

    @field_validator("package_manager_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("package_manager_timeout must be positive")
        return v
