"""Slot and conflict resolution for capability installs.

This module decides, before anything is scaffolded, whether a candidate
capability can join the set already installed: target and platform support,
declared conflicts, single-occupancy slots, and declared requirements.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from rns.config.schemas import CapabilityDescriptor, Platform, Target
from rns.core.errors import ValidationError
from rns.utils.version import satisfies

logger = logging.getLogger("rns.resolver")

Severity = Literal["error", "warning"]


@dataclass
class Conflict:
    """A problem found while resolving a candidate."""

    kind: Literal["target", "platform", "conflicts-with", "slot", "requires"]
    message: str
    severity: Severity = "error"
    capability_id: str | None = None  # the other capability involved, if any


class ConflictError(ValidationError):
    """The candidate cannot be installed alongside the current set."""

    def __init__(self, capability_id: str, conflicts: list[Conflict], action: str = "install"):
        self.capability_id = capability_id
        self.conflicts = conflicts
        details = "\n".join(f"  - {c.message}" for c in conflicts)
        super().__init__(f"Cannot {action} {capability_id}:\n{details}", step="plan")


@dataclass
class ResolutionResult:
    """Outcome of resolving a candidate against installed capabilities."""

    capability_id: str
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def errors(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.severity == "error"]

    @property
    def warnings(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.severity == "warning"]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise ConflictError if any error-level conflict was found."""
        if self.errors:
            raise ConflictError(self.capability_id, self.errors)


def check_conflicts(
    installed: Iterable[CapabilityDescriptor],
    candidate: CapabilityDescriptor,
    target: Target,
    platforms: Iterable[Platform] | None = None,
    installed_versions: dict[str, str] | None = None,
) -> ResolutionResult:
    """Resolve a candidate against the installed capability set.

    Args:
        installed: Descriptors of installed capabilities
        candidate: Capability to install
        target: Project target
        platforms: Platforms the project builds for (None to skip the check)
        installed_versions: Installed versions by id, for requirement ranges

    Returns:
        ResolutionResult listing every conflict found
    """
    result = ResolutionResult(candidate.id)
    installed = [d for d in installed if d.id != candidate.id]
    installed_ids = {d.id for d in installed}
    versions = installed_versions or {d.id: d.version for d in installed}

    if target not in candidate.support.targets:
        result.conflicts.append(
            Conflict(
                "target",
                f"{candidate.id} does not support target '{target}' "
                f"(supports: {', '.join(candidate.support.targets)})",
            )
        )

    if platforms is not None:
        wanted = set(platforms)
        supported = wanted & set(candidate.support.platforms)
        if wanted and not supported:
            result.conflicts.append(
                Conflict("platform", f"{candidate.id} supports none of: {', '.join(sorted(wanted))}")
            )
        elif wanted - supported:
            result.conflicts.append(
                Conflict(
                    "platform",
                    f"{candidate.id} does not support: {', '.join(sorted(wanted - supported))}",
                    severity="warning",
                )
            )

    for other in installed:
        if other.id in candidate.conflicts_with or candidate.id in other.conflicts_with:
            result.conflicts.append(
                Conflict(
                    "conflicts-with",
                    f"{candidate.id} conflicts with installed plugin {other.id}",
                    capability_id=other.id,
                )
            )

    for rule in candidate.slots:
        occupants = [
            other.id
            for other in installed
            if any(s.slot == rule.slot for s in other.slots)
        ]
        single = rule.mode == "single" or any(
            s.slot == rule.slot and s.mode == "single" for other in installed for s in other.slots
        )
        if single and occupants:
            result.conflicts.append(
                Conflict(
                    "slot",
                    f"Slot '{rule.slot}' is single-occupancy and already used by {occupants[0]}",
                    capability_id=occupants[0],
                )
            )

    for required_id, spec in candidate.requires.items():
        if required_id not in installed_ids:
            result.conflicts.append(
                Conflict(
                    "requires",
                    f"{candidate.id} requires {required_id}, which is not installed",
                    capability_id=required_id,
                )
            )
        elif not satisfies(versions.get(required_id, "0.0.0"), spec):
            result.conflicts.append(
                Conflict(
                    "requires",
                    f"{candidate.id} requires {required_id} {spec}, "
                    f"but {versions.get(required_id)} is installed",
                    capability_id=required_id,
                )
            )

    for conflict in result.conflicts:
        logger.debug("%s: %s (%s)", candidate.id, conflict.message, conflict.severity)
    return result


def find_dependents(installed: Iterable[CapabilityDescriptor], capability_id: str) -> list[str]:
    """Installed capabilities that declare a requirement on the given one."""
    return sorted(d.id for d in installed if capability_id in d.requires and d.id != capability_id)
