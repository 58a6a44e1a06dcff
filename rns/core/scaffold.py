"""Scaffold phase: materialize a capability's owned files.

Pack files are read and rendered while planning, so the plan already holds
the exact bytes to write. The scaffold phase then reconciles them with what
is on disk: identical files are left alone, differing files are backed up and
replaced, missing files are created.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rns.config.schemas import CapabilityDescriptor, ProjectManifest
from rns.core.context import PipelineContext
from rns.template.engine import TEMPLATE_SUFFIX, TemplateEngine
from rns.utils.ledger import assert_managed

logger = logging.getLogger("rns.scaffold")

PACKAGE_JSON = "package.json"


@dataclass
class ScaffoldFile:
    """A file to materialize, relative to the project root."""

    dest: str
    content: str | bytes
    source: Path | None = None

    @property
    def data(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


@dataclass
class ScaffoldResult:
    """Outcome of the scaffold phase."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def files(self) -> list[str]:
        return sorted(self.created + self.updated + self.unchanged)


def template_context(descriptor: CapabilityDescriptor, manifest: ProjectManifest) -> dict[str, Any]:
    """Variables available to ``*.j2`` pack files."""
    return {
        "plugin": descriptor.model_dump(mode="json", include={"id", "name", "version", "category"}),
        "package_name": descriptor.package_name,
        "project_name": manifest.identity.name,
        "target": manifest.target,
        "language": manifest.language,
        "package_manager": manifest.package_manager,
    }


def default_package_json(descriptor: CapabilityDescriptor) -> str:
    data = {
        "name": descriptor.package_name,
        "version": descriptor.version,
        "private": True,
        "main": "index.ts",
        "dependencies": {},
    }
    return json.dumps(data, indent=2) + "\n"


def plan_files(
    descriptor: CapabilityDescriptor,
    files_dir: Path | None,
    manifest: ProjectManifest,
    engine: TemplateEngine | None = None,
) -> list[ScaffoldFile]:
    """Compute the files a capability owns, with their rendered content.

    Args:
        descriptor: Capability being installed
        files_dir: The pack's ``files/`` directory (may be missing)
        manifest: Project manifest (feeds template variables)
        engine: Template engine for ``*.j2`` files

    Returns:
        Files sorted by destination; always includes the package's package.json
    """
    engine = engine or TemplateEngine()
    context = template_context(descriptor, manifest)
    planned: dict[str, ScaffoldFile] = {}

    if files_dir is not None and files_dir.is_dir():
        for source in sorted(files_dir.rglob("*")):
            if not source.is_file():
                continue
            rel = source.relative_to(files_dir).as_posix()
            if rel.endswith(TEMPLATE_SUFFIX):
                rel = rel[: -len(TEMPLATE_SUFFIX)]
                content = engine.render_file(source, context)
            else:
                # Copied verbatim: packs may ship images and fonts
                content = source.read_bytes()
            dest = f"{descriptor.package_dir}/{rel}"
            planned[dest] = ScaffoldFile(dest=dest, content=content, source=source)

    package_json = f"{descriptor.package_dir}/{PACKAGE_JSON}"
    if package_json not in planned:
        planned[package_json] = ScaffoldFile(dest=package_json, content=default_package_json(descriptor))

    return [planned[dest] for dest in sorted(planned)]


def scaffold(ctx: PipelineContext, capability_id: str, files: list[ScaffoldFile]) -> ScaffoldResult:
    """Write planned files into the managed zone.

    Args:
        ctx: Pipeline context
        capability_id: Owning capability (backup tag)
        files: Files from plan_files

    Returns:
        ScaffoldResult listing created, updated and unchanged files

    Raises:
        ValidationError: If a destination is outside the managed zone
        MutationError: If a file cannot be written
    """
    result = ScaffoldResult()
    for planned in files:
        assert_managed(ctx.project_root, planned.dest)

    for planned in files:
        path = ctx.resolve(planned.dest)
        if path.exists():
            if path.read_bytes() == planned.data:
                result.unchanged.append(planned.dest)
                continue
            ctx.warn(f"Replacing modified file {planned.dest} (backed up)")
            ctx.write_bytes(path, planned.data, tag=capability_id)
            result.updated.append(planned.dest)
        else:
            ctx.write_bytes(path, planned.data, tag=capability_id)
            result.created.append(planned.dest)

    logger.info(
        "Scaffolded %s: %d created, %d updated, %d unchanged",
        capability_id,
        len(result.created),
        len(result.updated),
        len(result.unchanged),
    )
    return result
