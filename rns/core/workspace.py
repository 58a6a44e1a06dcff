"""Link phase: workspace membership and package-manager integration.

Capability packages live under packages/@rns/ and are consumed by the
runtime package through the host's workspace. This module declares the
workspace globs, points the runtime package at each capability package using
a reference the active package manager understands, and optionally runs the
package manager's install.
"""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rns.config.parser import load_json, load_yaml, save_yaml
from rns.config.schemas import CapabilityDescriptor, PackageManager
from rns.core.context import PipelineContext
from rns.core.errors import ExternalToolError, ValidationError
from rns.utils.ledger import assert_not_user_owned
from rns.utils.markers import RUNTIME_DIR

logger = logging.getLogger("rns.workspace")

WORKSPACE_GLOBS = ["packages/*", "packages/@rns/*"]
HOST_PACKAGE_JSON = "package.json"
PNPM_WORKSPACE_FILE = "pnpm-workspace.yaml"
RUNTIME_PACKAGE_JSON = f"{RUNTIME_DIR}/package.json"
WORKSPACE_PROTOCOL = "workspace:"


@dataclass
class LinkResult:
    """Outcome of linking a capability package."""

    changed_files: list[str] = field(default_factory=list)
    commands: list[list[str]] = field(default_factory=list)


def dependency_reference(package_manager: PackageManager, package_name: str) -> str:
    """Reference from one @rns package to another.

    npm does not understand the workspace protocol, so it gets a relative
    ``file:`` path between sibling packages instead.
    """
    if package_manager == "npm":
        return f"file:../{package_name.rsplit('/', 1)[-1]}"
    return "workspace:*"


def rewrite_workspace_refs(deps: dict[str, str], package_manager: PackageManager) -> dict[str, str]:
    """Rewrite ``workspace:`` references for package managers that lack the protocol."""
    if package_manager != "npm":
        return dict(deps)
    return {
        name: dependency_reference("npm", name) if spec.startswith(WORKSPACE_PROTOCOL) else spec
        for name, spec in deps.items()
    }


def _dump(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2) + "\n"


def _update_json(ctx: PipelineContext, rel: str, tag: str, update: Any) -> bool:
    """Load a JSON file, apply an in-place update, write it back if it changed."""
    path = ctx.resolve(rel)
    data = load_json(path)
    before = _dump(data)
    update(data)
    after = _dump(data)
    if after == before:
        return False
    ctx.write_text(path, after, tag=tag)
    return True


def ensure_workspaces(ctx: PipelineContext, package_manager: PackageManager, tag: str) -> list[str]:
    """Declare the workspace globs in the host project.

    Returns:
        Relative paths of files that changed
    """
    if package_manager == "pnpm":
        rel = PNPM_WORKSPACE_FILE
        path = ctx.resolve(rel)
        data = load_yaml(path) if path.exists() else {}
        packages = list(data.get("packages") or [])
        missing = [g for g in WORKSPACE_GLOBS if g not in packages]
        if not missing:
            return []
        data["packages"] = packages + missing
        ctx.backup(path, tag)
        save_yaml(path, data)
        ctx.written_files.append(rel)
        return [rel]

    rel = HOST_PACKAGE_JSON
    assert_not_user_owned(ctx.project_root, rel)
    if not ctx.resolve(rel).exists():
        raise ValidationError(f"Host package.json not found at {ctx.resolve(rel)}", step="link")

    def add_globs(data: dict[str, Any]) -> None:
        workspaces = data.get("workspaces")
        # yarn classic allows {"packages": [...], "nohoist": [...]}
        if isinstance(workspaces, dict):
            globs = workspaces.setdefault("packages", [])
        else:
            globs = workspaces if isinstance(workspaces, list) else []
            data["workspaces"] = globs
        globs.extend(g for g in WORKSPACE_GLOBS if g not in globs)
        data.setdefault("private", True)

    return [rel] if _update_json(ctx, rel, tag, add_globs) else []


def link_capability(
    ctx: PipelineContext,
    descriptor: CapabilityDescriptor,
    package_manager: PackageManager,
) -> LinkResult:
    """Make a scaffolded capability package part of the workspace.

    Args:
        ctx: Pipeline context
        descriptor: Capability being installed
        package_manager: Active package manager

    Returns:
        LinkResult with changed files and any commands run

    Raises:
        ValidationError: If the host or runtime package.json is missing
        ExternalToolError: If the package-manager install fails
    """
    result = LinkResult()
    tag = descriptor.id
    result.changed_files.extend(ensure_workspaces(ctx, package_manager, tag))

    package_json = f"{descriptor.package_dir}/package.json"

    def add_package_deps(data: dict[str, Any]) -> None:
        deps = dict(data.get("dependencies") or {})
        deps.update(descriptor.dependencies.runtime)
        data["dependencies"] = rewrite_workspace_refs(deps, package_manager)
        if descriptor.dependencies.dev or "devDependencies" in data:
            dev = dict(data.get("devDependencies") or {})
            dev.update(descriptor.dependencies.dev)
            data["devDependencies"] = rewrite_workspace_refs(dev, package_manager)

    if _update_json(ctx, package_json, tag, add_package_deps):
        result.changed_files.append(package_json)

    if not ctx.resolve(RUNTIME_PACKAGE_JSON).exists():
        raise ValidationError(
            f"Runtime package not found: {RUNTIME_PACKAGE_JSON}. Run 'rns doctor'.", step="link"
        )
    reference = dependency_reference(package_manager, descriptor.package_name)

    def add_runtime_dep(data: dict[str, Any]) -> None:
        deps = data.setdefault("dependencies", {})
        deps[descriptor.package_name] = reference
        data["dependencies"] = dict(sorted(deps.items()))

    if _update_json(ctx, RUNTIME_PACKAGE_JSON, tag, add_runtime_dep):
        result.changed_files.append(RUNTIME_PACKAGE_JSON)

    if ctx.install_dependencies:
        result.commands.append(run_install(ctx, package_manager))

    logger.info("Linked %s (%s)", descriptor.package_name, reference)
    return result


def unlink_capability(ctx: PipelineContext, descriptor: CapabilityDescriptor) -> list[str]:
    """Drop a capability package from the runtime package's dependencies."""
    if not ctx.resolve(RUNTIME_PACKAGE_JSON).exists():
        return []

    def drop(data: dict[str, Any]) -> None:
        deps = data.get("dependencies") or {}
        deps.pop(descriptor.package_name, None)

    return [RUNTIME_PACKAGE_JSON] if _update_json(ctx, RUNTIME_PACKAGE_JSON, descriptor.id, drop) else []


def run_install(ctx: PipelineContext, package_manager: PackageManager) -> list[str]:
    """Run the package manager's install in the project root.

    Returns:
        The command that was run

    Raises:
        ExternalToolError: If the command is missing, times out or fails
    """
    cmd = [package_manager, "install"]
    cwd: Path = ctx.project_root
    logger.info("Running %s in %s", " ".join(cmd), cwd)
    try:
        completed = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=ctx.package_manager_timeout,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(cmd, cwd, f"{package_manager} is not installed or not in PATH") from e
    except subprocess.TimeoutExpired as e:
        raise ExternalToolError(cmd, cwd, f"Timed out after {ctx.package_manager_timeout}s") from e

    if completed.returncode != 0:
        logger.error("%s failed: %s", " ".join(cmd), completed.stderr.strip())
        raise ExternalToolError(cmd, cwd, completed.stderr or completed.stdout, completed.returncode)
    return cmd
