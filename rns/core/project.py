"""Project model representing an rns-managed project."""

import json
import logging
from pathlib import Path

from rns import __version__
from rns.config.parser import STATE_DIR, find_project_root
from rns.config.schemas import Language, PackageManager, Platform, ProjectManifest, Target
from rns.core.context import PipelineContext
from rns.core.errors import ManifestNotFoundError
from rns.core.manifest import ManifestStore
from rns.core.workspace import HOST_PACKAGE_JSON, WORKSPACE_GLOBS, ensure_workspaces
from rns.template.engine import TemplateEngine
from rns.utils.markers import RUNTIME_CORE_INIT, RUNTIME_DIR, RUNTIME_INDEX

logger = logging.getLogger("rns.project")

RUNTIME_TEMPLATES = {
    RUNTIME_INDEX: "runtime/index.tsx.j2",
    RUNTIME_CORE_INIT: "runtime/core-init.ts.j2",
    f"{RUNTIME_DIR}/package.json": "runtime/package.json.j2",
}


class Project:
    """Represents an rns-managed project.

    A project is defined by its .rns/rn-init.json manifest.
    """

    def __init__(self, root: Path, manifest: ProjectManifest):
        """Initialize a Project.

        Args:
            root: Path to the project root directory
            manifest: Validated project manifest
        """
        self._root = root.resolve()
        self._manifest = manifest

    @classmethod
    def load(cls, path: Path | None = None, persist_migration: bool = True) -> "Project":
        """Load a project from disk.

        Args:
            path: Path to the project root, or None to search from cwd
            persist_migration: Write back a manifest migrated from an older schema

        Returns:
            Loaded Project instance

        Raises:
            ManifestNotFoundError: If no project is found
            ManifestValidationError: If the manifest is invalid
        """
        if path is None:
            found = find_project_root()
            if found is None:
                raise ManifestNotFoundError(Path.cwd() / STATE_DIR / ManifestStore.MANIFEST_FILE)
            path = found

        root = path.resolve()
        manifest = ManifestStore(root).read(persist_migration=persist_migration)
        return cls(root, manifest)

    @classmethod
    def init(
        cls,
        path: Path,
        name: str | None = None,
        target: Target = "expo",
        package_manager: PackageManager = "npm",
        language: Language = "ts",
        platforms: list[Platform] | None = None,
    ) -> "Project":
        """Initialize rns in a project directory.

        Creates the manifest, the runtime composition package with its marker
        regions, and declares the workspace in the host project.

        Args:
            path: Path to the project root directory
            name: Project name (defaults to the directory name)
            target: Project target
            package_manager: Package manager used by the project
            language: Source language of the application
            platforms: Platforms the project builds for

        Returns:
            New Project instance

        Raises:
            FileExistsError: If the project is already initialized
        """
        root = path.resolve()
        store = ManifestStore(root)
        if store.exists():
            raise FileExistsError(f"Project already initialized: {store.manifest_path}")

        name = name or root.name
        ctx = PipelineContext(root)
        engine = TemplateEngine()
        context = {"project_name": name, "version": __version__}

        for dest, template in RUNTIME_TEMPLATES.items():
            target_path = root / dest
            if target_path.exists():
                logger.info("Keeping existing %s", dest)
                continue
            ctx.write_text(target_path, engine.render_template(template, context), tag="init")

        host = root / HOST_PACKAGE_JSON
        if package_manager != "pnpm" and not host.exists():
            data = {"name": name, "version": "0.1.0", "private": True, "workspaces": list(WORKSPACE_GLOBS)}
            ctx.write_text(host, json.dumps(data, indent=2) + "\n", tag="init")
        else:
            ensure_workspaces(ctx, package_manager, tag="init")

        fields = {"language": language}
        if platforms is not None:
            fields["platforms"] = platforms
        manifest = store.create(name, target=target, package_manager=package_manager, **fields)
        logger.info("Initialized %s at %s", name, root)
        return cls(root, manifest)

    @property
    def root(self) -> Path:
        """Get the project root directory."""
        return self._root

    @property
    def manifest(self) -> ProjectManifest:
        """Get the project manifest."""
        return self._manifest

    @property
    def store(self) -> ManifestStore:
        return ManifestStore(self._root)

    @property
    def name(self) -> str:
        return self._manifest.identity.name

    def reload(self) -> ProjectManifest:
        """Re-read the manifest from disk."""
        self._manifest = self.store.read()
        return self._manifest

    def save(self, manifest: ProjectManifest | None = None) -> None:
        """Persist the manifest (the given one replaces the current)."""
        if manifest is not None:
            self._manifest = manifest
        self.store.write(self._manifest)
