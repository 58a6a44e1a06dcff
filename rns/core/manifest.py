"""Project manifest store.

The manifest records everything installed into a generated project: the
capabilities, their effects, aggregated permissions and the ownership ledger.
It is stored at .rns/rn-init.json in the project root and is the single source
of truth for what is installed.

``write`` is the only place the manifest file is produced, and it always
receives a complete ProjectManifest.
"""

import copy
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rns.config.parser import MANIFEST_FILE, STATE_DIR, ConfigError, load_json, save_json
from rns.config.schemas import (
    MANIFEST_SCHEMA_VERSION,
    PackageManager,
    ProjectIdentity,
    ProjectManifest,
    Target,
    utc_now,
)
from rns.core.backup import BackupStore
from rns.core.errors import ManifestNotFoundError, ManifestValidationError
from rns.utils.version import compare_versions

logger = logging.getLogger("rns.manifest")


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _migrate_1_0_0(data: dict[str, Any]) -> dict[str, Any]:
    """1.0.0 kept plugins as a list and permissions as flat id lists."""
    capabilities: dict[str, Any] = {}
    for plugin in _pick(data, "plugins", default=[]) or []:
        owned = list(_pick(plugin, "ownedFiles", "owned_files", default=[]) or [])
        owned += list(_pick(plugin, "ownedDirs", "owned_dirs", default=[]) or [])
        permissions = [
            {
                "id": _pick(p, "permissionId", "permission_id", "id"),
                "mandatory": bool(p.get("mandatory", True)),
            }
            for p in _pick(plugin, "permissions", default=[]) or []
        ]
        capabilities[plugin["id"]] = {
            "version": plugin.get("version", "0.0.0"),
            "installed_at": _pick(plugin, "installedAt", "installed_at", default=utc_now()),
            "updated_at": _pick(plugin, "updatedAt", "updated_at"),
            "config": _pick(plugin, "options", "config", default={}) or {},
            "effects": {"owned_files": owned},
            "permissions": permissions,
        }

    identity = _pick(data, "identity", default={}) or {}
    return {
        "schema_version": "2.0.0",
        "identity": {
            "name": identity.get("name", "app"),
            "display_name": _pick(identity, "displayName", "display_name"),
        },
        "target": data.get("target", "expo"),
        "language": data.get("language", "ts"),
        "package_manager": _pick(data, "packageManager", "package_manager", default="npm"),
        "capabilities": capabilities,
        "created_at": _pick(data, "createdAt", "created_at", default=utc_now()),
        "updated_at": _pick(data, "updatedAt", "updated_at", default=utc_now()),
    }


# from-version -> step producing the next version
MIGRATIONS = {
    "1.0.0": _migrate_1_0_0,
}


def _schema_version(data: dict[str, Any]) -> str:
    return str(_pick(data, "schema_version", "schemaVersion", default="1.0.0"))


def migrate(data: dict[str, Any]) -> dict[str, Any]:
    """Bring raw manifest data up to the current schema version.

    Args:
        data: Raw manifest data as loaded from disk

    Returns:
        Migrated copy of the data (the input is not modified)

    Raises:
        ValueError: If the version is newer than supported or has no migration path
    """
    data = copy.deepcopy(data)
    version = _schema_version(data)
    if compare_versions(version, MANIFEST_SCHEMA_VERSION) > 0:
        raise ValueError(
            f"Manifest schema {version} is newer than supported ({MANIFEST_SCHEMA_VERSION}); "
            "upgrade rns"
        )
    while version != MANIFEST_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"No migration from manifest schema {version}")
        logger.info("Migrating manifest schema %s", version)
        data = step(data)
        version = _schema_version(data)
    return data


def validate(data: dict[str, Any]) -> list[str]:
    """Validate raw manifest data against the current schema.

    Returns:
        Error messages (empty if valid)
    """
    try:
        ProjectManifest.model_validate(data)
    except ValidationError as e:
        return [
            f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
    return []


class ManifestStore:
    """Reads and writes the project manifest.

    The manifest is stored at .rns/rn-init.json in the project root.
    """

    MANIFEST_DIR = STATE_DIR
    MANIFEST_FILE = MANIFEST_FILE

    def __init__(self, project_root: Path) -> None:
        """Initialize the manifest store.

        Args:
            project_root: Path to the project root directory
        """
        self.project_root = project_root

    @property
    def manifest_dir(self) -> Path:
        """Get the manifest directory path."""
        return self.project_root / self.MANIFEST_DIR

    @property
    def manifest_path(self) -> Path:
        """Get the manifest file path."""
        return self.manifest_dir / self.MANIFEST_FILE

    def exists(self) -> bool:
        return self.manifest_path.exists()

    def read(
        self, backups: BackupStore | None = None, persist_migration: bool = True
    ) -> ProjectManifest:
        """Load, migrate and validate the manifest.

        A manifest on an older schema is migrated and persisted right away,
        after backing up the original.

        Args:
            backups: Backup store used before persisting a migration
            persist_migration: Write a migrated manifest back (False for dry runs)

        Returns:
            The validated manifest

        Raises:
            ManifestNotFoundError: If the manifest does not exist
            ManifestValidationError: If it cannot be parsed, migrated or validated
        """
        if not self.exists():
            raise ManifestNotFoundError(self.manifest_path)

        try:
            data = load_json(self.manifest_path)
        except ConfigError as e:
            raise ManifestValidationError(self.manifest_path, [str(e)]) from e

        original_version = _schema_version(data)
        try:
            data = migrate(data)
        except ValueError as e:
            raise ManifestValidationError(self.manifest_path, [str(e)]) from e

        errors = validate(data)
        if errors:
            raise ManifestValidationError(self.manifest_path, errors)

        manifest = ProjectManifest.model_validate(data)
        if original_version != MANIFEST_SCHEMA_VERSION:
            manifest.refresh()
        if original_version != MANIFEST_SCHEMA_VERSION and persist_migration:
            backups = backups or BackupStore(self.project_root)
            backups.backup(self.manifest_path, "manifest-migration")
            self.write(manifest)
            logger.info(
                "Migrated manifest from %s to %s", original_version, MANIFEST_SCHEMA_VERSION
            )
        return manifest

    def write(self, manifest: ProjectManifest) -> None:
        """Persist a complete manifest.

        Args:
            manifest: Fully-formed manifest (re-validated before writing)
        """
        manifest.updated_at = utc_now()
        data = manifest.model_dump(mode="json")
        errors = validate(data)
        if errors:
            raise ManifestValidationError(self.manifest_path, errors)
        save_json(self.manifest_path, data)
        logger.debug("Wrote manifest %s", self.manifest_path)

    def create(
        self,
        name: str,
        target: Target = "expo",
        package_manager: PackageManager = "npm",
        **fields: Any,
    ) -> ProjectManifest:
        """Create the manifest at project scaffold time.

        Raises:
            FileExistsError: If a manifest already exists
        """
        if self.exists():
            raise FileExistsError(f"Project already initialized: {self.manifest_path}")
        manifest = ProjectManifest(
            identity=ProjectIdentity(name=name),
            target=target,
            package_manager=package_manager,
            **fields,
        )
        self.write(manifest)
        return manifest
