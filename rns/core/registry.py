"""Capability catalog on the local file system.

A catalog is a directory of capability packs, each with a plugin.json
descriptor and an optional ``files/`` tree copied into the project at install:

    catalog/
        auth-firebase/
            plugin.json
            files/
                package.json.j2
                src/index.ts
"""

from __future__ import annotations

import logging
from pathlib import Path

from rns.config.parser import DESCRIPTOR_FILE, ConfigError, load_descriptor
from rns.config.schemas import CapabilityDescriptor
from rns.core.errors import UnknownCapabilityError

logger = logging.getLogger("rns.registry")

PACK_FILES_DIR = "files"


class PluginRegistry:
    """Loads capability descriptors from a catalog directory.

    Descriptors are read once, on first access.
    """

    def __init__(self, catalog_dir: Path | None) -> None:
        """Initialize the registry.

        Args:
            catalog_dir: Catalog directory, or None for an empty catalog
        """
        self.catalog_dir = catalog_dir
        self._descriptors: dict[str, CapabilityDescriptor] | None = None
        self._pack_dirs: dict[str, Path] = {}
        self.errors: list[str] = []

        logger.info("Using plugin catalog %s", catalog_dir or "<none>")

    def _load(self) -> dict[str, CapabilityDescriptor]:
        if self._descriptors is not None:
            return self._descriptors

        self._descriptors = {}
        if self.catalog_dir is None:
            return self._descriptors
        if not self.catalog_dir.is_dir():
            raise ConfigError(f"Plugin catalog not found: {self.catalog_dir}", self.catalog_dir)

        for pack_dir in sorted(self.catalog_dir.iterdir()):
            if not (pack_dir / DESCRIPTOR_FILE).is_file():
                continue
            try:
                descriptor = load_descriptor(pack_dir)
            except ConfigError as e:
                logger.warning("Skipping %s: %s", pack_dir.name, e)
                self.errors.append(str(e))
                continue

            if descriptor.id in self._descriptors:
                raise ConfigError(
                    f"Duplicate plugin id '{descriptor.id}' in {pack_dir} and "
                    f"{self._pack_dirs[descriptor.id]}",
                    pack_dir,
                )
            self._descriptors[descriptor.id] = descriptor
            self._pack_dirs[descriptor.id] = pack_dir
            logger.debug("Loaded plugin %s from %s", descriptor.id, pack_dir)

        return self._descriptors

    def list(self) -> list[CapabilityDescriptor]:
        """All descriptors in the catalog, sorted by id."""
        return [self._load()[cap_id] for cap_id in sorted(self._load())]

    def has(self, capability_id: str) -> bool:
        return capability_id in self._load()

    def get(self, capability_id: str) -> CapabilityDescriptor:
        """Get a descriptor by id.

        Raises:
            UnknownCapabilityError: If the id is not in the catalog
        """
        descriptor = self._load().get(capability_id)
        if descriptor is None:
            raise UnknownCapabilityError(capability_id)
        return descriptor

    def pack_dir(self, capability_id: str) -> Path:
        """Directory holding a capability's descriptor and files."""
        self.get(capability_id)
        return self._pack_dirs[capability_id]

    def pack_files_dir(self, capability_id: str) -> Path:
        return self.pack_dir(capability_id) / PACK_FILES_DIR
