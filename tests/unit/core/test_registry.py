"""Tests for rns.core.registry module."""

import json
from pathlib import Path

import pytest

from rns.config.parser import ConfigError
from rns.core.errors import UnknownCapabilityError
from rns.core.registry import PluginRegistry

THEME = {"id": "theme", "version": "1.0.0"}


def write_pack(catalog: Path, name: str, descriptor: dict) -> None:
    pack = catalog / name
    pack.mkdir(parents=True)
    (pack / "plugin.json").write_text(json.dumps(descriptor))


class TestPluginRegistry:
    """Tests for PluginRegistry class."""

    def test_lists_sorted_by_id(self, registry: PluginRegistry):
        """Every pack in the catalog is listed, sorted by id."""
        ids = [d.id for d in registry.list()]
        assert ids == ["analytics", "auth.firebase", "auth.supabase", "navigation", "theme"]

    def test_get_and_pack_dirs(self, registry: PluginRegistry, catalog: Path):
        """Descriptors resolve to their pack directories."""
        assert registry.get("auth.firebase").name == "Firebase Auth"
        assert registry.pack_dir("auth.firebase") == catalog / "auth-firebase"
        assert registry.pack_files_dir("auth.firebase") == catalog / "auth-firebase" / "files"

    def test_unknown_id(self, registry: PluginRegistry):
        """Unknown ids raise UnknownCapabilityError."""
        assert not registry.has("payments")
        with pytest.raises(UnknownCapabilityError, match="Unknown plugin: payments"):
            registry.get("payments")

    def test_invalid_pack_skipped(self, temp_dir: Path):
        """Invalid descriptors are reported and skipped."""
        catalog = temp_dir / "catalog"
        write_pack(catalog, "theme", THEME)
        write_pack(catalog, "bad", {"id": "Not Valid"})

        registry = PluginRegistry(catalog)

        assert [d.id for d in registry.list()] == ["theme"]
        assert len(registry.errors) == 1

    def test_duplicate_ids(self, temp_dir: Path):
        """Two packs declaring the same id are a catalog error."""
        catalog = temp_dir / "catalog"
        write_pack(catalog, "theme", THEME)
        write_pack(catalog, "theme-copy", THEME)

        with pytest.raises(ConfigError, match="Duplicate plugin id 'theme'"):
            PluginRegistry(catalog).list()

    def test_missing_catalog(self, temp_dir: Path):
        """A catalog path that does not exist is a config error."""
        with pytest.raises(ConfigError, match="Plugin catalog not found"):
            PluginRegistry(temp_dir / "nowhere").list()

    def test_no_catalog(self):
        """Without a catalog the registry is empty."""
        assert PluginRegistry(None).list() == []
