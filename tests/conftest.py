"""Shared fixtures for rns tests."""

import json
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from rns.config.schemas import RnsSettings
from rns.core.modulator import Modulator
from rns.core.project import Project
from rns.core.registry import PluginRegistry


def write_pack(catalog: Path, descriptor: dict[str, Any], files: dict[str, str] | None = None) -> Path:
    """Write a capability pack (plugin.json plus files/) into a catalog."""
    pack_dir = catalog / descriptor["id"].replace(".", "-")
    pack_dir.mkdir(parents=True, exist_ok=True)
    (pack_dir / "plugin.json").write_text(json.dumps(descriptor, indent=2))
    for rel, content in (files or {}).items():
        path = pack_dir / "files" / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return pack_dir


AUTH_FIREBASE = {
    "id": "auth.firebase",
    "name": "Firebase Auth",
    "version": "1.2.0",
    "category": "auth",
    "slots": [{"slot": "auth", "mode": "single"}],
    "dependencies": {"runtime": {"firebase": "^10.0.0"}},
    "runtime": [
        {
            "contribution": {
                "type": "provider",
                "symbol": "AuthProvider",
                "source": "@rns/plugin-auth-firebase",
            },
            "order": 20,
        },
        {
            "contribution": {
                "type": "init-step",
                "step": {"kind": "call", "symbol": "initAuth", "source": "@rns/plugin-auth-firebase"},
            }
        },
    ],
    "permissions": [{"id": "camera", "mandatory": False}],
}

AUTH_SUPABASE = {
    "id": "auth.supabase",
    "version": "1.0.0",
    "category": "auth",
    "slots": [{"slot": "auth", "mode": "single"}],
    "runtime": [
        {
            "contribution": {
                "type": "provider",
                "symbol": "SupabaseProvider",
                "source": "@rns/plugin-auth-supabase",
            }
        }
    ],
}

THEME = {
    "id": "theme",
    "version": "1.0.0",
    "runtime": [
        {
            "contribution": {
                "type": "import",
                "imports": [{"symbol": "ThemeProvider", "source": "@rns/plugin-theme"}],
            },
            "order": 10,
        },
        {
            "contribution": {"type": "provider", "symbol": "ThemeProvider", "props": {"mode": "dark"}},
            "order": 10,
        },
    ],
}

ANALYTICS = {
    "id": "analytics",
    "version": "0.3.0",
    "requires": {"theme": "^1.0.0"},
    "runtime": [
        {
            "contribution": {
                "type": "registration",
                "step": {
                    "kind": "call",
                    "symbol": "registerAnalytics",
                    "args": ["app"],
                    "source": "@rns/plugin-analytics",
                },
            }
        }
    ],
    "permissions": [{"id": "camera", "mandatory": True}],
}

NAVIGATION = {
    "id": "navigation",
    "version": "2.0.0",
    "runtime": [
        {
            "contribution": {
                "type": "root",
                "symbol": "AppNavigator",
                "source": "@rns/plugin-navigation",
            }
        }
    ],
    "patches": [
        {
            "type": "expo-config",
            "id": "scheme",
            "path": "expo.scheme",
            "action": "set",
            "value": "myapp",
        }
    ],
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="rns_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def temp_project(temp_dir: Path) -> Path:
    """Create a temporary project directory."""
    project_dir = temp_dir / "test-app"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def initialized_project(temp_project: Path) -> Project:
    """Project with the manifest and runtime package initialized."""
    (temp_project / "app.json").write_text(json.dumps({"expo": {"name": "test-app"}}, indent=2) + "\n")
    return Project.init(temp_project, name="test-app")


@pytest.fixture
def catalog(temp_dir: Path) -> Path:
    """Catalog with a handful of capability packs."""
    catalog_dir = temp_dir / "catalog"
    write_pack(
        catalog_dir,
        AUTH_FIREBASE,
        {
            "index.ts": "export { AuthProvider } from './provider';\nexport function initAuth() {}\n",
            "README.md.j2": "# {{ plugin.name }} for {{ project_name }}\n",
        },
    )
    write_pack(catalog_dir, AUTH_SUPABASE)
    write_pack(catalog_dir, THEME)
    write_pack(catalog_dir, ANALYTICS)
    write_pack(catalog_dir, NAVIGATION)
    return catalog_dir


@pytest.fixture
def registry(catalog: Path) -> PluginRegistry:
    """Registry over the sample catalog."""
    return PluginRegistry(catalog)


@pytest.fixture
def modulator(initialized_project: Project, registry: PluginRegistry) -> Modulator:
    """Modulator for the initialized project that never runs a package manager."""
    settings = RnsSettings(install_dependencies=False)
    return Modulator(initialized_project, registry, settings)


@pytest.fixture
def add_pack(catalog: Path):
    """Add a pack to the sample catalog and return a fresh registry over it."""

    def add(descriptor: dict[str, Any], files: dict[str, str] | None = None) -> PluginRegistry:
        write_pack(catalog, descriptor, files)
        return PluginRegistry(catalog)

    return add
