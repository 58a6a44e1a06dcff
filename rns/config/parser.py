"""Configuration file parsing utilities."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rns.config.schemas import CapabilityDescriptor, RnsSettings
from rns.core.errors import ValidationError as RnsValidationError

STATE_DIR = ".rns"
MANIFEST_FILE = "rn-init.json"
SETTINGS_FILE = "config.yaml"
DESCRIPTOR_FILE = "plugin.json"
CATALOG_ENV_VAR = "RNS_CATALOG_DIR"


class ConfigError(RnsValidationError):
    """Error loading or parsing configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def load_json(path: Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed JSON as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if not isinstance(result, dict):
        raise ConfigError(f"JSON file must contain an object: {path}", path)
    return result


def save_json(path: Path, data: dict[str, Any], indent: int = 2) -> None:
    """Save data to a JSON file.

    The file is written to a temporary sibling and moved into place, so a
    killed process never leaves a half-written file behind.

    Args:
        path: Path to write to
        data: Data to serialize
        indent: JSON indentation level
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, default=str)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = yaml.safe_load(f)
            if result is None:
                return {}
            if not isinstance(result, dict):
                raise ConfigError(f"YAML file must contain a mapping: {path}", path)
            return result
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e


def save_yaml(path: Path, data: dict[str, Any]) -> None:
    """Save data to a YAML file.

    Args:
        path: Path to write to
        data: Data to serialize
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def load_descriptor(plugin_path: Path) -> CapabilityDescriptor:
    """Load a capability descriptor from plugin.json.

    Args:
        plugin_path: Path to the capability pack directory

    Returns:
        Parsed CapabilityDescriptor

    Raises:
        ConfigError: If the file is missing or invalid
    """
    descriptor_path = plugin_path / DESCRIPTOR_FILE
    data = load_json(descriptor_path)

    try:
        return CapabilityDescriptor.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid plugin descriptor: {e}", descriptor_path) from e


def load_settings(project_root: Path | None, overrides: dict[str, Any] | None = None) -> RnsSettings:
    """Resolve CLI settings.

    Precedence, lowest first: .rns/config.yaml, environment, explicit overrides.

    Args:
        project_root: Project root, or None when outside a project
        overrides: Values from command-line flags (None values are ignored)

    Returns:
        Resolved RnsSettings

    Raises:
        ConfigError: If the settings file is invalid
    """
    data: dict[str, Any] = {}
    settings_path = None
    if project_root is not None:
        settings_path = project_root / STATE_DIR / SETTINGS_FILE
        if settings_path.exists():
            data.update(load_yaml(settings_path))

    catalog_env = os.environ.get(CATALOG_ENV_VAR)
    if catalog_env:
        data["catalog_dir"] = catalog_env

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return RnsSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}", settings_path) from e


def find_project_root(start_path: Path | None = None) -> Path | None:
    """Find the project root by looking for the .rns manifest.

    Args:
        start_path: Directory to start searching from (defaults to cwd)

    Returns:
        Path to project root, or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    while current != current.parent:
        if (current / STATE_DIR / MANIFEST_FILE).exists():
            return current
        current = current.parent

    if (current / STATE_DIR / MANIFEST_FILE).exists():
        return current

    return None
