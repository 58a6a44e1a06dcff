"""Tests for rns.config.parser module."""

import json
from pathlib import Path

import pytest

from rns.config.parser import (
    CATALOG_ENV_VAR,
    ConfigError,
    find_project_root,
    load_descriptor,
    load_json,
    load_settings,
    load_yaml,
    save_json,
    save_yaml,
)
from rns.core.errors import ExitCode


class TestLoadJson:
    """Tests for load_json function."""

    def test_loads_valid_json(self, temp_dir: Path):
        """Loads a JSON object."""
        path = temp_dir / "data.json"
        path.write_text('{"key": "value"}')

        assert load_json(path) == {"key": "value"}

    def test_raises_for_missing_file(self, temp_dir: Path):
        """Raises ConfigError for a missing file."""
        with pytest.raises(ConfigError, match="File not found"):
            load_json(temp_dir / "missing.json")

    def test_raises_for_invalid_json(self, temp_dir: Path):
        """Raises ConfigError for malformed JSON."""
        path = temp_dir / "bad.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_json(path)

    def test_raises_for_non_object(self, temp_dir: Path):
        """A top-level array is rejected."""
        path = temp_dir / "list.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigError, match="must contain an object"):
            load_json(path)

    def test_config_error_is_validation_failure(self, temp_dir: Path):
        """Config errors exit with the validation code."""
        with pytest.raises(ConfigError) as exc_info:
            load_json(temp_dir / "missing.json")
        assert exc_info.value.exit_code == ExitCode.VALIDATION_FAILURE


class TestSaveJson:
    """Tests for save_json function."""

    def test_writes_and_leaves_no_temp_files(self, temp_dir: Path):
        """Writes formatted JSON atomically."""
        path = temp_dir / "nested" / "out.json"
        save_json(path, {"a": 1})

        assert json.loads(path.read_text()) == {"a": 1}
        assert path.read_text().endswith("\n")
        assert [p.name for p in path.parent.iterdir()] == ["out.json"]


class TestYaml:
    """Tests for load_yaml and save_yaml functions."""

    def test_round_trip(self, temp_dir: Path):
        """Saved YAML loads back."""
        path = temp_dir / "config.yaml"
        save_yaml(path, {"packages": ["packages/*"]})

        assert load_yaml(path) == {"packages": ["packages/*"]}

    def test_empty_file_is_empty_mapping(self, temp_dir: Path):
        """An empty YAML file loads as an empty dict."""
        path = temp_dir / "empty.yaml"
        path.write_text("")

        assert load_yaml(path) == {}

    def test_non_mapping_rejected(self, temp_dir: Path):
        """A YAML list is rejected."""
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_yaml(path)


class TestLoadDescriptor:
    """Tests for load_descriptor function."""

    def test_loads_descriptor(self, temp_dir: Path):
        """Parses plugin.json into a descriptor."""
        (temp_dir / "plugin.json").write_text(json.dumps({"id": "auth.firebase", "version": "1.0.0"}))

        descriptor = load_descriptor(temp_dir)

        assert descriptor.id == "auth.firebase"
        assert descriptor.package_name == "@rns/plugin-auth-firebase"

    def test_invalid_descriptor(self, temp_dir: Path):
        """Schema violations raise ConfigError."""
        (temp_dir / "plugin.json").write_text(json.dumps({"id": "Not Valid"}))

        with pytest.raises(ConfigError, match="Invalid plugin descriptor"):
            load_descriptor(temp_dir)


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_defaults(self, monkeypatch):
        """Without a project, defaults apply."""
        monkeypatch.delenv(CATALOG_ENV_VAR, raising=False)
        settings = load_settings(None)

        assert settings.catalog_dir is None
        assert settings.install_dependencies is True

    def test_precedence(self, temp_dir: Path, monkeypatch):
        """Flags override the environment, which overrides config.yaml."""
        save_yaml(
            temp_dir / ".rns" / "config.yaml",
            {"catalog_dir": "/from/yaml", "package_manager_timeout": 30},
        )
        monkeypatch.setenv(CATALOG_ENV_VAR, "/from/env")

        settings = load_settings(temp_dir)
        assert settings.catalog_dir == "/from/env"
        assert settings.package_manager_timeout == 30

        settings = load_settings(temp_dir, {"catalog_dir": "/from/flag", "install_dependencies": None})
        assert settings.catalog_dir == "/from/flag"
        assert settings.install_dependencies is True

    def test_invalid_settings(self, temp_dir: Path, monkeypatch):
        """Invalid values raise ConfigError."""
        monkeypatch.delenv(CATALOG_ENV_VAR, raising=False)
        save_yaml(temp_dir / ".rns" / "config.yaml", {"package_manager_timeout": 0})

        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(temp_dir)


class TestFindProjectRoot:
    """Tests for find_project_root function."""

    def test_finds_from_subdirectory(self, temp_dir: Path):
        """Walks up to the directory holding .rns/rn-init.json."""
        (temp_dir / ".rns").mkdir()
        (temp_dir / ".rns" / "rn-init.json").write_text("{}")
        nested = temp_dir / "src" / "screens"
        nested.mkdir(parents=True)

        assert find_project_root(nested) == temp_dir.resolve()

    def test_returns_none_outside_project(self, temp_dir: Path):
        """Returns None when no manifest exists up the tree."""
        assert find_project_root(temp_dir) is None
