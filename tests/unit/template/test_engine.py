"""Tests for rns.template.engine module."""

from pathlib import Path

import pytest

from rns.template.engine import TemplateEngine, TemplateRenderError, pascal_case


class TestRenderString:
    """Tests for TemplateEngine.render_string()."""

    def test_renders_variables(self):
        """Substitutes context variables."""
        engine = TemplateEngine()
        assert engine.render_string("export const name = '{{ name }}';", {"name": "app"}) == "export const name = 'app';"

    def test_no_html_escaping(self):
        """Generated source is never HTML-escaped."""
        engine = TemplateEngine()
        assert engine.render_string("{{ jsx }}", {"jsx": "<View />"}) == "<View />"

    def test_undefined_variable_is_error(self):
        """Undefined variables raise instead of rendering empty."""
        with pytest.raises(TemplateRenderError, match="Undefined variable"):
            TemplateEngine().render_string("{{ missing }}", {})

    def test_syntax_error(self):
        """Broken template syntax raises TemplateRenderError with a line."""
        with pytest.raises(TemplateRenderError, match="Template syntax error") as exc_info:
            TemplateEngine().render_string("{% if %}", {})
        assert exc_info.value.line == 1

    def test_pascal_case_filter(self):
        """The pascal_case filter is registered."""
        assert TemplateEngine().render_string("{{ id | pascal_case }}", {"id": "auth.firebase"}) == "AuthFirebase"


class TestRenderTemplate:
    """Tests for TemplateEngine.render_template()."""

    def test_bundled_runtime_template(self):
        """Bundled runtime templates render with the project name."""
        result = TemplateEngine().render_template("runtime/package.json.j2", {"version": "0.1.0"})
        assert '"name": "@rns/runtime"' in result
        assert result.endswith("\n")

    def test_missing_template(self):
        """A missing bundled template raises TemplateRenderError."""
        with pytest.raises(TemplateRenderError, match="Template not found"):
            TemplateEngine().render_template("runtime/missing.j2", {})


class TestRenderFile:
    """Tests for TemplateEngine.render_file()."""

    def test_renders_file(self, temp_dir: Path):
        """Renders a pack file from disk."""
        path = temp_dir / "README.md.j2"
        path.write_text("# {{ plugin.name }}\n")

        assert TemplateEngine().render_file(path, {"plugin": {"name": "Theme"}}) == "# Theme\n"

    def test_error_names_file(self, temp_dir: Path):
        """Render errors name the file."""
        path = temp_dir / "bad.j2"
        path.write_text("{{ nope }}")

        with pytest.raises(TemplateRenderError, match="bad.j2"):
            TemplateEngine().render_file(path, {})

    def test_missing_file(self, temp_dir: Path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            TemplateEngine().render_file(temp_dir / "missing.j2", {})


class TestPascalCase:
    """Tests for pascal_case function."""

    def test_separators(self):
        """Dots, dashes and underscores all split words."""
        assert pascal_case("my-app") == "MyApp"
        assert pascal_case("auth_firebase.v2") == "AuthFirebaseV2"
