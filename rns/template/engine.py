"""Jinja2 template engine wrapper for rns."""

from pathlib import Path
from typing import Any

from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

TEMPLATE_SUFFIX = ".j2"


class TemplateRenderError(Exception):
    """Error rendering a template."""

    def __init__(self, message: str, source: str | None = None, line: int | None = None):
        self.source = source
        self.line = line
        super().__init__(message)


class TemplateEngine:
    """Jinja2-based template engine.

    Renders the runtime composition files shipped with rns (from the
    ``rns/templates`` package directory) and ``*.j2`` files inside capability
    packs. Undefined variables are errors, so a pack cannot silently render
    an empty identifier into generated source.
    """

    def __init__(self) -> None:
        self._env = Environment(
            loader=PackageLoader("rns", "templates"),
            autoescape=False,  # generated source, not HTML
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self._env.filters["pascal_case"] = pascal_case

    def render_template(self, name: str, context: dict[str, Any]) -> str:
        """Render a template bundled with rns.

        Args:
            name: Template path inside rns/templates (e.g. "runtime/index.tsx.j2")
            context: Context dictionary for variable substitution

        Raises:
            TemplateRenderError: If the template is missing or rendering fails
        """
        try:
            template = self._env.get_template(name)
        except TemplateNotFound as e:
            raise TemplateRenderError(f"Template not found: {name}", source=name) from e
        except TemplateSyntaxError as e:
            raise TemplateRenderError(
                f"Template syntax error in {name}: {e.message}", source=name, line=e.lineno
            ) from e
        return self._render(template.render, context, name)

    def render_string(self, template_str: str, context: dict[str, Any]) -> str:
        """Render a template string.

        Raises:
            TemplateRenderError: If rendering fails
        """
        try:
            template = self._env.from_string(template_str)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(
                f"Template syntax error: {e.message}",
                source=template_str[:100],
                line=e.lineno,
            ) from e
        return self._render(template.render, context, template_str[:100])

    def render_file(self, path: Path, context: dict[str, Any]) -> str:
        """Render a template file from disk (a capability pack file).

        Raises:
            FileNotFoundError: If the file doesn't exist
            TemplateRenderError: If rendering fails
        """
        if not path.exists():
            raise FileNotFoundError(f"Template file not found: {path}")

        try:
            return self.render_string(path.read_text(encoding="utf-8"), context)
        except UnicodeDecodeError as e:
            raise TemplateRenderError(f"Template {path} is not valid UTF-8", source=str(path)) from e
        except TemplateRenderError as e:
            raise TemplateRenderError(f"Error rendering {path}: {e}", source=str(path), line=e.line) from e

    @staticmethod
    def _render(render: Any, context: dict[str, Any], source: str) -> str:
        try:
            result: str = render(context)
            return result
        except UndefinedError as e:
            raise TemplateRenderError(f"Undefined variable in template: {e}", source=source) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Template error: {e}", source=source) from e


def pascal_case(value: str) -> str:
    """Turn ``auth.firebase`` or ``my-app`` into ``AuthFirebase`` / ``MyApp``."""
    parts = [p for p in value.replace(".", "-").replace("_", "-").split("-") if p]
    return "".join(p[:1].upper() + p[1:] for p in parts)
