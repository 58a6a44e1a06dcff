"""Marker contract for generated runtime files.

Wiring contributions land inside marker regions: a start sentinel line and an
end sentinel line sharing a marker type. The engine only ever writes between
sentinels, so user-visible structure of the file is preserved.

Marker Format:
    // @rns-marker:{type}:start
    ... managed content ...
    // @rns-marker:{type}:end

Inside JSX the comment form is used instead:
    {/* @rns-marker:{type}:start */}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from rns.config.schemas import MARKER_TYPES, MarkerType
from rns.core.errors import MarkerError, ValidationError

MARKER_NAMESPACE = "rns"

RUNTIME_DIR = "packages/@rns/runtime"
RUNTIME_INDEX = f"{RUNTIME_DIR}/index.tsx"
RUNTIME_CORE_INIT = f"{RUNTIME_DIR}/core-init.ts"

_SENTINEL_PATTERN = re.compile(
    r"^(?P<indent>[ \t]*)(?P<open>//|/\*|\{/\*)[ \t]*"
    rf"@{MARKER_NAMESPACE}-marker:(?P<type>[A-Za-z0-9_-]+):(?P<tag>start|end)"
    r"[ \t]*(?:\*/[ \t]*\}?)?[ \t]*$"
)


@dataclass(frozen=True)
class MarkerSpec:
    """Contract entry for a marker type."""

    type: MarkerType
    default_file: str
    description: str
    required: bool


CANONICAL_MARKERS: dict[MarkerType, MarkerSpec] = {
    "imports": MarkerSpec(
        type="imports",
        default_file=RUNTIME_INDEX,
        description="Import statements contributed by plugins",
        required=True,
    ),
    "providers": MarkerSpec(
        type="providers",
        default_file=RUNTIME_INDEX,
        description="Provider components wrapping the application tree",
        required=True,
    ),
    "root": MarkerSpec(
        type="root",
        default_file=RUNTIME_INDEX,
        description="Root component mounted by the runtime",
        required=True,
    ),
    "init-steps": MarkerSpec(
        type="init-steps",
        default_file=RUNTIME_CORE_INIT,
        description="Initialization calls run at application boot",
        required=True,
    ),
    "registrations": MarkerSpec(
        type="registrations",
        default_file=RUNTIME_CORE_INIT,
        description="Registration calls for plugin services",
        required=False,
    ),
}


def is_marker_type(value: str) -> bool:
    """Check whether a string names a canonical marker type."""
    return value in MARKER_TYPES


def make_start_marker(marker_type: str, jsx: bool = False) -> str:
    """Create the start sentinel for a marker type.

    Args:
        marker_type: Marker type tag
        jsx: Use the JSX comment form

    Returns:
        Sentinel comment text (without indentation)
    """
    return _sentinel(marker_type, "start", jsx)


def make_end_marker(marker_type: str, jsx: bool = False) -> str:
    """Create the end sentinel for a marker type."""
    return _sentinel(marker_type, "end", jsx)


def _sentinel(marker_type: str, tag: str, jsx: bool) -> str:
    body = f"@{MARKER_NAMESPACE}-marker:{marker_type}:{tag}"
    if jsx:
        return f"{{/* {body} */}}"
    return f"// {body}"


@dataclass
class Sentinel:
    """A sentinel line found in a file."""

    line: int  # 1-based
    marker_type: str
    tag: str
    indent: str
    jsx: bool


@dataclass
class MarkerRegion:
    """A well-formed marker region within a file.

    Line numbers are 1-based and refer to the sentinel lines themselves.
    """

    marker_type: str
    start_line: int
    end_line: int
    indent: str
    jsx: bool

    def inner_lines(self, lines: list[str]) -> list[str]:
        """Lines strictly between the sentinels."""
        return lines[self.start_line : self.end_line - 1]

    def content_indent(self, lines: list[str]) -> str:
        """Indentation used for content inside the region.

        Taken from the first non-blank inner line, falling back to the
        sentinel's own indentation.
        """
        for line in self.inner_lines(lines):
            if line.strip():
                return line[: len(line) - len(line.lstrip())]
        return self.indent


def scan_sentinels(content: str) -> list[Sentinel]:
    """Find every sentinel line in file content.

    Args:
        content: The full file content

    Returns:
        Sentinels in file order
    """
    sentinels = []
    for index, line in enumerate(content.split("\n"), start=1):
        match = _SENTINEL_PATTERN.match(line.rstrip("\r"))
        if match is None:
            continue
        sentinels.append(
            Sentinel(
                line=index,
                marker_type=match.group("type"),
                tag=match.group("tag"),
                indent=match.group("indent"),
                jsx=match.group("open") == "{/*",
            )
        )
    return sentinels


def find_marker(content: str, marker_type: str) -> MarkerRegion | None:
    """Find a marker region in file content.

    Args:
        content: The full file content
        marker_type: Marker type to find

    Returns:
        MarkerRegion if a start sentinel is followed by an end sentinel,
        None otherwise
    """
    start: Sentinel | None = None
    for sentinel in scan_sentinels(content):
        if sentinel.marker_type != marker_type:
            continue
        if sentinel.tag == "start" and start is None:
            start = sentinel
        elif sentinel.tag == "end" and start is not None:
            return MarkerRegion(
                marker_type=marker_type,
                start_line=start.line,
                end_line=sentinel.line,
                indent=start.indent,
                jsx=start.jsx,
            )
    return None


def list_markers(content: str) -> list[str]:
    """List marker types that have a well-formed region in the content."""
    types = []
    for sentinel in scan_sentinels(content):
        if sentinel.tag == "start" and sentinel.marker_type not in types:
            if find_marker(content, sentinel.marker_type) is not None:
                types.append(sentinel.marker_type)
    return types


@dataclass
class MarkerValidation:
    """Outcome of validating one marker in one file."""

    marker_type: str
    file: str
    valid: bool
    required: bool = True
    error: str | None = None
    region: MarkerRegion | None = None

    @property
    def message(self) -> str:
        """Error message with restoration instructions."""
        if self.valid:
            return ""
        return format_marker_error(self)


def validate_marker_content(content: str, marker_type: str, file: str) -> MarkerValidation:
    """Validate a marker region within already-loaded content.

    Args:
        content: File content
        marker_type: Marker type expected
        file: File path used in messages (relative to project root)

    Returns:
        MarkerValidation describing the result
    """
    if not is_marker_type(marker_type):
        return MarkerValidation(
            marker_type, file, valid=False, error=f"Unknown marker type: {marker_type}"
        )

    required = CANONICAL_MARKERS[marker_type].required  # type: ignore[index]
    matching = [s for s in scan_sentinels(content) if s.marker_type == marker_type]
    starts = [s for s in matching if s.tag == "start"]
    ends = [s for s in matching if s.tag == "end"]

    if not starts and not ends:
        label = "Required marker" if required else "Optional marker"
        return MarkerValidation(
            marker_type,
            file,
            valid=False,
            required=required,
            error=f'{label} "@{MARKER_NAMESPACE}-marker:{marker_type}" not found in {file}',
        )

    error = None
    if len(starts) > 1 or len(ends) > 1:
        error = f"Malformed marker: more than one {marker_type} region in {file}"
    elif not starts:
        error = f"Malformed marker: {marker_type} end sentinel has no start in {file}"
    elif not ends:
        error = f"Malformed marker: {marker_type} start sentinel has no end in {file}"
    elif ends[0].line < starts[0].line:
        error = f"Malformed marker: {marker_type} end sentinel precedes start in {file}"

    if error is not None:
        # A malformed region is never silently skipped, even for optional markers
        return MarkerValidation(marker_type, file, valid=False, required=True, error=error)

    region = find_marker(content, marker_type)
    return MarkerValidation(marker_type, file, valid=True, required=required, region=region)


def read_source(path: Path, file: str | None = None) -> str:
    """Read a managed file as UTF-8.

    Raises:
        ValidationError: If the file is not valid UTF-8
    """
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(f"{file or path} is not valid UTF-8 (byte {e.start}): refusing to edit it") from e


def validate_marker(project_root: Path, file: str, marker_type: str) -> MarkerValidation:
    """Validate that a file contains a well-formed region for a marker type.

    Args:
        project_root: Project root directory
        file: File path relative to the project root
        marker_type: Marker type expected

    Returns:
        MarkerValidation describing the result
    """
    path = project_root / file
    if not path.exists():
        return MarkerValidation(marker_type, file, valid=False, error=f"File not found: {file}")
    return validate_marker_content(read_source(path, file), marker_type, file)


def require_marker(project_root: Path, file: str, marker_type: str) -> MarkerRegion:
    """Validate a marker and return its region.

    Raises:
        MarkerError: If the marker is missing or malformed
    """
    validation = validate_marker(project_root, file, marker_type)
    if not validation.valid or validation.region is None:
        raise MarkerError(validation.message)
    return validation.region


def format_marker_error(validation: MarkerValidation) -> str:
    """Render a marker validation failure with restoration instructions.

    Args:
        validation: Failed validation

    Returns:
        Multi-line message naming the sentinel pair to restore and where
    """
    lines = [f"Marker validation failed: {validation.error}", ""]
    spec = CANONICAL_MARKERS.get(validation.marker_type)  # type: ignore[call-overload]
    if spec is None:
        lines.append(f"Valid marker types: {', '.join(MARKER_TYPES)}")
        return "\n".join(lines)

    lines.extend(
        [
            f"Marker: @{MARKER_NAMESPACE}-marker:{spec.type}",
            f"File: {validation.file}",
            f"Description: {spec.description}",
            "",
            "To restore this marker:",
            f"1. Ensure the file exists at: {validation.file}",
            "2. Add the marker pair:",
            f"   {make_start_marker(spec.type)}",
            "   // ... your code here ...",
            f"   {make_end_marker(spec.type)}",
        ]
    )
    return "\n".join(lines)
