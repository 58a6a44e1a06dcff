"""Idempotency records and ownership zones.

Each applied operation leaves a fingerprint comment next to the content it
injected. The fingerprint is a pure function of the operation id, so a second
run can detect the earlier one and skip it.

Record Format:
    // @rns-inject:{operation-id}
    {/* @rns-inject:{operation-id} */}     (inside JSX)
"""

from __future__ import annotations

import fnmatch
import re
from collections import Counter
from pathlib import Path, PurePosixPath

from rns.core.errors import ValidationError
from rns.utils.markers import MARKER_NAMESPACE, MarkerRegion, read_source

SYSTEM_ZONE = ("packages/@rns/**", ".rns/**")
USER_ZONE = ("src/**", "assets/**")

_RECORD_PATTERN = re.compile(rf"@{MARKER_NAMESPACE}-inject:(?P<id>[^\s*]+)")


def make_record(operation_id: str, jsx: bool = False) -> str:
    """Create the fingerprint comment for an operation.

    Args:
        operation_id: Deterministic operation id
        jsx: Use the JSX comment form

    Returns:
        Comment text (without indentation)
    """
    body = f"@{MARKER_NAMESPACE}-inject:{operation_id}"
    if jsx:
        return f"{{/* {body} */}}"
    return f"// {body}"


def list_records(content: str) -> list[str]:
    """List operation ids recorded in content, in file order."""
    return [m.group("id") for m in _RECORD_PATTERN.finditer(content)]


def has_record_in_content(content: str, operation_id: str) -> bool:
    """Check content for an exact fingerprint match.

    Matching is exact: ``a-imports`` does not match ``a-imports-import``.
    """
    return operation_id in list_records(content)


def has_record(path: Path, operation_id: str) -> bool:
    """Check whether a file carries the fingerprint for an operation.

    Args:
        path: File to scan
        operation_id: Operation id to look for

    Returns:
        True if the fingerprint is present, False otherwise or if the file is missing
    """
    if not path.exists():
        return False
    return has_record_in_content(read_source(path), operation_id)


def find_duplicate_records(content: str) -> list[str]:
    """Operation ids recorded more than once."""
    counts = Counter(list_records(content))
    return sorted(op_id for op_id, count in counts.items() if count > 1)


def insert_record(content: str, operation_id: str, region: MarkerRegion) -> str:
    """Insert a fingerprint line immediately before a region's end sentinel.

    Args:
        content: File content
        operation_id: Operation id to record
        region: Region the record belongs to

    Returns:
        Updated content (unchanged if the record already exists)
    """
    if has_record_in_content(content, operation_id):
        return content
    lines = content.split("\n")
    indent = region.content_indent([line.rstrip("\r") for line in lines])
    lines.insert(region.end_line - 1, f"{indent}{make_record(operation_id, jsx=region.jsx)}")
    return "\n".join(lines)


def write_record(path: Path, operation_id: str, region: MarkerRegion | None = None) -> bool:
    """Persist a fingerprint for an operation.

    The record goes before the region's end sentinel when a region is given,
    otherwise at the end of the file.

    Returns:
        True if the file changed
    """
    content = read_source(path)
    if has_record_in_content(content, operation_id):
        return False
    if region is not None:
        updated = insert_record(content, operation_id, region)
    else:
        separator = "" if not content or content.endswith("\n") else "\n"
        updated = f"{content}{separator}{make_record(operation_id)}\n"
    path.write_text(updated, encoding="utf-8")
    return True


# =============================================================================
# Ownership Zones
# =============================================================================


def relative_posix(project_root: Path, path: Path | str) -> str | None:
    """Express a path relative to the project root in POSIX form.

    Returns:
        The relative path, or None if the path lies outside the project
    """
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = project_root / candidate
    try:
        rel = candidate.resolve().relative_to(project_root.resolve())
    except ValueError:
        return None
    return PurePosixPath(rel).as_posix()


def _in_zone(project_root: Path, path: Path | str, zone: tuple[str, ...]) -> bool:
    rel = relative_posix(project_root, path)
    if rel is None:
        return False
    return any(fnmatch.fnmatchcase(rel, pattern) for pattern in zone)


def is_managed_path(project_root: Path, path: Path | str) -> bool:
    """Check whether a path is inside the engine-owned (system) zone."""
    return _in_zone(project_root, path, SYSTEM_ZONE)


def is_user_path(project_root: Path, path: Path | str) -> bool:
    """Check whether a path is inside the user-owned zone."""
    return _in_zone(project_root, path, USER_ZONE)


def assert_managed(project_root: Path, path: Path | str) -> None:
    """Refuse wiring targets outside the system zone.

    Raises:
        ValidationError: If the path is not in the system zone
    """
    if not is_managed_path(project_root, path):
        raise ValidationError(
            f"Runtime wiring only allowed in SYSTEM ZONE (packages/@rns/**): {path}"
        )


def assert_not_user_owned(project_root: Path, path: Path | str) -> None:
    """Refuse mutation of user-owned code or paths outside the project.

    Raises:
        ValidationError: If the path is user-owned or outside the project
    """
    if relative_posix(project_root, path) is None:
        raise ValidationError(f"Path is outside the project: {path}")
    if is_user_path(project_root, path):
        raise ValidationError(f"Refusing to modify user-owned path (src/**, assets/**): {path}")
