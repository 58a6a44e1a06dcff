"""Marker-bounded text injection.

A lighter sibling of the structural patcher for plain content blocks that do
not need syntax-tree handling. Every injected block is preceded by its own
fingerprint line.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from rns.config.schemas import MarkerPatch, OperationAction
from rns.core.context import PipelineContext
from rns.core.errors import RnsError
from rns.utils.ledger import assert_managed, has_record_in_content, make_record
from rns.utils.markers import read_source, validate_marker_content

logger = logging.getLogger("rns.text_patcher")


@dataclass
class MarkerPatchResult:
    """Outcome of one text patch."""

    file: str
    marker_type: str
    capability_id: str
    operation_id: str
    action: OperationAction
    error: str | None = None
    backup_path: Path | None = None
    warning: str | None = None

    @property
    def success(self) -> bool:
        return self.action != "error"


def render_patch(content: str, patch: MarkerPatch) -> str | None:
    """Apply a text patch to file content.

    Args:
        content: Current file content
        patch: Patch to apply

    Returns:
        Updated content, or None if the marker region is missing or malformed
    """
    validation = validate_marker_content(content, patch.marker, patch.file)
    region = validation.region
    if not validation.valid or region is None:
        return None

    lines = content.split("\n")
    indent = region.indent
    block = [f"{indent}{make_record(patch.fingerprint_id, jsx=region.jsx)}"]
    block.extend(f"{indent}{line}" if line.strip() else line for line in patch.content.strip("\n").split("\n"))

    if patch.mode == "append":
        lines[region.end_line - 1 : region.end_line - 1] = block
    elif patch.mode == "prepend":
        lines[region.start_line : region.start_line] = block
    else:
        lines[region.start_line : region.end_line - 1] = block
    return "\n".join(lines)


def patch_marker(ctx: PipelineContext, patch: MarkerPatch) -> MarkerPatchResult:
    """Inject a text block into a marker region.

    Args:
        ctx: Pipeline context (dry-run mode never writes)
        patch: Patch to apply

    Returns:
        MarkerPatchResult with action injected, skipped or error
    """

    def result(action: OperationAction, **kwargs: object) -> MarkerPatchResult:
        return MarkerPatchResult(
            file=patch.file,
            marker_type=patch.marker,
            capability_id=patch.capability_id,
            operation_id=patch.fingerprint_id,
            action=action,
            **kwargs,  # type: ignore[arg-type]
        )

    try:
        assert_managed(ctx.project_root, patch.file)
    except RnsError as e:
        return result("error", error=str(e))

    path = ctx.resolve(patch.file)
    if not path.exists():
        return result("error", error=f"File not found: {patch.file}")

    try:
        content = read_source(path, patch.file)
    except (RnsError, OSError) as e:
        return result("error", error=str(e))
    validation = validate_marker_content(content, patch.marker, patch.file)
    if not validation.valid:
        if not validation.required:
            return result("skipped", warning=validation.error)
        return result("error", error=validation.message)

    if has_record_in_content(content, patch.fingerprint_id):
        return result("skipped")

    updated = render_patch(content, patch)
    if updated is None or updated == content:
        return result("skipped")

    if ctx.dry_run:
        return result("injected")

    try:
        backup_path = ctx.write_text(path, updated, tag=patch.capability_id or "text-patch")
    except RnsError as e:
        return result("error", error=str(e))

    logger.info("Patched %s region in %s (%s)", patch.marker, patch.file, patch.mode)
    return result("injected", backup_path=backup_path)


def patch_markers(ctx: PipelineContext, patches: Iterable[MarkerPatch]) -> list[MarkerPatchResult]:
    """Apply text patches in caller order.

    A failed patch produces an error result and the batch continues.
    """
    return [patch_marker(ctx, patch) for patch in patches]
