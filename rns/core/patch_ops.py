"""Declarative platform and config patch operations.

Patches edit native and config files the runtime wiring cannot reach
(app.json, Info.plist, entitlements, AndroidManifest.xml, Gradle and Podfile
scripts). Each operation is idempotent on its own:

- JSON config patches compare the resulting document with the current one
- text patches leave a tag comment next to the inserted block:
      <!-- @rns-patch:{capability}:{id} -->
      // @rns-patch:{capability}:{id}
      # @rns-patch:{capability}:{id}
"""

import copy
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any
from xml.sax.saxutils import escape

from rns.config.schemas import AnchorPatch, ExpoConfigPatch, OperationAction, PatchOp, PlistPatch
from rns.core.context import PipelineContext
from rns.core.errors import RnsError
from rns.utils.ledger import assert_not_user_owned
from rns.utils.markers import MARKER_NAMESPACE, read_source

logger = logging.getLogger("rns.patch_ops")

HASH_COMMENT_SUFFIXES = {".rb", ".yaml", ".yml", ".properties", ".sh", ".toml"}
XML_COMMENT_SUFFIXES = {".xml", ".plist", ".entitlements"}


@dataclass
class PatchResult:
    """Outcome of one patch operation."""

    patch_id: str
    type: str
    file: str
    action: OperationAction
    error: str | None = None
    backup_path: Path | None = None

    @property
    def success(self) -> bool:
        return self.action != "error"


class PatchError(RnsError):
    """A patch cannot be applied to the current file content."""


def patch_tag(patch_id: str, style: str) -> str:
    body = f"@{MARKER_NAMESPACE}-patch:{patch_id}"
    if style == "xml":
        return f"<!-- {body} -->"
    if style == "hash":
        return f"# {body}"
    return f"// {body}"


def comment_style(op: AnchorPatch) -> str:
    """Comment syntax for a patch's tag line."""
    if op.type == "android-manifest":
        return "xml"
    if op.type == "podfile":
        return "hash"
    if op.type == "gradle":
        return "slash"
    path = PurePosixPath(op.file)
    if path.name == "Podfile" or path.suffix in HASH_COMMENT_SUFFIXES:
        return "hash"
    if path.suffix in XML_COMMENT_SUFFIXES:
        return "xml"
    return "slash"


# =============================================================================
# JSON config
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def apply_json_patch(data: dict[str, Any], op: ExpoConfigPatch) -> dict[str, Any]:
    """Return a copy of a JSON document with the patch applied.

    Raises:
        PatchError: If the path crosses a non-object value or the value type
            does not fit the action
    """
    result = copy.deepcopy(data)
    keys = [k for k in op.path.split(".") if k]
    if not keys:
        raise PatchError(f"Empty JSON path in patch {op.id}")

    parent = result
    for key in keys[:-1]:
        child = parent.setdefault(key, {})
        if not isinstance(child, dict):
            raise PatchError(f"Cannot descend into '{key}' at {op.path}: not an object")
        parent = child

    leaf = keys[-1]
    if op.action == "set":
        parent[leaf] = copy.deepcopy(op.value)
    elif op.action == "merge":
        if not isinstance(op.value, dict):
            raise PatchError(f"merge patch {op.id} needs an object value")
        current = parent.setdefault(leaf, {})
        if not isinstance(current, dict):
            raise PatchError(f"Cannot merge into non-object at {op.path}")
        _deep_merge(current, op.value)
    else:
        current = parent.setdefault(leaf, [])
        if not isinstance(current, list):
            raise PatchError(f"Cannot append to non-array at {op.path}")
        items = op.value if isinstance(op.value, list) else [op.value]
        for item in items:
            if item not in current:
                current.append(copy.deepcopy(item))
    return result


def _render_json_patch(content: str, op: ExpoConfigPatch) -> str:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise PatchError(f"Invalid JSON in {op.file}: {e}") from e
    if not isinstance(data, dict):
        raise PatchError(f"{op.file} must contain a JSON object")
    patched = apply_json_patch(data, op)
    if patched == data:
        return content
    return json.dumps(patched, indent=2) + "\n"


# =============================================================================
# Plist / entitlements
# =============================================================================


def plist_value(value: Any, indent: str) -> list[str]:
    """Render a value as plist XML lines."""
    if isinstance(value, bool):
        return [f"{indent}<{'true' if value else 'false'}/>"]
    if isinstance(value, int):
        return [f"{indent}<integer>{value}</integer>"]
    if isinstance(value, float):
        return [f"{indent}<real>{value}</real>"]
    if isinstance(value, list):
        return (
            [f"{indent}<array>"]
            + [f"{indent}\t<string>{escape(str(item))}</string>" for item in value]
            + [f"{indent}</array>"]
        )
    return [f"{indent}<string>{escape(str(value))}</string>"]


def _render_plist_patch(content: str, op: PlistPatch) -> str:
    tag = patch_tag(op.patch_id, "xml")
    if tag in content:
        return content
    key_line = f"<key>{escape(op.key)}</key>"
    if key_line in content:
        logger.info("%s already defines %s, leaving it unchanged", op.file, op.key)
        return content

    position = content.rfind("</dict>")
    if position == -1:
        raise PatchError("Anchor not found in file: </dict>")
    line_start = content.rfind("\n", 0, position) + 1
    indent = content[line_start:position] + "\t"
    block = [f"{indent}{tag}", f"{indent}{key_line}", *plist_value(op.value, indent)]
    return content[:line_start] + "\n".join(block) + "\n" + content[line_start:]


# =============================================================================
# Anchor-based text patches
# =============================================================================


def _render_anchor_patch(content: str, op: AnchorPatch) -> str:
    tag = patch_tag(op.patch_id, comment_style(op))
    if tag in content:
        return content

    position = content.find(op.anchor)
    if position == -1:
        raise PatchError(f"Anchor not found in file: {op.anchor}")

    lines = content.split("\n")
    anchor_line = content.count("\n", 0, position)
    anchor_text = lines[anchor_line]
    indent = anchor_text[: len(anchor_text) - len(anchor_text.lstrip())]
    block = [f"{indent}{tag}"] + [
        f"{indent}{line}" if line.strip() else line for line in op.content.strip("\n").split("\n")
    ]
    insert_at = anchor_line if op.position == "before" else anchor_line + 1
    lines[insert_at:insert_at] = block
    return "\n".join(lines)


def render_patch(content: str, op: PatchOp) -> str:
    """Apply a patch to file content.

    Returns:
        Updated content (identical to the input if already applied)

    Raises:
        PatchError: If the patch cannot be applied
    """
    if isinstance(op, ExpoConfigPatch):
        return _render_json_patch(content, op)
    if isinstance(op, PlistPatch):
        return _render_plist_patch(content, op)
    return _render_anchor_patch(content, op)


def apply_patch(ctx: PipelineContext, op: PatchOp) -> PatchResult:
    """Apply one patch operation.

    Args:
        ctx: Pipeline context (dry-run mode never writes)
        op: Patch operation

    Returns:
        PatchResult with action injected, skipped or error
    """

    def result(action: OperationAction, **kwargs: Any) -> PatchResult:
        return PatchResult(patch_id=op.patch_id, type=op.type, file=op.file, action=action, **kwargs)

    try:
        assert_not_user_owned(ctx.project_root, op.file)
    except RnsError as e:
        return result("error", error=str(e))

    path = ctx.resolve(op.file)
    if not path.exists():
        return result("error", error=f"File not found: {op.file}")

    try:
        content = read_source(path, op.file)
        updated = render_patch(content, op)
    except (RnsError, OSError) as e:
        return result("error", error=str(e))

    if updated == content:
        return result("skipped")
    if ctx.dry_run:
        return result("injected")

    try:
        backup_path = ctx.write_text(path, updated, tag=op.capability_id or "patch")
    except RnsError as e:
        return result("error", error=str(e))

    logger.info("Applied %s patch %s to %s", op.type, op.patch_id, op.file)
    return result("injected", backup_path=backup_path)


def apply_patches(
    ctx: PipelineContext, ops: Iterable[PatchOp], stop_on_error: bool = True
) -> list[PatchResult]:
    """Apply patch operations in declaration order."""
    results = []
    for op in ops:
        outcome = apply_patch(ctx, op)
        results.append(outcome)
        if not outcome.success and stop_on_error:
            break
    return results
