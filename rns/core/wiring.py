"""Structural patcher for runtime wiring.

Injects typed contributions (imports, providers, init steps, registrations,
root replacement) into marker regions of the runtime composition files.
Imports are merged through the file's syntax tree; every other contribution is
placed relative to its region's sentinels and the result is re-parsed before
anything is written, so a contribution can never leave a file that no longer
parses.

Each contribution kind is handled by an Injector registered in INJECTORS.
Injectors are pure text-to-text transforms; file access, zone checks, marker
validation and backups live in apply_wiring.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from rns.config.schemas import (
    MARKER_TYPES,
    CallRef,
    ImportContribution,
    InitStepContribution,
    OperationAction,
    ProviderContribution,
    RegistrationContribution,
    RootContribution,
    WiringOperation,
)
from rns.core.context import PipelineContext
from rns.core.errors import MutationError, RnsError
from rns.core.syntax import ImportDeclaration, introduces_errors, parse_source
from rns.utils.ledger import (
    assert_managed,
    has_record_in_content,
    insert_record,
    list_records,
    make_record,
)
from rns.utils.markers import MarkerRegion, find_marker, read_source, validate_marker_content

logger = logging.getLogger("rns.wiring")

INDENT = "  "


@dataclass
class WiringResult:
    """Outcome of one wiring operation."""

    operation_id: str
    capability_id: str
    file: str
    marker_type: str
    kind: str
    action: OperationAction
    error: str | None = None
    backup_path: Path | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.action != "error"


# =============================================================================
# Injectors
# =============================================================================


class Injector(ABC):
    """Injects one contribution kind into file content."""

    kind: str = ""

    # Whether a fingerprint alone proves the contribution is applied
    trusts_record: bool = True

    @abstractmethod
    def inject(self, content: str, region: MarkerRegion, op: WiringOperation) -> str:
        """Return the content with the contribution applied.

        Returning the content unchanged means there was nothing to do.
        """


def _split_lines(content: str) -> list[str]:
    return content.split("\n")


def _join_lines(lines: list[str]) -> str:
    return "\n".join(lines)


def _format_args(args: Iterable[object]) -> str:
    return ", ".join(json.dumps(arg) for arg in args)


def _prop(name: str, value: object) -> str:
    # JSX attribute strings have no escape sequences
    if isinstance(value, str) and value.isascii() and value.isprintable() and not any(c in value for c in '"\\'):
        return f'{name}="{value}"'
    return f"{name}={{{json.dumps(value, ensure_ascii=False)}}}"


class ImportInjector(Injector):
    """Merges named imports into the file's import table.

    Symbol-level idempotent: symbols already imported from the same module
    are never added again, whatever the fingerprint says.
    """

    kind = "import"
    trusts_record = False

    def inject(self, content: str, region: MarkerRegion, op: WiringOperation) -> str:
        contribution = op.contribution
        assert isinstance(contribution, ImportContribution)

        tree = parse_source(content, op.file)
        declarations = tree.imports()

        missing: dict[str, list[str]] = {}
        for ref in contribution.imports:
            if self._is_imported(declarations, ref.source, ref.symbol):
                continue
            symbols = missing.setdefault(ref.source, [])
            if ref.symbol not in symbols:
                symbols.append(ref.symbol)

        if not missing:
            logger.debug("All imports of %s already present in %s", op.operation_id, op.file)
            return insert_record(content, op.operation_id, region)

        source = tree.source
        edits: list[tuple[int, int, bytes]] = []
        new_declarations: list[str] = []
        quote, semicolon = self._style(declarations)

        for module, symbols in missing.items():
            target = self._merge_target(declarations, module)
            if target is None:
                new_declarations.append(
                    f"import {{ {', '.join(symbols)} }} from {quote}{module}{quote}{semicolon}"
                )
            else:
                edits.append(self._merge_edit(source, target, symbols))

        if new_declarations:
            region_end = tree.line_start_byte(region.end_line)
            if declarations and declarations[-1].end_byte > region_end:
                offset = declarations[-1].end_byte
                text = "".join(f"\n{d}" for d in new_declarations)
            else:
                # Every import precedes the end sentinel: keep new ones inside the region
                offset = region_end
                text = "".join(f"{region.indent}{d}\n" for d in new_declarations)
            edits.append((offset, offset, text.encode("utf-8")))

        for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
            source = source[:start] + replacement + source[end:]

        updated = source.decode("utf-8")
        updated_region = find_marker(updated, region.marker_type)
        if updated_region is None:
            raise MutationError(
                f"Marker {region.marker_type} lost while merging imports", op.file, "wire"
            )
        return insert_record(updated, op.operation_id, updated_region)

    @staticmethod
    def _is_imported(declarations: list[ImportDeclaration], module: str, symbol: str) -> bool:
        return any(d.source == module and symbol in d.value_names for d in declarations)

    @staticmethod
    def _merge_target(declarations: list[ImportDeclaration], module: str) -> ImportDeclaration | None:
        for declaration in declarations:
            if declaration.source != module or not declaration.accepts_named:
                continue
            if declaration.named_start_byte is not None or declaration.default is not None:
                return declaration
        return None

    @staticmethod
    def _style(declarations: list[ImportDeclaration]) -> tuple[str, str]:
        if not declarations:
            return "'", ";"
        last = declarations[-1]
        return last.quote, ";" if last.has_semicolon else ""

    @staticmethod
    def _merge_edit(source: bytes, target: ImportDeclaration, symbols: list[str]) -> tuple[int, int, bytes]:
        if target.named_start_byte is None or target.named_end_byte is None:
            # Default-only import: add a named clause after the default binding
            assert target.default_end_byte is not None
            offset = target.default_end_byte
            text = f", {{ {', '.join(symbols)} }}"
            return offset, offset, text.encode("utf-8")

        if not target.named:
            text = f"{{ {', '.join(symbols)} }}"
            return target.named_start_byte, target.named_end_byte, text.encode("utf-8")

        last = target.named[-1]
        clause = source[target.named_start_byte : target.named_end_byte]
        if b"\n" in clause:
            line_start = source.rfind(b"\n", 0, last.start_byte) + 1
            indent = source[line_start : last.start_byte].decode("utf-8")
            text = "".join(f",\n{indent}{symbol}" for symbol in symbols)
        else:
            text = "".join(f", {symbol}" for symbol in symbols)
        return last.end_byte, last.end_byte, text.encode("utf-8")


class ProviderInjector(Injector):
    """Wraps the providers region content in a new wrapper element.

    Each provider wraps everything already in the region, so later (higher
    order) providers end up outermost and earlier ones nest inside them.
    """

    kind = "provider"

    def inject(self, content: str, region: MarkerRegion, op: WiringOperation) -> str:
        contribution = op.contribution
        assert isinstance(contribution, ProviderContribution)
        if has_record_in_content(content, op.operation_id):
            return content

        lines = _split_lines(content)
        indent = region.indent
        inner = region.inner_lines(lines)
        if not any(line.strip() for line in inner):
            inner = [f"{indent}{{children}}"]

        props = "".join(f" {_prop(k, v)}" for k, v in contribution.props.items())
        wrapped = [
            f"{indent}{make_record(op.operation_id, jsx=True)}",
            f"{indent}<{contribution.symbol}{props}>",
            *[f"{INDENT}{line}" if line.strip() else line for line in inner],
            f"{indent}</{contribution.symbol}>",
        ]
        return _join_lines(lines[: region.start_line] + wrapped + lines[region.end_line - 1 :])


class StatementInjector(Injector):
    """Inserts a call statement immediately before the region's end sentinel.

    Symbol calls are deduplicated against existing calls in the region. Raw
    statements are only guarded by their fingerprint.
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind

    def inject(self, content: str, region: MarkerRegion, op: WiringOperation) -> str:
        contribution = op.contribution
        assert isinstance(contribution, InitStepContribution | RegistrationContribution)
        if has_record_in_content(content, op.operation_id):
            return content

        step = contribution.step
        if isinstance(step, CallRef):
            if self._already_called(content, region, op.file, step.symbol):
                logger.debug("%s already called in %s", step.symbol, op.file)
                return insert_record(content, op.operation_id, region)
            code_lines = [f"{step.symbol}({_format_args(step.args)});"]
        else:
            logger.debug("Injecting raw statement for %s without structural dedup", op.operation_id)
            code_lines = step.code.strip("\n").split("\n")

        lines = _split_lines(content)
        indent = region.indent
        block = [f"{indent}{make_record(op.operation_id, jsx=region.jsx)}"]
        block.extend(f"{indent}{line}" if line.strip() else line for line in code_lines)
        return _join_lines(lines[: region.end_line - 1] + block + lines[region.end_line - 1 :])

    @staticmethod
    def _already_called(content: str, region: MarkerRegion, file: str, symbol: str) -> bool:
        tree = parse_source(content, file)
        start = tree.line_start_byte(region.start_line)
        end = tree.line_start_byte(region.end_line)
        return symbol in tree.call_names_between(start, end)


class RootInjector(Injector):
    """Replaces the root region with a single return of the root component."""

    kind = "root"

    def inject(self, content: str, region: MarkerRegion, op: WiringOperation) -> str:
        contribution = op.contribution
        assert isinstance(contribution, RootContribution)
        if has_record_in_content(content, op.operation_id):
            return content

        lines = _split_lines(content)
        indent = region.indent
        body = [
            f"{indent}{make_record(op.operation_id, jsx=region.jsx)}",
            f"{indent}return <{contribution.symbol} />;",
        ]
        return _join_lines(lines[: region.start_line] + body + lines[region.end_line - 1 :])


INJECTORS: dict[str, Injector] = {
    "import": ImportInjector(),
    "provider": ProviderInjector(),
    "init-step": StatementInjector("init-step"),
    "registration": StatementInjector("registration"),
    "root": RootInjector(),
}


# =============================================================================
# Applying operations
# =============================================================================


def validate_wiring_ops(ops: Iterable[WiringOperation]) -> list[str]:
    """Check wiring operations for problems detectable without touching files.

    Returns:
        Error messages (empty if all operations are valid)
    """
    errors = []
    for op in ops:
        if op.kind not in INJECTORS:
            errors.append(f"{op.capability_id}: unknown contribution kind '{op.kind}'")
        if isinstance(op.contribution, ImportContribution) and not op.contribution.imports:
            errors.append(f"{op.capability_id}: import contribution declares no imports")
        if not op.file:
            errors.append(f"{op.capability_id}: {op.kind} contribution has no target file")
    return errors


def sort_operations(ops: Iterable[WiringOperation]) -> list[WiringOperation]:
    """Order operations by (order, capability id); ties keep submission order."""
    return sorted(ops, key=lambda op: op.sort_key)


def apply_wiring(ctx: PipelineContext, op: WiringOperation) -> WiringResult:
    """Apply one wiring operation.

    Never raises for operation-level failures; they are reported through the
    result's action.

    Args:
        ctx: Pipeline context
        op: Operation to apply

    Returns:
        WiringResult with action injected, skipped or error
    """

    def result(action: OperationAction, error: str | None = None, **kwargs: object) -> WiringResult:
        return WiringResult(
            operation_id=op.operation_id,
            capability_id=op.capability_id,
            file=op.file,
            marker_type=op.marker_type,
            kind=op.kind,
            action=action,
            error=error,
            **kwargs,  # type: ignore[arg-type]
        )

    injector = INJECTORS.get(op.kind)
    if injector is None:
        return result("error", f"Unknown contribution kind: {op.kind}")

    try:
        assert_managed(ctx.project_root, op.file)
    except RnsError as e:
        return result("error", str(e))

    path = ctx.resolve(op.file)
    if not path.exists():
        return result("error", f"File not found: {op.file}")

    try:
        content = read_source(path, op.file)
    except OSError as e:
        return result("error", f"Cannot read {op.file}: {e}")
    except RnsError as e:
        return result("error", str(e))

    validation = validate_marker_content(content, op.marker_type, op.file)
    if not validation.valid or validation.region is None:
        if not validation.required:
            message = f"{validation.error}; {op.operation_id} has no destination"
            logger.info(message)
            return result("skipped", warnings=[message])
        return result("error", validation.message)

    if injector.trusts_record and has_record_in_content(content, op.operation_id):
        logger.debug("Skipping %s: already applied", op.operation_id)
        return result("skipped")

    try:
        updated = injector.inject(content, validation.region, op)
    except RnsError as e:
        return result("error", str(e))

    if updated == content:
        return result("skipped")

    if introduces_errors(content, updated, op.file):
        return result(
            "error",
            f"Injecting {op.operation_id} would leave {op.file} with syntax errors",
        )

    if ctx.dry_run:
        return result("injected")

    try:
        backup_path = ctx.write_text(path, updated, tag=op.capability_id)
    except MutationError as e:
        return result("error", str(e))

    logger.info("Injected %s into %s", op.operation_id, op.file)
    return result("injected", backup_path=backup_path)


def apply_wiring_batch(
    ctx: PipelineContext,
    ops: Iterable[WiringOperation],
    stop_on_error: bool = True,
) -> list[WiringResult]:
    """Apply wiring operations in deterministic order.

    Args:
        ctx: Pipeline context
        ops: Operations in any order
        stop_on_error: Stop at the first failed operation

    Returns:
        One result per applied operation, in execution order
    """
    results = []
    for op in sort_operations(ops):
        outcome = apply_wiring(ctx, op)
        results.append(outcome)
        if not outcome.success and stop_on_error:
            break
    return results


# =============================================================================
# Removal
# =============================================================================

REMOVABLE_KINDS = ("provider", "init-step", "registration")


def capability_operation_ids(capability_id: str, kinds: Iterable[str] = REMOVABLE_KINDS) -> set[str]:
    """All fingerprint ids a capability could have written for the given kinds."""
    return {f"{capability_id}-{marker}-{kind}" for marker in MARKER_TYPES for kind in kinds}


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def strip_contributions(content: str, capability_id: str) -> tuple[str, list[str]]:
    """Remove a capability's provider, init-step and registration blocks.

    A statement block is its fingerprint line plus the lines that follow up
    to the next fingerprint or sentinel. A provider block is its fingerprint,
    opening tag and matching closing tag; the wrapped content is kept and
    dedented.

    Returns:
        Updated content and the operation ids removed
    """
    targets = capability_operation_ids(capability_id)
    lines = _split_lines(content)
    removed: list[str] = []
    index = 0

    while index < len(lines):
        records = list_records(lines[index])
        op_id = records[0] if records else None
        if op_id not in targets:
            index += 1
            continue

        removed.append(op_id)
        if op_id.endswith("-provider"):
            lines = _unwrap_provider(lines, index)
        else:
            end = index + 1
            while end < len(lines) and not _is_boundary(lines[end]):
                end += 1
            del lines[index:end]

    return _join_lines(lines), removed


def _is_boundary(line: str) -> bool:
    return bool(list_records(line)) or "-marker:" in line


def _unwrap_provider(lines: list[str], record_index: int) -> list[str]:
    open_index = record_index + 1
    if open_index >= len(lines):
        return lines[:record_index] + lines[record_index + 1 :]
    indent = _indent_of(lines[open_index])
    close_index = open_index + 1
    while close_index < len(lines):
        line = lines[close_index]
        if _indent_of(line) == indent and line.strip().startswith("</"):
            break
        close_index += 1
    if close_index >= len(lines):
        raise MutationError("Provider closing tag not found while unwiring")

    body = [
        line[len(INDENT) :] if line.startswith(indent + INDENT) else line
        for line in lines[open_index + 1 : close_index]
    ]
    return lines[:record_index] + body + lines[close_index + 1 :]
