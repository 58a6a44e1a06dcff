"""Syntax-tree access for TypeScript/TSX sources using tree-sitter.

This is the only module that talks to the parser. The structural patcher asks
it for the import table, call expressions in a byte range, and whether a
source parses cleanly; swapping the parser means rewriting this module only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import PurePath

import tree_sitter
import tree_sitter_typescript

logger = logging.getLogger("rns.syntax")

TSX_SUFFIXES = {".tsx", ".jsx", ".js"}


@lru_cache(maxsize=2)
def _language(tsx: bool) -> tree_sitter.Language:
    if tsx:
        return tree_sitter.Language(tree_sitter_typescript.language_tsx())
    return tree_sitter.Language(tree_sitter_typescript.language_typescript())


def is_tsx_path(path: str | PurePath) -> bool:
    """Whether a file should be parsed with the TSX grammar."""
    return PurePath(path).suffix in TSX_SUFFIXES


@dataclass
class ImportSpecifier:
    """One ``name`` or ``name as alias`` entry of a named import."""

    name: str
    alias: str | None
    start_byte: int
    end_byte: int
    type_only: bool = False


@dataclass
class ImportDeclaration:
    """A top-level import statement."""

    source: str
    quote: str
    start_byte: int
    end_byte: int
    has_semicolon: bool
    type_only: bool = False
    default: str | None = None
    default_end_byte: int | None = None
    namespace: str | None = None
    named: list[ImportSpecifier] = field(default_factory=list)
    named_start_byte: int | None = None
    named_end_byte: int | None = None

    @property
    def names(self) -> set[str]:
        """Imported (not local) names of the named specifiers."""
        return {spec.name for spec in self.named}

    @property
    def value_names(self) -> set[str]:
        """Names bound as values under their own name.

        Type-only imports and aliased specifiers bind no value called ``name``.
        """
        if self.type_only:
            return set()
        return {
            spec.name for spec in self.named if not spec.type_only and spec.alias in (None, spec.name)
        }

    @property
    def accepts_named(self) -> bool:
        """Whether named specifiers can be merged into this declaration."""
        return not self.type_only and self.namespace is None


class SourceTree:
    """A parsed TypeScript/TSX source."""

    def __init__(self, text: str, tsx: bool = True) -> None:
        """Parse source text.

        Args:
            text: Source text
            tsx: Use the TSX grammar (JSX allowed)
        """
        self.text = text
        self.source = text.encode("utf-8")
        self.tsx = tsx
        parser = tree_sitter.Parser(_language(tsx))
        self._tree = parser.parse(self.source)

    @property
    def root(self) -> tree_sitter.Node:
        return self._tree.root_node

    @property
    def has_errors(self) -> bool:
        return self.root.has_error

    def node_text(self, node: tree_sitter.Node) -> str:
        return self.source[node.start_byte : node.end_byte].decode("utf-8")

    def imports(self) -> list[ImportDeclaration]:
        """Top-level import declarations in file order."""
        declarations = []
        for child in self.root.children:
            if child.type == "import_statement":
                declaration = self._parse_import(child)
                if declaration is not None:
                    declarations.append(declaration)
        return declarations

    def _parse_import(self, node: tree_sitter.Node) -> ImportDeclaration | None:
        source_node = node.child_by_field_name("source")
        if source_node is None:
            return None
        raw_source = self.node_text(source_node)
        declaration = ImportDeclaration(
            source=raw_source[1:-1],
            quote=raw_source[0],
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            has_semicolon=self.node_text(node).rstrip().endswith(";"),
        )

        for child in node.children:
            if child.type == "type":
                declaration.type_only = True
            elif child.type == "import_clause":
                self._parse_clause(child, declaration)
        return declaration

    def _parse_clause(self, clause: tree_sitter.Node, declaration: ImportDeclaration) -> None:
        for part in clause.children:
            if part.type == "identifier":
                declaration.default = self.node_text(part)
                declaration.default_end_byte = part.end_byte
            elif part.type == "namespace_import":
                declaration.namespace = self.node_text(part)
            elif part.type == "named_imports":
                declaration.named_start_byte = part.start_byte
                declaration.named_end_byte = part.end_byte
                for spec in part.named_children:
                    if spec.type != "import_specifier":
                        continue
                    name_node = spec.child_by_field_name("name")
                    alias_node = spec.child_by_field_name("alias")
                    if name_node is None:
                        continue
                    declaration.named.append(
                        ImportSpecifier(
                            name=self.node_text(name_node),
                            alias=self.node_text(alias_node) if alias_node else None,
                            start_byte=spec.start_byte,
                            end_byte=spec.end_byte,
                            type_only=any(c.type == "type" for c in spec.children),
                        )
                    )

    def call_names_between(self, start_byte: int, end_byte: int) -> list[str]:
        """Callee text of every call expression inside a byte range."""
        names: list[str] = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node.end_byte <= start_byte or node.start_byte >= end_byte:
                continue
            if (
                node.type == "call_expression"
                and node.start_byte >= start_byte
                and node.end_byte <= end_byte
            ):
                function = node.child_by_field_name("function")
                if function is not None:
                    names.append(self.node_text(function))
            stack.extend(reversed(node.children))
        return names

    def line_start_byte(self, line: int) -> int:
        """Byte offset of the start of a 1-based line."""
        offset = 0
        for _ in range(line - 1):
            newline = self.source.find(b"\n", offset)
            if newline == -1:
                return len(self.source)
            offset = newline + 1
        return offset


def parse_source(text: str, path: str | PurePath = "index.tsx") -> SourceTree:
    """Parse source text using the grammar matching the file suffix."""
    return SourceTree(text, tsx=is_tsx_path(path))


def introduces_errors(before: str, after: str, path: str | PurePath) -> bool:
    """Check whether an edit turned a clean parse into one with errors.

    If the original source already has parse errors the check is skipped,
    since the grammar cannot tell new problems from old ones.
    """
    original = parse_source(before, path)
    if original.has_errors:
        logger.debug("Skipping syntax check for %s: original has parse errors", path)
        return False
    return parse_source(after, path).has_errors
