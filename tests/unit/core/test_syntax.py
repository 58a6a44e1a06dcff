"""Tests for rns.core.syntax module."""

from rns.core.syntax import introduces_errors, is_tsx_path, parse_source

IMPORTS = """\
import React from 'react';
import { View, Text as RNText } from "react-native";
import * as Sentry from '@sentry/react-native';
import type { Theme } from './theme';
import Default, { named } from './mixed';
import './side-effect';
"""


class TestImports:
    """Tests for SourceTree.imports."""

    def test_reads_import_table(self):
        """Parses default, named, namespace and type-only imports."""
        declarations = parse_source(IMPORTS, "index.tsx").imports()

        by_source = {d.source: d for d in declarations}
        assert by_source["react"].default == "React"
        assert by_source["react-native"].names == {"View", "Text"}
        assert by_source["react-native"].quote == '"'
        assert by_source["@sentry/react-native"].namespace is not None
        assert by_source["./theme"].type_only is True
        assert by_source["./mixed"].default == "Default"
        assert by_source["./mixed"].names == {"named"}

    def test_value_names(self):
        """Only unaliased, non-type specifiers bind a value under their own name."""
        source = IMPORTS + "import { type Props, Button } from './ui';\n"
        by_source = {d.source: d for d in parse_source(source, "index.tsx").imports()}

        assert by_source["react-native"].value_names == {"View"}
        assert by_source["./theme"].value_names == set()
        assert by_source["./ui"].value_names == {"Button"}

    def test_accepts_named(self):
        """Type-only and namespace imports never receive merged names."""
        by_source = {d.source: d for d in parse_source(IMPORTS, "index.tsx").imports()}

        assert by_source["react-native"].accepts_named
        assert by_source["react"].accepts_named
        assert not by_source["./theme"].accepts_named
        assert not by_source["@sentry/react-native"].accepts_named

    def test_semicolon_detection(self):
        """Records whether declarations end with a semicolon."""
        declarations = parse_source("import { a } from 'a'\n", "x.ts").imports()
        assert declarations[0].has_semicolon is False


class TestCallNames:
    """Tests for SourceTree.call_names_between."""

    def test_finds_calls_in_range(self):
        """Only calls fully inside the range are reported."""
        source = "before();\nfunction f() {\n  initAuth();\n  Sentry.init({ dsn: 'x' });\n}\nafter();\n"
        tree = parse_source(source, "core-init.ts")
        start = tree.line_start_byte(3)
        end = tree.line_start_byte(5)

        names = tree.call_names_between(start, end)

        assert "initAuth" in names
        assert "Sentry.init" in names
        assert "before" not in names
        assert "after" not in names


class TestSyntaxCheck:
    """Tests for has_errors and introduces_errors."""

    def test_tsx_grammar_for_tsx_files(self):
        """JSX parses cleanly with the TSX grammar."""
        assert is_tsx_path("index.tsx")
        assert not is_tsx_path("core-init.ts")
        assert not parse_source("const a = <View />;\n", "index.tsx").has_errors

    def test_detects_broken_edit(self):
        """An edit that breaks a clean file is detected."""
        before = "function f() {\n  return 1;\n}\n"
        after = "function f() {\n  return 1;\n"

        assert introduces_errors(before, after, "f.ts")

    def test_skips_when_original_broken(self):
        """If the original already fails to parse, the check passes."""
        before = "function f( {\n"
        after = "function f( {\n  x();\n"

        assert not introduces_errors(before, after, "f.ts")

    def test_line_start_byte_past_end(self):
        """Lines past the end map to the end of the source."""
        tree = parse_source("a();\n", "a.ts")
        assert tree.line_start_byte(1) == 0
        assert tree.line_start_byte(10) == len(b"a();\n")
