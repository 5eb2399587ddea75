"""Unit tests for statement boundary detection."""

import sys

import pytest

from py_repl_mcp import statements
from py_repl_mcp.statements import (
    LanguageVersion,
    ParseResult,
    check_complete,
    join_to_complete_statements,
    needs_terminator,
)

PY38 = LanguageVersion(3, 8)


class TestLanguageVersion:
    """Tests for LanguageVersion parsing and grammar selection."""

    @pytest.mark.parametrize(
        "text,expected",
        [("3.11", (3, 11)), ("3.11.4", (3, 11)), (" 2.7 ", (2, 7))],
    )
    def test_parse(self, text, expected):
        version = LanguageVersion.parse(text)
        assert (version.major, version.minor) == expected

    @pytest.mark.parametrize("text", ["", "3", "three.eleven", "3.x"])
    def test_parse_invalid(self, text):
        with pytest.raises(ValueError):
            LanguageVersion.parse(text)

    def test_current(self):
        version = LanguageVersion.current()
        assert version == LanguageVersion(sys.version_info.major, sys.version_info.minor)

    def test_feature_version(self):
        """Old 3.x versions use the oldest grammar ast supports; 2.x is unchecked."""
        assert LanguageVersion(3, 12).feature_version == (3, 12)
        assert LanguageVersion(3, 5).feature_version == (3, 7)
        assert LanguageVersion(2, 7).feature_version is None

    def test_ordering_and_str(self):
        assert LanguageVersion(3, 8) < LanguageVersion(3, 10)
        assert str(LanguageVersion(3, 10)) == "3.10"


class TestCheckComplete:
    """Tests for prompt-style completeness checks."""

    @pytest.mark.parametrize(
        "source,expected",
        [
            ("", ParseResult.EMPTY),
            ("   ", ParseResult.EMPTY),
            ("# just a comment", ParseResult.EMPTY),
            ("x = 1", ParseResult.COMPLETE),
            ("if True:", ParseResult.INCOMPLETE),
            ("if True:\n    x = 1", ParseResult.INCOMPLETE),
            ("if True:\n    x = 1\n", ParseResult.COMPLETE),
            ("x = (1,", ParseResult.INCOMPLETE),
            ("x = = 1", ParseResult.INVALID),
            ("x = 1\ny = 2", ParseResult.INVALID),
        ],
    )
    def test_classification(self, source, expected):
        assert check_complete(source) is expected

    def test_crlf_is_accepted(self):
        assert check_complete("if True:\r\n    x = 1\r\n") is ParseResult.COMPLETE

    def test_walrus_needs_38(self):
        assert check_complete("(y := 1)", LanguageVersion(3, 7)) is ParseResult.INVALID
        assert check_complete("(y := 1)", PY38) is ParseResult.COMPLETE

    def test_match_needs_310(self):
        source = "match x:\n    case 1:\n        pass\n"
        assert check_complete(source, LanguageVersion(3, 9)) is ParseResult.INVALID
        assert check_complete(source, LanguageVersion(3, 10)) is ParseResult.COMPLETE

    def test_python2_skips_grammar_check(self):
        assert check_complete("(y := 1)", LanguageVersion(2, 7)) is ParseResult.COMPLETE


class TestNeedsTerminator:
    """Tests for blank-line termination of compound statements."""

    def test_compound_statement(self):
        assert needs_terminator(["if True:", "    x = 1"])
        assert needs_terminator(["def f():", "    return 1"])

    def test_simple_statement(self):
        assert not needs_terminator(["x = 1"])

    def test_empty(self):
        assert not needs_terminator([])

    def test_already_terminated(self):
        assert not needs_terminator(["if True:", "    x = 1", ""])


class TestJoinToCompleteStatements:
    """Tests for grouping lines into top-level statements."""

    def test_simple_statements(self):
        groups = join_to_complete_statements(["x = 1", "y = 2", ""])
        assert groups == [["x = 1"], ["y = 2", ""]]

    def test_else_stays_in_group(self):
        lines = ["if a:", "    b()", "else:", "    c()", "d = 1"]
        assert join_to_complete_statements(lines) == [
            ["if a:", "    b()", "else:", "    c()"],
            ["d = 1"],
        ]

    def test_try_except_finally(self):
        lines = ["try:", "    f()", "except ValueError:", "    pass", "finally:", "    g()", "h()"]
        groups = join_to_complete_statements(lines)
        assert groups == [lines[:-1], ["h()"]]

    def test_decorator_stays_with_function(self):
        lines = ["@dec", "def f():", "    return 1", "f()"]
        assert join_to_complete_statements(lines) == [
            ["@dec", "def f():", "    return 1"],
            ["f()"],
        ]

    def test_blank_line_inside_body(self):
        """A blank line followed by more body does not end the function."""
        lines = ["def f():", "    x = 1", "", "    return x", "y = f()"]
        assert join_to_complete_statements(lines) == [
            ["def f():", "    x = 1", "", "    return x"],
            ["y = f()"],
        ]

    def test_bracket_continuation(self):
        lines = ["x = (", "1,", "2)", "y = 3"]
        assert join_to_complete_statements(lines) == [["x = (", "1,", "2)"], ["y = 3"]]

    def test_open_string_stays_together(self):
        lines = ['s = """', "not = code", '"""', "t = 1"]
        assert join_to_complete_statements(lines) == [lines[:3], ["t = 1"]]

    def test_malformed_input_stays_in_trailing_group(self):
        lines = ["x = 1", "y = = 2", "z = 3"]
        groups = join_to_complete_statements(lines)
        assert groups[0] == ["x = 1"]
        assert sum(len(g) for g in groups) == len(lines)
        assert groups[-1][-1] == "z = 3"

    def test_empty_input_yields_one_group(self):
        assert join_to_complete_statements([]) == [[]]
        assert join_to_complete_statements([""]) == [[""]]

    def test_indented_body_is_not_compiled_per_line(self, monkeypatch):
        """A long block body is grouped without compiling it once per line."""
        calls = []
        real_check = statements.check_lines

        def counting_check(lines, version=None):
            calls.append(len(lines))
            return real_check(lines, version)

        monkeypatch.setattr(statements, "check_lines", counting_check)
        body = [f"    v{i} = {i}" for i in range(2000)]
        lines = ["def f():", *body, "f()"]

        groups = join_to_complete_statements(lines, PY38)

        assert groups == [["def f():", *body], ["f()"]]
        assert len(calls) == 2

    def test_stray_indented_line_stays_in_group(self):
        """An unexpected indent is reported with the statement before it."""
        lines = ["x = 1", "    y = 2", "z = 3"]
        assert join_to_complete_statements(lines) == [["x = 1", "    y = 2", "z = 3"]]

    def test_version_changes_boundaries(self):
        lines = ["(y := 1)", "z = 2", ""]
        assert len(join_to_complete_statements(lines, LanguageVersion(3, 7))) == 1
        assert join_to_complete_statements(lines, PY38) == [["(y := 1)"], ["z = 2", ""]]
