"""Statement boundary detection for interactive Python input.

Grouping relies on Python's own compiler rather than a hand written parser:

- ``codeop`` decides whether input is complete, incomplete or invalid using
  the same rules as the ``>>>`` prompt.
- ``ast.parse(feature_version=...)`` rejects syntax that the target language
  version does not have (walrus, ``match``, ...).
"""

from __future__ import annotations

import ast
import codeop
import re
import sys
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from py_repl_mcp.text_utils import is_blank, split_lines

# ast.parse does not go lower than this
_MIN_FEATURE_MINOR = 7


@dataclass(frozen=True, order=True)
class LanguageVersion:
    """Python language version used to judge syntax."""

    major: int
    minor: int

    @classmethod
    def parse(cls, text: str) -> LanguageVersion:
        """Parse ``"3.11"`` or ``"3.11.4"``."""
        m = re.fullmatch(r"\s*(\d+)\.(\d+)(?:\.\d+)?\s*", text)
        if not m:
            raise ValueError(f"Invalid language version: {text!r}")
        return cls(int(m.group(1)), int(m.group(2)))

    @classmethod
    def current(cls) -> LanguageVersion:
        return cls(sys.version_info.major, sys.version_info.minor)

    @property
    def feature_version(self) -> Optional[tuple[int, int]]:
        """Value for ``ast.parse(feature_version=...)``, None if not checkable."""
        if self.major != 3:
            return None
        return (3, max(self.minor, _MIN_FEATURE_MINOR))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class ParseResult(str, Enum):
    """How the interactive prompt would treat a piece of input."""

    EMPTY = "empty"  # only blank lines and comments
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"  # more lines needed
    INVALID = "invalid"


def check_complete(
    source: str, version: Optional[LanguageVersion] = None
) -> ParseResult:
    """Classify ``source`` the way the ``>>>`` prompt does.

    ``source`` follows the ``codeop`` convention: lines joined with ``"\\n"``
    and no terminator after the last line. A trailing ``"\\n"`` therefore means
    an empty line was entered, which is what closes a compound statement.

    Args:
        source: The input typed so far.
        version: Target language version. When given, complete input is also
            parsed with that version's grammar and rejected if it does not fit.

    Returns:
        ParseResult: EMPTY, COMPLETE, INCOMPLETE or INVALID.
    """
    lines = split_lines(source)
    for line in lines:
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            break
    else:
        return ParseResult.EMPTY
    source = "\n".join(lines)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            compiled = codeop.compile_command(source, "<input>", "single")
        except (SyntaxError, OverflowError, ValueError):
            return ParseResult.INVALID
        if compiled is None:
            return ParseResult.INCOMPLETE

        feature_version = version.feature_version if version else None
        if feature_version is not None:
            try:
                ast.parse(source, "<input>", "single", feature_version=feature_version)
            except (SyntaxError, ValueError):
                return ParseResult.INVALID

    return ParseResult.COMPLETE


def check_lines(
    lines: Sequence[str], version: Optional[LanguageVersion] = None
) -> ParseResult:
    """Classify a list of entered lines (see :func:`check_complete`)."""
    return check_complete("\n".join(lines), version)


def needs_terminator(
    lines: Sequence[str], version: Optional[LanguageVersion] = None
) -> bool:
    """True if the statement only becomes complete once an empty line follows.

    That is the case for compound statements (``if``, ``def``, ``for`` ...),
    whose body the prompt keeps open until a blank line is entered.
    """
    if not lines:
        return False
    if check_lines(lines, version) is not ParseResult.INCOMPLETE:
        return False
    return check_lines([*lines, ""], version) is ParseResult.COMPLETE


def _starts_new_statement(
    current: List[str], line: str, version: Optional[LanguageVersion]
) -> bool:
    if not current or is_blank(line):
        return False
    # Indented lines never open a top-level statement.
    if line[:1] in (" ", "\t"):
        return False
    if check_lines([*current, line], version) is not ParseResult.INVALID:
        return False
    # Appending made things invalid; that is a boundary only if what we have
    # is a finished statement. Otherwise keep it together so the console can
    # report the error on the whole thing.
    return check_lines([*current, ""], version) is ParseResult.COMPLETE


def join_to_complete_statements(
    lines: Sequence[str], version: Optional[LanguageVersion] = None
) -> List[List[str]]:
    """Group physical lines into top-level statements.

    Blank lines and comments attach to the group they follow. ``else:``,
    ``except``, decorators and bracket continuations never start a new group
    because adding them to the current group does not make it invalid.

    Every input yields at least one group and the groups partition ``lines``
    in order, so the total line count is preserved. Malformed or unfinished
    input at the end stays in the last group.

    Args:
        lines: Physical lines, usually from :func:`split_and_dedent`.
        version: Target language version.

    Returns:
        List[List[str]]: The groups, each a list of lines.
    """
    groups: List[List[str]] = []
    current: List[str] = []
    for line in lines:
        if _starts_new_statement(current, line, version):
            groups.append(current)
            current = []
        current.append(line)

    if current or not groups:
        groups.append(current)
    return groups
