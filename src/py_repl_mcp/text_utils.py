"""Physical line model shared by the recombiner and the source view."""

from __future__ import annotations

import os
import re
from typing import List

# Order matters: "\r\n" must win over a lone "\r".
NEWLINE_CHARS = ("\r\n", "\n", "\r")
_NEWLINE_RE = re.compile(r"\r\n|\n|\r")


def split_lines(text: str) -> List[str]:
    """Split text on any of the recognised line breaks.

    Unlike ``str.splitlines`` this keeps the (possibly empty) text after the
    final break, so ``len(split_lines(text)) == count_line_breaks(text) + 1``.
    Form feeds and other unicode separators are not line boundaries here.
    """
    return _NEWLINE_RE.split(text)


def count_line_breaks(text: str) -> int:
    return len(_NEWLINE_RE.findall(text))


def ends_with_line_break(text: str) -> bool:
    return text.endswith(("\n", "\r"))


def is_blank(line: str) -> bool:
    """Check if a line is empty or whitespace only."""
    return not line.strip()


def _leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def split_and_dedent(text: str) -> List[str]:
    """Split text into physical lines and remove their common indentation.

    The margin is the longest leading-whitespace prefix shared by every
    non-blank line. Whitespace-only lines become empty. The number of lines
    returned always equals ``count_line_breaks(text) + 1``.

    Text that starts at column zero somewhere (for example an ``if True:``
    header already sitting in the console buffer) keeps the indentation of
    its body lines; a lone indented line is flattened to column zero.
    """
    lines = split_lines(text)
    indents = [_leading_whitespace(line) for line in lines if not is_blank(line)]
    if not indents:
        return ["" for _ in lines]

    margin = os.path.commonprefix(indents)
    result = []
    for line in lines:
        if is_blank(line):
            result.append("")
        else:
            result.append(line[len(margin):])
    return result
