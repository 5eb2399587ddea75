"""Merge new input with the console buffer and split it into statements."""

from __future__ import annotations

from typing import Iterator, List, Optional, Sequence, Tuple

from py_repl_mcp.statements import (
    LanguageVersion,
    join_to_complete_statements,
    needs_terminator,
)
from py_repl_mcp.text_utils import count_line_breaks, is_blank, split_and_dedent


def skip_consumed(
    groups: Sequence[Sequence[str]], old_line_count: int
) -> Iterator[Tuple[int, int]]:
    """Yield ``(index, skip)`` for each group.

    ``skip`` is how many leading lines of the group are already in the
    console buffer. It never exceeds the group's own length; whatever is left
    of ``old_line_count`` carries over to the next group, never below zero.
    """
    for index, group in enumerate(groups):
        yield index, min(old_line_count, len(group))
        old_line_count = max(old_line_count - len(group), 0)


def normalize_group(
    group: Sequence[str],
    version: Optional[LanguageVersion],
    is_last: bool,
) -> List[str]:
    """Return the lines of a group as they should be typed, one per line.

    Trailing blank lines are dropped. A single empty line is put back when
    the statement needs it to close its block and either another statement
    follows or the source itself had a blank line there. The last group's
    final element is the text after the final line break; it only counts if
    it holds something.
    """
    lines = list(group)
    if is_last and lines:
        partial = lines.pop()
        if not is_blank(partial):
            lines.append(partial)

    body = list(lines)
    while body and is_blank(body[-1]):
        body.pop()
    had_blank = len(body) < len(lines)

    if (had_blank or not is_last) and needs_terminator(body, version):
        body.append("")
    return body


def recombine(
    chunk: str,
    buffer_text: str,
    version: Optional[LanguageVersion],
    newline: str = "\n",
) -> List[str]:
    """Split buffered plus new input into statement sized fragments.

    The chunk is appended to what is already typed into the console so that
    a body line sent on its own keeps the indentation its header implies, e.g.
    ``"    x = 1"`` after ``"if True:"`` stays indented while the same line sent
    into an empty console is dedented.

    Lines already present in the buffer are removed from the result, so
    inserting the fragments in order never types anything twice. A group
    that was entirely in the buffer yields an empty string unless it needs a
    closing blank line.

    Args:
        chunk: New input, normally terminated by a line break.
        buffer_text: Text currently typed into the console, not yet executed.
        version: Target language version. None means the language context is
            unknown and nothing is produced.
        newline: Line break used to render the fragments.

    Returns:
        List[str]: Fragments in submission order.
    """
    if version is None:
        return []

    old_line_count = count_line_breaks(buffer_text)
    lines = split_and_dedent(buffer_text + chunk)
    groups = join_to_complete_statements(lines, version)

    fragments: List[str] = []
    for index, skip in skip_consumed(groups, old_line_count):
        is_last = index == len(groups) - 1
        kept = normalize_group(groups[index], version, is_last)[skip:]
        fragments.append("".join(line + newline for line in kept))
    return fragments
