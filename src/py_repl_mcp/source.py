"""File-backed source view: lines, a caret, an optional selection and cells."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Pattern, Tuple

from py_repl_mcp.settings import DEFAULT_CELL_MARKER
from py_repl_mcp.text_utils import is_blank, split_lines


def read_source(path: str | Path) -> str:
    """Read a source file, falling back to latin-1 and then lossy utf-8."""
    for enc in ("utf-8", "latin-1"):
        try:
            with open(path, "r", encoding=enc, newline="") as f:
                return f.read()
        except UnicodeDecodeError:
            continue
    with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
        return f.read()


@dataclass
class SourceView:
    """Lines of a source file with a caret, as seen by the send command.

    Line numbers are 0-based here. ``executed_last_line`` is set once the
    caret has reached the last line and that line has been sent; any
    explicit caret move clears it.
    """

    lines: List[str]
    caret_line: int = 0
    selection: Optional[Tuple[int, int]] = None
    cell_marker: Pattern[str] = field(
        default_factory=lambda: re.compile(DEFAULT_CELL_MARKER)
    )
    executed_last_line: bool = False
    path: Optional[Path] = None

    @classmethod
    def from_text(
        cls, text: str, caret_line: int = 0, cell_marker: str | None = None
    ) -> SourceView:
        lines = split_lines(text)
        # A final line break does not open another line to step onto.
        if len(lines) > 1 and lines[-1] == "":
            lines.pop()
        view = cls(
            lines=lines,
            cell_marker=re.compile(cell_marker or DEFAULT_CELL_MARKER),
        )
        view.move_caret(caret_line)
        return view

    @classmethod
    def from_file(
        cls, path: str | Path, caret_line: int = 0, cell_marker: str | None = None
    ) -> SourceView:
        view = cls.from_text(read_source(path), caret_line, cell_marker)
        view.path = Path(path)
        return view

    @property
    def last_line(self) -> int:
        return len(self.lines) - 1

    def reload(self, text: str) -> None:
        """Replace the lines, keeping the caret where it is if still valid."""
        fresh = SourceView.from_text(text)
        self.lines = fresh.lines
        self.caret_line = min(self.caret_line, self.last_line)
        self.selection = None

    def move_caret(self, line: int) -> None:
        """Put the caret on ``line`` (clamped) and clear the latch."""
        self.caret_line = max(0, min(line, self.last_line))
        self.executed_last_line = False

    def select(self, start_line: int, end_line: int) -> None:
        """Select an inclusive line range.

        Raises:
            ValueError: If the range is empty or outside the file.
        """
        if start_line < 0 or end_line > self.last_line or start_line > end_line:
            raise ValueError(
                f"Invalid line range {start_line}-{end_line} "
                f"for {len(self.lines)} lines"
            )
        self.selection = (start_line, end_line)

    def clear_selection(self) -> None:
        self.selection = None

    def selection_text(self) -> str:
        if self.selection is None:
            return ""
        start, end = self.selection
        return "\n".join(self.lines[start : end + 1])

    def current_line_text(self, line: int | None = None) -> str:
        return self.lines[self.caret_line if line is None else line]

    def is_cell_marker(self, line: int) -> bool:
        return bool(self.cell_marker.match(self.lines[line]))

    def cell_range(self, line: int) -> Optional[Tuple[int, int]]:
        """Inclusive line range of the cell holding ``line``, if there is one.

        A cell runs from its marker down to the line before the next marker,
        or to the end of the file.
        """
        start = line
        while start >= 0 and not self.is_cell_marker(start):
            start -= 1
        if start < 0:
            return None

        end = start + 1
        while end <= self.last_line and not self.is_cell_marker(end):
            end += 1
        return start, end - 1

    def current_input(self) -> Tuple[str, int]:
        """Text to send for the caret position and the last line it covers.

        That is the whole cell when the caret is inside one, otherwise the
        caret line.
        """
        cell = self.cell_range(self.caret_line)
        if cell is None:
            return self.current_line_text(), self.caret_line
        start, end = cell
        return "\n".join(self.lines[start : end + 1]), end

    def advance_caret(self, from_line: int) -> bool:
        """Move the caret to the next non-blank line after ``from_line``.

        When only blank lines follow, the caret lands on the last line.
        Returns False if the caret could not move at all.
        """
        if from_line >= self.last_line:
            return False
        target = from_line + 1
        while target < self.last_line and is_blank(self.lines[target]):
            target += 1
        self.caret_line = target
        return True
