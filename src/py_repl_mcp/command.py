"""The send-to-console command: selection, line stepping and cell stepping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from py_repl_mcp.console import Console
from py_repl_mcp.source import SourceView
from py_repl_mcp.submission import SubmissionQueue
from py_repl_mcp.text_utils import ends_with_line_break

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    """What a send did.

    ``text`` is None when there was nothing left to send. ``finished`` means
    the caret reached the end of the file and the last line has been sent.
    """

    text: Optional[str]
    focus_console: bool
    caret_line: int
    finished: bool


def send_to_console(
    view: SourceView,
    console: Console,
    inputs: SubmissionQueue,
    newline: str = "\n",
) -> SendOutcome:
    """Send the selection, or the current line or cell, to the console.

    Without a selection each call sends the line (or cell) under the caret
    and moves the caret to the next non-blank line. Once the last line has
    been sent, one more call flushes whatever is still typed into the
    console by entering an empty line; after that calls send nothing until
    the caret is moved.

    Args:
        view: Source with caret and optional selection.
        console: Console that receives the input.
        inputs: Submission queue of that console.
        newline: Line break appended to sent text.

    Returns:
        SendOutcome: The text sent and where the caret ended up.
    """
    text: Optional[str]
    focus_console = False

    if view.selection is not None:
        text = view.selection_text()
        if not ends_with_line_break(text):
            text += newline
        focus_console = True
    elif not view.executed_last_line:
        text, last_covered = view.current_input()
        text += newline
        if not view.advance_caret(last_covered):
            # Nowhere left to go; the next call must not send this line again.
            view.executed_last_line = True
    elif console.buffer_text:
        text = newline
    else:
        text = None

    if text is not None:
        logger.debug("Sending %d characters to console", len(text))
        inputs.enqueue(text)

    return SendOutcome(
        text=text,
        focus_console=focus_console,
        caret_line=view.caret_line,
        finished=view.executed_last_line,
    )
