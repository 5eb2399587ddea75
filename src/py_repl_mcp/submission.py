"""Submission queue feeding a console one top-level statement at a time."""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Callable, Deque, List, Optional

from py_repl_mcp.recombine import recombine
from py_repl_mcp.statements import LanguageVersion
from py_repl_mcp.text_utils import ends_with_line_break

if TYPE_CHECKING:
    from py_repl_mcp.console import Console

logger = logging.getLogger(__name__)

VersionResolver = Callable[[], Optional[LanguageVersion]]


class SubmissionQueue:
    """Pending input for one console and the loop that drains it.

    Text is queued as it arrives and typed into the console statement by
    statement. When a statement completes, the console is asked to execute
    it and draining stops until the console reports it is ready again.

    Usage:
        inputs = SubmissionQueue(console, lambda: console.language_version)
        inputs.enqueue("if True:\\n")
        inputs.enqueue("    print(1)\\n")
    """

    def __init__(
        self,
        console: Console,
        version_resolver: VersionResolver,
        newline: str = "\n",
    ) -> None:
        self._console = console
        self._resolve_version = version_resolver
        self._newline = newline

        # Leftover statements go on the left, new input on the right.
        self._pending: Deque[str] = deque()
        self._draining = False
        self._ready_while_draining = False

        self._unsubscribe: Optional[Callable[[], None]] = console.add_ready_listener(
            self._on_ready
        )

    @property
    def pending(self) -> List[str]:
        """Snapshot of the queued input, next first."""
        return list(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(self, text: str) -> None:
        """Queue text and start draining if the console is idle."""
        self._pending.append(text)
        if not self._console.is_busy:
            self.process_queued()

    def clear(self) -> None:
        self._pending.clear()

    def close(self) -> None:
        """Stop listening to the console."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_ready(self) -> None:
        if self._draining:
            self._ready_while_draining = True
            return
        self.process_queued()

    def process_queued(self) -> None:
        """Type queued input into the console until a statement executes.

        Never runs twice at the same time: a call made while a drain is in
        progress returns immediately and the running drain picks up whatever
        was queued meanwhile.
        """
        if self._draining:
            return

        self._draining = True
        try:
            while True:
                self._ready_while_draining = False
                self._drain()
                # A console that finishes synchronously reports ready before
                # we return; resume here instead of losing the notification.
                if not self._ready_while_draining or self._console.is_busy:
                    break
        finally:
            self._draining = False

    def _drain(self) -> None:
        console = self._console
        while self._pending:
            current = self._pending.popleft()

            # Inserting happens at the caret, which may have been moved.
            console.move_caret_to_end()

            version = self._resolve_version()
            if version is None:
                logger.debug("No language version available, dropping queued input")
                continue

            statements = [
                s
                for s in recombine(current, console.buffer_text, version, self._newline)
                if s
            ]
            if not statements:
                continue

            if len(statements) > 1:
                logger.debug("Re-queueing %d follow-up statements", len(statements) - 1)
                self._pending.extendleft(reversed(statements[1:]))

            console.insert_text(statements[0])

            if console.can_execute(console.buffer_text):
                console.execute_current_input()
                return

            if not ends_with_line_break(console.buffer_text):
                console.insert_text(self._newline)
