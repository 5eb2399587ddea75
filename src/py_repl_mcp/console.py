"""Interactive Python console backed by a worker subprocess.

The console owns an input buffer with a caret, the way an editor's REPL
window does. Text is typed into the buffer and, once it forms a complete
statement, handed to the worker (``worker.py``) for execution. Executions
run as asyncio tasks; listeners are told when the console is ready again.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections import deque
from contextlib import suppress
from pathlib import Path
from typing import IO, Callable, Protocol

import orjson
from pydantic import ValidationError

from py_repl_mcp.console_models import (
    ExecutionResult,
    WorkerReply,
    WorkerRequest,
)
from py_repl_mcp.settings import ConsoleSettings, console_settings
from py_repl_mcp.statements import LanguageVersion, ParseResult, check_complete
from py_repl_mcp.text_utils import NEWLINE_CHARS, split_lines

logger = logging.getLogger(__name__)

WORKER_PATH = Path(__file__).with_name("worker.py")

# Replies carry captured output on a single line.
_STREAM_LIMIT = 16 * 1024 * 1024
# Extra time wait_idle allows on top of the execution timeout.
_IDLE_GRACE = 5.0
_STOP_TIMEOUT = 5.0


class ConsoleError(Exception):
    """The worker could not be started or did not follow the protocol."""

    pass


class ConsoleTimeoutError(ConsoleError):
    """The console did not become idle in time."""

    pass


ReadyListener = Callable[[], None]


class Console(Protocol):
    """What the submission queue needs from a console."""

    @property
    def buffer_text(self) -> str: ...

    @property
    def is_busy(self) -> bool: ...

    def insert_text(self, text: str) -> None: ...

    def move_caret_to_end(self) -> None: ...

    def can_execute(self, text: str) -> bool: ...

    def execute_current_input(self) -> None: ...

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]: ...


def strip_trailing_line_break(text: str) -> str:
    """Remove one trailing line break, if any."""
    for newline in NEWLINE_CHARS:
        if text.endswith(newline):
            return text[: -len(newline)]
    return text


class SubprocessConsole:
    """Console that executes input in a Python worker subprocess.

    Features:
    - Lazy worker start, restarted after a crash or timeout
    - Per-execution timeout
    - Ready notifications for the submission queue
    - Bounded execution history

    Usage:
        console = SubprocessConsole()
        await console.start()
        console.insert_text("print(1)\\n")
        if console.can_execute(console.buffer_text):
            console.execute_current_input()
        await console.wait_idle()
    """

    def __init__(self, settings: ConsoleSettings | None = None):
        self.settings = settings or console_settings

        self._buffer = ""
        self._caret = 0

        self._busy = False
        self._ready = asyncio.Event()
        self._ready.set()
        self._listeners: list[ReadyListener] = []
        self._task: asyncio.Task | None = None

        self._history: deque[ExecutionResult] = deque(
            maxlen=self.settings.history_limit
        )
        self._execution_count = 0

        # Worker process state
        self._proc: asyncio.subprocess.Process | None = None
        self._error_file: IO[str] | None = None
        self._request_id = 0
        self._lock = asyncio.Lock()

        self._worker_version: LanguageVersion | None = None
        self._version_override = (
            LanguageVersion.parse(self.settings.language_version)
            if self.settings.language_version
            else None
        )

    # =========================================================================
    # Input buffer
    # =========================================================================

    @property
    def buffer_text(self) -> str:
        return self._buffer

    @property
    def caret(self) -> int:
        return self._caret

    def insert_text(self, text: str) -> None:
        """Type text at the caret."""
        self._buffer = self._buffer[: self._caret] + text + self._buffer[self._caret :]
        self._caret += len(text)

    def move_caret_to_end(self) -> None:
        self._caret = len(self._buffer)

    def clear_input(self) -> None:
        self._buffer = ""
        self._caret = 0

    def can_execute(self, text: str) -> bool:
        """Check if pressing enter on ``text`` would run it.

        The final line break is the fresh line the caret sits on, not an
        entered blank line. Invalid input counts as executable so that the
        error is reported instead of waiting forever for more lines.
        """
        result = check_complete(strip_trailing_line_break(text), self.language_version)
        return result in (ParseResult.COMPLETE, ParseResult.INVALID)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_running(self) -> bool:
        """Check if the worker subprocess is alive."""
        return self._proc is not None and self._proc.returncode is None

    @property
    def language_version(self) -> LanguageVersion | None:
        """Configured version, else the worker's. None before the worker starts."""
        return self._version_override or self._worker_version

    @property
    def history(self) -> list[ExecutionResult]:
        return list(self._history)

    @property
    def execution_count(self) -> int:
        return self._execution_count

    def executions_since(self, index: int) -> list[ExecutionResult]:
        """Executions numbered ``index`` or later that are still in the history."""
        return [r for r in self._history if r.index >= index]

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]:
        """Call ``listener`` each time an execution finishes.

        Returns a function that removes the listener again.
        """
        self._listeners.append(listener)

        def remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    # =========================================================================
    # Execution
    # =========================================================================

    def execute_current_input(self) -> None:
        """Submit the buffer to the worker and return immediately.

        The buffer is cleared and the console stays busy until the execution
        finishes, at which point the ready listeners are called.
        """
        if self._busy:
            raise ConsoleError("Console is already executing")

        source = self._buffer
        self.clear_input()
        index = self._execution_count
        self._execution_count += 1

        self._busy = True
        self._ready.clear()
        self._task = asyncio.get_running_loop().create_task(self._run(index, source))

    async def _run(self, index: int, source: str) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            result = await self._execute(index, source)
        except ConsoleError as e:
            logger.error("Execution %d failed: %s", index, e)
            result = ExecutionResult(
                index=index, code=source, stderr=f"{e}\n", failed=True
            )
        result.duration = round(loop.time() - start, 6)
        self._history.append(result)

        self._busy = False
        self._ready.set()
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Ready listener failed")

    async def _execute(self, index: int, source: str) -> ExecutionResult:
        code = "\n".join(split_lines(source.rstrip("\r\n"))) + "\n"
        await self.start()

        timeout = self.settings.timeout
        try:
            reply = await asyncio.wait_for(self._request("execute", code), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Execution %d timed out after %ss, killing worker", index, timeout
            )
            await self._kill()
            return ExecutionResult(
                index=index,
                code=source,
                stderr=f"Execution timed out after {timeout}s\n",
                failed=True,
                timed_out=True,
            )

        if reply.exited:
            logger.info("Python worker exited on request")
            await self._kill()

        if reply.incomplete:
            return ExecutionResult(
                index=index,
                code=source,
                stdout=reply.stdout,
                stderr=reply.stderr + "Input was incomplete\n",
                failed=True,
            )
        return ExecutionResult(
            index=index,
            code=source,
            stdout=reply.stdout,
            stderr=reply.stderr,
            failed=reply.failed,
        )

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until no execution is running.

        The timeout applies to each execution separately.

        Raises:
            ConsoleTimeoutError: If an execution does not finish in time.
        """
        if timeout is None:
            timeout = self.settings.timeout + _IDLE_GRACE
        while self._busy:
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except asyncio.TimeoutError as e:
                raise ConsoleTimeoutError(
                    f"Console still busy after {timeout}s"
                ) from e

    # =========================================================================
    # Worker lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the worker if it is not running and read its version.

        Raises:
            ConsoleError: If the worker cannot be started or does not answer.
        """
        async with self._lock:
            if self.is_running:
                return
            await self._kill()

            cmd = [self.settings.python, "-u", str(WORKER_PATH)]
            logger.info("Starting Python worker: %s", " ".join(cmd))
            self._error_file = tempfile.TemporaryFile("w+")
            try:
                self._proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=self._error_file,
                    cwd=self.settings.cwd,
                    limit=_STREAM_LIMIT,
                )
            except OSError as e:
                await self._kill()
                raise ConsoleError(f"Failed to start worker: {e}") from e

            try:
                reply = await asyncio.wait_for(
                    self._request("hello"), self.settings.timeout
                )
            except asyncio.TimeoutError as e:
                await self._kill()
                raise ConsoleError("Worker did not answer the handshake") from e

            try:
                self._worker_version = LanguageVersion.parse(reply.version or "")
            except ValueError as e:
                await self._kill()
                raise ConsoleError(f"Worker reported bad version: {reply.version!r}") from e
            logger.info("Python worker started (Python %s)", self._worker_version)

    async def _request(self, op: str, code: str | None = None) -> WorkerReply:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            raise ConsoleError("Worker is not running")
        if proc.stdin is None or proc.stdout is None:
            raise ConsoleError("Worker pipes not initialized")

        self._request_id += 1
        request = WorkerRequest(id=self._request_id, op=op, code=code)
        payload = orjson.dumps(request.model_dump(exclude_none=True)) + b"\n"

        try:
            proc.stdin.write(payload)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ConsoleError(f"Worker pipe closed: {e}") from e

        try:
            line = await proc.stdout.readline()
        except ValueError as e:
            raise ConsoleError(f"Worker reply too large: {e}") from e
        if not line:
            errors = self._read_errors()
            await self._kill()
            raise ConsoleError(f"Worker exited unexpectedly{errors}")

        try:
            reply = WorkerReply.model_validate(orjson.loads(line))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.error("Invalid worker reply: %r", line[:200])
            raise ConsoleError(f"Invalid worker reply: {e}") from e
        if reply.id != request.id:
            raise ConsoleError(
                f"Worker answered request {reply.id}, expected {request.id}"
            )
        return reply

    def _read_errors(self) -> str:
        if self._error_file is None:
            return ""
        self._error_file.seek(0)
        err = self._error_file.read().strip()
        self._error_file.seek(0)
        self._error_file.truncate(0)
        return f": {err}" if err else ""

    async def _kill(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None:
            if proc.stdin is not None:
                proc.stdin.close()
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            logger.info("Python worker killed")
        if self._error_file is not None:
            self._error_file.close()
            self._error_file = None

    async def _cancel_running(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._busy = False
        self._ready.set()

    async def restart(self) -> None:
        """Kill the worker, forget input and history, and start a fresh one."""
        await self._cancel_running()
        async with self._lock:
            await self._kill()
        self.clear_input()
        self._history.clear()
        await self.start()

    async def stop(self) -> None:
        """Shut the worker down, killing it if it does not exit in time."""
        await self._cancel_running()
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.stdin is not None:
            proc.stdin.close()
        try:
            await asyncio.wait_for(proc.wait(), timeout=_STOP_TIMEOUT)
        except asyncio.TimeoutError:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        if self._error_file is not None:
            self._error_file.close()
            self._error_file = None
        logger.info("Python worker stopped")
