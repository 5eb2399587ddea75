import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, Field
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger, configure_logging
from mcp.types import ToolAnnotations

from py_repl_mcp.command import SendOutcome, send_to_console
from py_repl_mcp.console import ConsoleError, ConsoleTimeoutError, SubprocessConsole
from py_repl_mcp.console_models import ConsoleState, ExecutionResult
from py_repl_mcp.instructions import INSTRUCTIONS
from py_repl_mcp.settings import ConsoleSettings
from py_repl_mcp.source import SourceView, read_source
from py_repl_mcp.submission import SubmissionQueue


# Pydantic models for structured tool outputs
class SendResult(BaseModel):
    """Result of sending input to the console."""
    text: Optional[str] = Field(None, description="Text that was sent (None if nothing was left to send)")
    executions: List[ExecutionResult] = Field(default_factory=list, description="Statements executed by this call")
    buffer: str = Field("", description="Input typed into the console but not executed yet (open block)")
    pending: int = Field(0, description="Queued inputs still waiting for the console")
    next_line: Optional[int] = Field(None, description="Caret line after the call (1-indexed, line mode)")
    finished: bool = Field(False, description="True once the last line of the file has been sent")


class ReplToolError(Exception):
    """Error during console tool execution."""
    pass


_LOG_LEVEL = os.environ.get("PY_REPL_LOG_LEVEL", "INFO")
configure_logging("CRITICAL" if _LOG_LEVEL == "NONE" else _LOG_LEVEL)
logger = get_logger(__name__)


# Server and context
@dataclass
class AppContext:
    settings: ConsoleSettings
    console: SubprocessConsole
    inputs: SubmissionQueue
    views: Dict[Path, SourceView] = field(default_factory=dict)


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    # Read again: the CLI exports its flags as env vars after import.
    settings = ConsoleSettings()
    console = SubprocessConsole(settings)
    inputs = SubmissionQueue(
        console, lambda: console.language_version, newline=settings.newline
    )
    context = AppContext(settings=settings, console=console, inputs=inputs)
    try:
        yield context
    finally:
        logger.info("Stopping Python console")
        inputs.close()
        await context.console.stop()


mcp = FastMCP(
    name="Python REPL",
    instructions=INSTRUCTIONS,
    lifespan=app_lifespan,
)


def _app(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context


async def _ensure_started(app: AppContext) -> None:
    try:
        await app.console.start()
    except ConsoleError as e:
        raise ReplToolError(f"Python console unavailable: {e}") from e


async def _settle(app: AppContext) -> None:
    """Wait until the console is idle and nothing is queued."""
    try:
        while app.console.is_busy or app.inputs.pending:
            await app.console.wait_idle()
            if not app.console.is_busy and app.inputs.pending:
                app.inputs.process_queued()
    except ConsoleTimeoutError as e:
        raise ReplToolError(str(e)) from e


async def _send(
    app: AppContext,
    send: Callable[[], SendOutcome],
    submit: bool = False,
    view: SourceView | None = None,
) -> SendResult:
    await _ensure_started(app)
    first = app.console.execution_count

    outcome = send()
    await _settle(app)

    # Enter an empty line so a trailing compound statement runs too.
    if submit and app.console.buffer_text.strip():
        app.inputs.enqueue(app.settings.newline)
        await _settle(app)

    return SendResult(
        text=outcome.text,
        executions=app.console.executions_since(first),
        buffer=app.console.buffer_text,
        pending=len(app.inputs.pending),
        next_line=outcome.caret_line + 1 if view is not None else None,
        finished=outcome.finished,
    )


def _load_view(app: AppContext, file_path: str) -> SourceView:
    """Get the stepping view of a file, refreshed from disk."""
    path = Path(file_path).resolve()
    view = app.views.get(path)
    try:
        if view is None:
            view = SourceView.from_file(path, cell_marker=app.settings.cell_marker)
            app.views[path] = view
        else:
            view.reload(read_source(path))
    except FileNotFoundError as e:
        raise ReplToolError(f"File `{file_path}` does not exist.") from e
    except OSError as e:
        raise ReplToolError(f"Cannot read `{file_path}`: {e}") from e
    return view


@mcp.tool(
    "repl_send_code",
    annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=False),
)
async def send_code(
    ctx: Context,
    code: Annotated[str, Field(description="Python source, one or more statements")],
    submit: Annotated[
        bool,
        Field(description="Close a trailing compound statement (if/def/for...) so it runs"),
    ] = True,
) -> SendResult:
    """Type Python code into the console, one top-level statement at a time.

    Each complete statement is executed as soon as it is typed; expression
    values are echoed as at the `>>>` prompt. State persists between calls.
    """
    app = _app(ctx)
    view = SourceView.from_text(code, cell_marker=app.settings.cell_marker)
    view.select(0, view.last_line)
    return await _send(
        app,
        lambda: send_to_console(view, app.console, app.inputs, app.settings.newline),
        submit=submit,
    )


@mcp.tool(
    "repl_send_selection",
    annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=False),
)
async def send_selection(
    ctx: Context,
    file_path: Annotated[str, Field(description="Absolute path to Python file")],
    start_line: Annotated[int, Field(description="First line to send (1-indexed)", ge=1)],
    end_line: Annotated[int, Field(description="Last line to send (1-indexed, inclusive)", ge=1)],
    submit: Annotated[
        bool,
        Field(description="Close a trailing compound statement (if/def/for...) so it runs"),
    ] = True,
) -> SendResult:
    """Send a range of lines from a file to the console.

    Indentation common to the range is removed, so a method body or the inside
    of a block can be sent on its own.
    """
    app = _app(ctx)
    view = _load_view(app, file_path)
    try:
        view.select(start_line - 1, end_line - 1)
    except ValueError as e:
        raise ReplToolError(str(e)) from e

    try:
        return await _send(
            app,
            lambda: send_to_console(view, app.console, app.inputs, app.settings.newline),
            submit=submit,
        )
    finally:
        view.clear_selection()


@mcp.tool(
    "repl_send_line",
    annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=False),
)
async def send_line(
    ctx: Context,
    file_path: Annotated[str, Field(description="Absolute path to Python file")],
    line: Annotated[
        Optional[int],
        Field(description="Line to send (1-indexed). Omit to continue where the last call stopped.", ge=1),
    ] = None,
) -> SendResult:
    """Step through a file: send the current line (or `# %%` cell) and advance.

    The caret skips blank lines. A block stays open in the console until the
    next top-level statement arrives; after the last line one more call
    flushes it. `finished` turns true at the end of the file.
    """
    app = _app(ctx)
    view = _load_view(app, file_path)
    if line is not None:
        if line - 1 > view.last_line:
            raise ReplToolError(
                f"Line {line} out of range (file has {len(view.lines)} lines)"
            )
        view.move_caret(line - 1)

    return await _send(
        app,
        lambda: send_to_console(view, app.console, app.inputs, app.settings.newline),
        view=view,
    )


def _state(app: AppContext, history: int | None = None) -> ConsoleState:
    executions = app.console.history
    if history is not None:
        executions = executions[-history:] if history > 0 else []
    version = app.console.language_version
    return ConsoleState(
        buffer=app.console.buffer_text,
        busy=app.console.is_busy,
        pending=app.inputs.pending,
        language_version=str(version) if version else None,
        worker_running=app.console.is_running,
        history=executions,
    )


@mcp.tool(
    "repl_console_state",
    annotations=ToolAnnotations(readOnlyHint=True, idempotentHint=True),
)
def console_state(
    ctx: Context,
    history: Annotated[
        int, Field(description="Number of recent executions to include", ge=0)
    ] = 10,
) -> ConsoleState:
    """Show the open input, queued input, Python version and recent executions."""
    return _state(_app(ctx), history)


@mcp.tool(
    "repl_restart",
    annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True),
)
async def restart(ctx: Context) -> ConsoleState:
    """Restart the Python process. All variables, open input and history are lost."""
    app = _app(ctx)
    app.inputs.clear()
    for view in app.views.values():
        view.executed_last_line = False
    try:
        await app.console.restart()
    except ConsoleError as e:
        raise ReplToolError(f"Python console unavailable: {e}") from e
    logger.info("Restarted Python console")
    return _state(app)
