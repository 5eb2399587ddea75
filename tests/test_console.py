"""Tests for the console against a real worker subprocess."""

from __future__ import annotations

import sys
import types

import pytest

from py_repl_mcp import server
from py_repl_mcp.console import SubprocessConsole
from py_repl_mcp.settings import ConsoleSettings
from py_repl_mcp.statements import LanguageVersion
from py_repl_mcp.submission import SubmissionQueue


async def _settle(console: SubprocessConsole, inputs: SubmissionQueue) -> None:
    while console.is_busy or inputs.pending:
        await console.wait_idle(30)


@pytest.fixture
async def console():
    console = SubprocessConsole(ConsoleSettings(python=sys.executable, timeout=20))
    await console.start()
    try:
        yield console
    finally:
        await console.stop()


@pytest.fixture
def inputs(console):
    queue = SubmissionQueue(console, lambda: console.language_version)
    yield queue
    queue.close()


@pytest.mark.asyncio
async def test_handshake_reports_version(console) -> None:
    assert console.is_running
    assert console.language_version == LanguageVersion.current()


@pytest.mark.asyncio
async def test_queue_runs_statements_in_order(console, inputs) -> None:
    inputs.enqueue("x = 20\nprint(x * 2)\nx + 1\n")
    await _settle(console, inputs)

    assert [r.stdout for r in console.history] == ["", "40\n", "21\n"]
    assert not any(r.failed for r in console.history)


@pytest.mark.asyncio
async def test_block_fed_line_by_line(console, inputs) -> None:
    for line in ["total = 0\n", "for i in range(4):\n", "    total += i\n", "print(total)\n"]:
        inputs.enqueue(line)
        await _settle(console, inputs)

    assert [r.code for r in console.history] == [
        "total = 0\n",
        "for i in range(4):\n    total += i\n\n",
        "print(total)\n",
    ]
    assert console.history[-1].stdout == "6\n"


@pytest.mark.asyncio
async def test_error_is_a_failed_result(console, inputs) -> None:
    inputs.enqueue("undefined_name\n")
    await _settle(console, inputs)

    result = console.history[-1]
    assert result.failed
    assert "NameError" in result.stderr


@pytest.mark.asyncio
async def test_syntax_error_is_executed_and_reported(console, inputs) -> None:
    inputs.enqueue("x = = 1\n")
    await _settle(console, inputs)

    assert console.buffer_text == ""
    assert "SyntaxError" in console.history[-1].stderr


@pytest.mark.asyncio
async def test_timeout_kills_worker() -> None:
    console = SubprocessConsole(ConsoleSettings(python=sys.executable, timeout=0.5))
    inputs = SubmissionQueue(console, lambda: console.language_version)
    try:
        await console.start()
        inputs.enqueue("kept = 1\n")
        inputs.enqueue("import time\ntime.sleep(30)\n")
        await _settle(console, inputs)

        assert console.history[-1].timed_out
        assert not console.is_running

        # The next execution gets a fresh interpreter
        inputs.enqueue("kept\n")
        await _settle(console, inputs)
        assert "NameError" in console.history[-1].stderr
    finally:
        inputs.close()
        await console.stop()


@pytest.mark.asyncio
async def test_exit_restarts_lazily(console, inputs) -> None:
    inputs.enqueue("raise SystemExit(0)\n")
    await _settle(console, inputs)
    assert console.history[-1].failed

    inputs.enqueue("print('back')\n")
    await _settle(console, inputs)
    assert console.history[-1].stdout == "back\n"


@pytest.mark.asyncio
async def test_restart_forgets_state(console, inputs) -> None:
    inputs.enqueue("y = 1\n")
    await _settle(console, inputs)

    await console.restart()
    assert console.history == []
    assert console.is_running

    inputs.enqueue("y\n")
    await _settle(console, inputs)
    assert console.history[-1].failed


@pytest.mark.asyncio
async def test_server_tools_end_to_end(monkeypatch) -> None:
    monkeypatch.setenv("PY_REPL_PYTHON", sys.executable)

    async with server.app_lifespan(object()) as app:
        ctx = types.SimpleNamespace(
            request_context=types.SimpleNamespace(lifespan_context=app)
        )
        result = await server.send_code(
            ctx, "def square(n):\n    return n * n\n\nsquare(7)\n"
        )

        assert [e.stdout for e in result.executions] == ["", "49\n"]
        state = server.console_state(ctx)
        assert state.worker_running
        assert state.language_version == str(LanguageVersion.current())

    assert not app.console.is_running
