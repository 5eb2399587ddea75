import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import suppress

import anyio
from py_repl_mcp.server import mcp

_TRANSPORT_CLOSE_HINTS = (
    "transport closed",
    "connection closed",
    "broken pipe",
)

_TRANSPORT_CLOSE_EXCEPTIONS = (
    BrokenPipeError,
    ConnectionResetError,
    EOFError,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    anyio.EndOfStream,
)


def _iter_nested_exceptions(exc: BaseException) -> Iterator[BaseException]:
    stack: list[BaseException] = [exc]
    seen: set[int] = set()

    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        nested = getattr(current, "exceptions", None)
        if isinstance(nested, (tuple, list)):
            stack.extend(e for e in nested if isinstance(e, BaseException))
        stack.extend(
            linked
            for linked in (current.__cause__, current.__context__)
            if isinstance(linked, BaseException)
        )


def _is_transport_closed_error(exc: BaseException) -> bool:
    for current in _iter_nested_exceptions(exc):
        if isinstance(current, _TRANSPORT_CLOSE_EXCEPTIONS):
            return True
        message = str(current).lower()
        if any(hint in message for hint in _TRANSPORT_CLOSE_HINTS):
            return True
    return False


def _silence_stdout() -> None:
    with suppress(Exception):
        sys.stdout.flush()

    with suppress(Exception):
        sys.stdout = open(os.devnull, "w", encoding="utf-8")


def main():
    parser = argparse.ArgumentParser(description="Python REPL MCP Server")
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "streamable-http", "sse"],
        default="stdio",
        help="Transport method for the server. Default is 'stdio'.",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host address for transport",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Host port for transport",
    )
    parser.add_argument(
        "--python",
        type=str,
        help="Interpreter that runs the console (default: the one running this server)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Execution timeout in seconds (default: 60)",
    )
    parser.add_argument(
        "--language-version",
        type=str,
        help="Python version used to split statements, e.g. 3.8 "
        "(default: version of the console interpreter)",
    )
    args = parser.parse_args()

    # Set env vars from CLI args (CLI takes precedence over env vars)
    if args.python:
        os.environ["PY_REPL_PYTHON"] = args.python
    if args.timeout:
        os.environ["PY_REPL_TIMEOUT"] = str(args.timeout)
    if args.language_version:
        os.environ["PY_REPL_LANGUAGE_VERSION"] = args.language_version

    mcp.settings.host = args.host
    mcp.settings.port = args.port
    try:
        mcp.run(transport=args.transport)
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        if args.transport == "stdio" and _is_transport_closed_error(exc):
            _silence_stdout()
            return 0
        raise
    return 0
