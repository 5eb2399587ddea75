"""Interactive interpreter driven over JSON lines.

Started by :class:`py_repl_mcp.console.SubprocessConsole` with the configured
interpreter, so it must run on a bare Python: standard library only and no
imports from this package.

Protocol (one JSON object per line):
    -> {"id": 1, "op": "hello"}
    <- {"id": 1, "version": "3.12", ...}
    -> {"id": 2, "op": "execute", "code": "print(1)\\n"}
    <- {"id": 2, "stdout": "1\\n", "stderr": "", "failed": false, "incomplete": false, "exited": false}
"""

import code
import io
import json
import sys


class _Interpreter(code.InteractiveInterpreter):
    """InteractiveInterpreter that remembers whether the last input failed."""

    def __init__(self):
        super().__init__({"__name__": "__console__", "__doc__": None})
        self.failed = False

    def showsyntaxerror(self, filename=None, **kwargs):
        self.failed = True
        super().showsyntaxerror(filename, **kwargs)

    def showtraceback(self):
        self.failed = True
        super().showtraceback()


def _reply(out, request_id, **fields):
    payload = {
        "id": request_id,
        "stdout": "",
        "stderr": "",
        "failed": False,
        "incomplete": False,
        "exited": False,
        "version": None,
    }
    payload.update(fields)
    out.write(json.dumps(payload) + "\n")
    out.flush()


def _execute(interp, source):
    """Run one input. Returns the reply fields and whether to keep going."""
    stdout, stderr = io.StringIO(), io.StringIO()
    saved = sys.stdout, sys.stderr, sys.stdin
    sys.stdout, sys.stderr, sys.stdin = stdout, stderr, io.StringIO()
    interp.failed = False
    keep_running = True
    try:
        more = interp.runsource(source, "<console>", "single")
    except SystemExit as e:
        more = False
        interp.failed = True
        keep_running = False
        stderr.write(f"SystemExit: {e.code}\n")
    finally:
        sys.stdout, sys.stderr, sys.stdin = saved

    fields = {
        "stdout": stdout.getvalue(),
        "stderr": stderr.getvalue(),
        "failed": interp.failed,
        "incomplete": bool(more),
        "exited": not keep_running,
    }
    return fields, keep_running


def serve(stdin, stdout):
    interp = _Interpreter()
    version = f"{sys.version_info[0]}.{sys.version_info[1]}"

    for line in stdin:
        if not line.strip():
            continue
        try:
            request = json.loads(line)
            request_id = int(request["id"])
            op = request["op"]
        except (ValueError, KeyError, TypeError) as e:
            _reply(stdout, -1, failed=True, stderr=f"Bad request: {e}\n")
            continue

        if op == "hello":
            _reply(stdout, request_id, version=version)
        elif op == "execute":
            fields, keep_running = _execute(interp, request.get("code") or "")
            _reply(stdout, request_id, **fields)
            if not keep_running:
                return
        else:
            _reply(stdout, request_id, failed=True, stderr=f"Unknown op: {op}\n")


def main():
    serve(sys.stdin, sys.stdout)


if __name__ == "__main__":
    main()
