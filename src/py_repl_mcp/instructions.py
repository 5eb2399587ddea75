INSTRUCTIONS = """## General Rules
- All line numbers are 1-indexed.
- This MCP does NOT edit files. It types code into one persistent Python console.
- Input is split into top-level statements; each runs as soon as it is complete,
  exactly as if typed at the `>>>` prompt (expression values are echoed).

## Key Tools
- **repl_send_code**: Run Python source. Indentation common to all lines is removed.
- **repl_send_selection**: Run a line range from a file (e.g. one function).
- **repl_send_line**: Step through a file line by line, or cell by cell (`# %%`).
  Omit `line` to continue. A block (if/def/for) runs once the next top-level line
  is sent, or on the extra call after the last line.
- **repl_console_state**: Open input, queued input, Python version, recent output.
- **repl_restart**: Fresh interpreter. Use after a hang or to reset state.

## Output
- `executions[].stdout` / `stderr` hold the output of each statement.
- `failed` = exception or syntax error (traceback in `stderr`).
- Non-empty `buffer` = a block is still open and waiting for more lines.
"""
