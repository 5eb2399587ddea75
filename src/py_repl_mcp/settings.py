"""Console settings configuration.

Environment variables:
    PY_REPL_PYTHON - Interpreter used for the worker (default: this interpreter)
    PY_REPL_TIMEOUT - Execution timeout in seconds (default: 60)
    PY_REPL_LANGUAGE_VERSION - Grammar used to split statements, e.g. "3.8"
        (default: the worker interpreter's version)
    PY_REPL_NEWLINE - Line break typed into the console: lf, crlf or cr (default: lf)
    PY_REPL_CELL_MARKER - Regex matching cell marker lines
    PY_REPL_HISTORY_LIMIT - Executions kept for status reports (default: 100)
    PY_REPL_CWD - Working directory of the worker
"""

import re
import sys
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CELL_MARKER = r"^\s*#\s*(%%|<codecell>|In\[\d*\]:)"

_NEWLINE_NAMES = {"lf": "\n", "crlf": "\r\n", "cr": "\r"}


class ConsoleSettings(BaseSettings):
    """Configuration for the console and the send command."""

    python: str = sys.executable
    timeout: float = 60  # seconds per execution
    language_version: str | None = None
    newline: str = "\n"
    cell_marker: str = DEFAULT_CELL_MARKER
    history_limit: int = 100

    cwd: Path | None = None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="PY_REPL_"
    )

    @field_validator("newline", mode="before")
    @classmethod
    def _parse_newline(cls, v: str) -> str:
        if v in _NEWLINE_NAMES.values():
            return v
        name = v.strip().lower().replace("\\r", "cr").replace("\\n", "lf")
        if name in _NEWLINE_NAMES:
            return _NEWLINE_NAMES[name]
        raise ValueError("newline must be one of lf, crlf, cr")

    @field_validator("language_version", mode="before")
    @classmethod
    def _parse_language_version(cls, v: str | None) -> str | None:
        if v is None or (isinstance(v, str) and v.strip() == ""):
            return None
        if not re.fullmatch(r"\s*\d+\.\d+(\.\d+)?\s*", str(v)):
            raise ValueError("language_version must look like '3.11'")
        return str(v).strip()

    @field_validator("cell_marker")
    @classmethod
    def _check_cell_marker(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"cell_marker is not a valid regex: {e}") from e
        return v

    @field_validator("timeout", "history_limit")
    @classmethod
    def _check_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


# Global settings instance
console_settings = ConsoleSettings()
