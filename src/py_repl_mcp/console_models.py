"""Pydantic models for the worker JSON-lines protocol and console results.

The worker reads one request object per line on stdin and answers with one
reply object per line on stdout:

- ``hello`` reports the interpreter version, nothing is executed
- ``execute`` runs ``code`` as interactive input
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Worker protocol
# ============================================================================


class WorkerRequest(BaseModel):
    """A request sent to the worker subprocess."""

    id: int = Field(description="Request identifier echoed in the reply")
    op: Literal["hello", "execute"] = Field(description="Operation to perform")
    code: Optional[str] = Field(None, description="Source to run (execute only)")


class WorkerReply(BaseModel):
    """A reply read from the worker subprocess."""

    id: int = Field(description="Identifier of the request being answered")
    stdout: str = Field("", description="Captured standard output")
    stderr: str = Field("", description="Captured standard error, tracebacks included")
    failed: bool = Field(False, description="True if the code raised or did not compile")
    incomplete: bool = Field(
        False, description="True if the interpreter wanted more input"
    )
    exited: bool = Field(
        False, description="True if the code called exit(); the worker stops after replying"
    )
    version: Optional[str] = Field(
        None, description="Interpreter version as 'major.minor' (hello only)"
    )


# ============================================================================
# Console results
# ============================================================================


class ExecutionResult(BaseModel):
    """Outcome of one submitted input."""

    index: int = Field(description="Sequence number within the console session")
    code: str = Field(description="Source that was executed")
    stdout: str = Field("", description="Captured standard output")
    stderr: str = Field("", description="Captured standard error")
    failed: bool = Field(False, description="True if execution raised or did not compile")
    timed_out: bool = Field(False, description="True if the worker was killed on timeout")
    duration: float = Field(0.0, description="Wall time in seconds")


class ConsoleState(BaseModel):
    """Snapshot of the console and its submission queue."""

    buffer: str = Field(description="Text typed into the console, not yet executed")
    busy: bool = Field(description="True while an execution is running")
    pending: List[str] = Field(
        default_factory=list, description="Queued input waiting for the console"
    )
    language_version: Optional[str] = Field(
        None, description="Python version used to judge statement boundaries"
    )
    worker_running: bool = Field(description="True if the worker subprocess is alive")
    history: List[ExecutionResult] = Field(
        default_factory=list, description="Most recent executions, oldest first"
    )
