"""
Result records returned by sandbox command operations.
"""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class CommandResult:
    """Complete output of a short command."""

    stdout: str
    stderr: str


@dataclass(frozen=True)
class OutputChunk:
    """One incremental piece of output from a streaming command."""

    stream: Literal["stdout", "stderr"]
    text: str


@dataclass(frozen=True)
class CommandExit:
    """Terminal record of a streaming command; always the last item yielded."""

    exit_code: int
    task_id: str
    process_id: int


@dataclass(frozen=True)
class LongCommandResult:
    """Accumulated output of a long-running command."""

    stdout: str
    stderr: str
    exit_code: int
