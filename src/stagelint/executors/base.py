from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from stagelint.errors import StagelintError


class CommandExecutionError(StagelintError):
    """Raised when a task command cannot be run to completion."""

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class CommandSpawnError(CommandExecutionError):
    """Raised when the command process cannot be started."""


class CommandTimeoutError(CommandExecutionError):
    """Raised when a command exceeds the configured step timeout."""


@dataclass(slots=True)
class ExecutionResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class CommandExecutor(ABC):
    @abstractmethod
    async def execute(self, command: str, cwd: Path) -> ExecutionResult:
        """Run one command in ``cwd`` and capture its exit status and output."""
