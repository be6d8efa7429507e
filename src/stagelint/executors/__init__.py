from stagelint.executors.base import (
    CommandExecutionError,
    CommandExecutor,
    CommandSpawnError,
    CommandTimeoutError,
    ExecutionResult,
)
from stagelint.executors.process import SubprocessExecutor

__all__ = [
    "CommandExecutionError",
    "CommandExecutor",
    "CommandSpawnError",
    "CommandTimeoutError",
    "ExecutionResult",
    "SubprocessExecutor",
]
