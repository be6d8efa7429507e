from __future__ import annotations

from enum import Enum


class StagelintError(RuntimeError):
    """Base class for every error raised by stagelint."""


class FailureKind(str, Enum):
    ISOLATION_FAILED = "isolation_failed"
    INVALID_TASK_DEFINITION = "invalid_task_definition"
    TASK_FAILED = "task_failed"
    EXTERNAL_INTERFERENCE = "external_interference"
    RECONCILIATION_CONFLICT = "reconciliation_conflict"


class RollbackError(StagelintError):
    """Raised when the repository could not be put back to its captured state."""
