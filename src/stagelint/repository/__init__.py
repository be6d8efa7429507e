from stagelint.repository.gateway import (
    ApplyMode,
    GitError,
    GitGateway,
    NotARepositoryError,
    StagingState,
    StashConflictError,
    StashRef,
    StashScope,
)
from stagelint.repository.snapshot import (
    IndexLockedError,
    IsolationError,
    WorkingTreeSnapshot,
    capture_snapshot,
)

__all__ = [
    "ApplyMode",
    "GitError",
    "GitGateway",
    "IndexLockedError",
    "IsolationError",
    "NotARepositoryError",
    "StagingState",
    "StashConflictError",
    "StashRef",
    "StashScope",
    "WorkingTreeSnapshot",
    "capture_snapshot",
]
