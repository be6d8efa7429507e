from __future__ import annotations

import logging
from collections.abc import Sequence

from stagelint.errors import StagelintError
from stagelint.repository.gateway import (
    ApplyMode,
    GitError,
    GitGateway,
    StashConflictError,
)
from stagelint.repository.snapshot import WorkingTreeSnapshot
from stagelint.tasks import TaskChain

logger = logging.getLogger(__name__)


class ReconciliationConflictError(StagelintError):
    """Raised when task modifications cannot be merged with preserved unstaged edits."""


def modified_files(chains: Sequence[TaskChain]) -> list[str]:
    files: list[str] = []
    seen: set[str] = set()
    for chain in chains:
        for path in chain.files:
            if path not in seen:
                seen.add(path)
                files.append(path)
    return files


def reconcile(
    gateway: GitGateway,
    snapshot: WorkingTreeSnapshot,
    chains: Sequence[TaskChain],
) -> list[str]:
    """Stage task modifications, then bring back the hidden unstaged edits.

    Returns the files that were re-staged. The backup taken at snapshot time is
    consumed here on success; on failure it is left for recovery.
    """
    files = modified_files(chains)
    try:
        gateway.stage_files(files)
    except GitError as exc:
        raise ReconciliationConflictError(f"Unable to stage task modifications: {exc}") from exc
    logger.debug("Re-staged %d file(s) after tasks", len(files))

    stash = snapshot.stash
    if stash is None:
        return files
    try:
        gateway.apply_stash(stash, ApplyMode.RESTORE_UNSTAGED_ON_TOP_OF_CURRENT)
    except StashConflictError as exc:
        raise ReconciliationConflictError(str(exc)) from exc
    except GitError as exc:
        raise ReconciliationConflictError(f"Unable to restore unstaged changes: {exc}") from exc
    gateway.discard_stash(stash)
    logger.debug("Restored unstaged edits of %d file(s)", len(stash.paths))
    return files
