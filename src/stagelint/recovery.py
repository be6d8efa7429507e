from __future__ import annotations

import logging

from stagelint.errors import RollbackError
from stagelint.repository.gateway import BACKUP_REF, ApplyMode, GitError, GitGateway
from stagelint.repository.snapshot import WorkingTreeSnapshot

logger = logging.getLogger(__name__)


def recover(gateway: GitGateway, snapshot: WorkingTreeSnapshot) -> list[str]:
    """Return index and work tree to exactly what ``snapshot`` recorded.

    Returns the paths that had to be rewritten or removed.
    """
    logger.warning("Restoring the repository to its state before the run")
    stash = snapshot.stash
    try:
        if stash is not None and not stash.consumed:
            touched = list(stash.patches)
            gateway.apply_stash(stash, ApplyMode.RESTORE_EVERYTHING)
            return touched
        return gateway.restore_trees(
            snapshot.index_tree, snapshot.worktree_tree, snapshot.untracked
        )
    except GitError as exc:
        logger.error("Rollback failed: %s", exc)
        hint = f" A backup commit is kept at {BACKUP_REF}." if stash is not None else ""
        raise RollbackError(
            f"Unable to restore the repository: {exc}. Index tree {snapshot.index_tree}, "
            f"work tree {snapshot.worktree_tree}.{hint}"
        ) from exc
