from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from stagelint.errors import RollbackError, StagelintError
from stagelint.repository.gateway import (
    BACKUP_REF,
    ApplyMode,
    GitError,
    GitGateway,
    StashRef,
    StashScope,
)

logger = logging.getLogger(__name__)


class IsolationError(StagelintError):
    """Raised when staged content cannot be separated from unstaged edits."""


class IndexLockedError(StagelintError):
    """Raised when another git process already holds the index lock."""


@dataclass(frozen=True, slots=True)
class WorkingTreeSnapshot:
    head_commit: str | None
    index_tree: str
    worktree_tree: str
    staged_files: tuple[str, ...]
    untracked: tuple[str, ...]
    has_partial_staging: bool
    stash: StashRef | None
    lock_observed: bool


def capture_snapshot(
    gateway: GitGateway,
    staged_files: Sequence[str] | None = None,
) -> WorkingTreeSnapshot:
    """Record the repository state and hide unstaged edits of partially staged files.

    After this returns, every tracked file in the work tree holds exactly its
    staged content whenever some file had both staged and unstaged changes.
    """
    lock_observed = gateway.is_index_locked()
    if lock_observed:
        raise IndexLockedError(
            f"{gateway.index_lock_file} exists. Another git process seems to be running "
            "in this repository; remove the lock file if that process has crashed."
        )

    try:
        head_commit = gateway.current_head()
        staged = tuple(staged_files if staged_files is not None else gateway.staged_files())
        states = gateway.diff_staged_status()
        index_tree = gateway.write_index_tree()
        worktree_tree = gateway.write_worktree_tree(index_tree)
        untracked = tuple(gateway.untracked_files())
    except GitError as exc:
        raise IsolationError(f"Unable to record repository state: {exc}") from exc

    has_partial_staging = any(state.partial for state in states.values())
    stash: StashRef | None = None
    if has_partial_staging:
        unstaged = sorted(path for path, state in states.items() if state.unstaged)
        try:
            stash = gateway.create_stash(
                StashScope.WORKING_TREE_ONLY,
                index_tree=index_tree,
                worktree_tree=worktree_tree,
                paths=unstaged,
                untracked=untracked,
            )
            if stash is not None:
                gateway.hide_unstaged(stash.paths)
        except GitError as exc:
            if stash is not None:
                try:
                    gateway.apply_stash(stash, ApplyMode.RESTORE_EVERYTHING)
                except GitError as restore_exc:
                    logger.error("Restoring unstaged changes failed: %s", restore_exc)
                    raise RollbackError(
                        "Unable to restore unstaged changes after a failed isolation: "
                        f"{restore_exc}. A backup commit is kept at {BACKUP_REF}."
                    ) from restore_exc
            raise IsolationError(f"Unable to hide unstaged changes: {exc}") from exc
        logger.debug(
            "Hid unstaged changes of %d partially staged file(s)",
            len(stash.paths) if stash else 0,
        )

    return WorkingTreeSnapshot(
        head_commit=head_commit,
        index_tree=index_tree,
        worktree_tree=worktree_tree,
        staged_files=staged,
        untracked=untracked,
        has_partial_staging=has_partial_staging,
        stash=stash,
        lock_observed=lock_observed,
    )
