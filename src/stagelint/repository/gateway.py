from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from stagelint.chunking import chunk_paths
from stagelint.errors import StagelintError

logger = logging.getLogger(__name__)

NOT_A_REPOSITORY_MESSAGE = "Current directory is not a git directory!"
BACKUP_REF = "refs/stagelint/backup"
BACKUP_MESSAGE = "stagelint automatic backup"
GIT_ARG_LENGTH = 8000

DIFF_ARGS = [
    "diff",
    "--binary",
    "--unified=0",
    "--no-color",
    "--no-ext-diff",
    "--src-prefix=a/",
    "--dst-prefix=b/",
    "--patch",
    "--submodule=short",
]
APPLY_ARGS = ["apply", "-v", "--whitespace=nowarn", "--recount", "--unidiff-zero"]

SYMLINK_MODE = "120000"
GITLINK_MODE = "160000"
EXECUTABLE_MODE = "100755"


class NotARepositoryError(StagelintError):
    """Raised when the working directory is not inside a git work tree."""

    def __init__(self, message: str = NOT_A_REPOSITORY_MESSAGE) -> None:
        super().__init__(message)


class GitError(StagelintError):
    """Raised when a git invocation fails."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.exit_code = exit_code
        self.stderr = stderr


class StashConflictError(GitError):
    """Raised when preserved unstaged edits cannot be laid over the current tree."""


class StashScope(str, Enum):
    WORKING_TREE_ONLY = "working_tree_only"


class ApplyMode(str, Enum):
    RESTORE_UNSTAGED_ON_TOP_OF_CURRENT = "restore_unstaged_on_top_of_current"
    RESTORE_EVERYTHING = "restore_everything"


@dataclass(frozen=True, slots=True)
class StagingState:
    staged: bool
    unstaged: bool

    @property
    def partial(self) -> bool:
        return self.staged and self.unstaged


@dataclass(slots=True)
class StashRef:
    """Handle to preserved unstaged edits, consumed exactly once."""

    commit: str
    index_tree: str
    worktree_tree: str
    patches: dict[str, bytes] = field(default_factory=dict)
    untracked: tuple[str, ...] = ()
    consumed: bool = False

    @property
    def paths(self) -> list[str]:
        return list(self.patches)


def _split_nul(data: bytes) -> list[str]:
    return [os.fsdecode(item) for item in data.split(b"\0") if item]


def _restore_conflict(path: str) -> StashConflictError:
    return StashConflictError(
        f"Unstaged changes to {path} could not be restored due to a merge conflict!"
    )


class GitGateway:
    """Serialized access to the git index and work tree of one repository."""

    def __init__(self, cwd: Path) -> None:
        self.cwd = Path(cwd).resolve()
        self._env = os.environ.copy()
        self._env["GIT_LITERAL_PATHSPECS"] = "1"
        self._lock = threading.RLock()
        if not self.cwd.is_dir():
            raise NotARepositoryError()
        proc = self._run_git(["rev-parse", "--is-inside-work-tree"], cwd=self.cwd, check=False)
        if proc.returncode != 0 or proc.stdout.strip() != b"true":
            raise NotARepositoryError()
        self.repo_root = Path(self._text(["rev-parse", "--show-toplevel"], cwd=self.cwd)).resolve()
        self.git_dir = Path(self._text(["rev-parse", "--absolute-git-dir"], cwd=self.cwd))
        index_file = Path(self._text(["rev-parse", "--git-path", "index"], cwd=self.cwd))
        if not index_file.is_absolute():
            index_file = self.cwd / index_file
        self.index_file = index_file.resolve()
        self.index_lock_file = self.index_file.with_name(self.index_file.name + ".lock")

    def _run_git(
        self,
        args: list[str],
        *,
        input_bytes: bytes | None = None,
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[bytes]:
        command = ["git", "--no-pager", *args]
        logger.debug("git %s", " ".join(args))
        proc = subprocess.run(
            command,
            cwd=cwd if cwd is not None else self.repo_root,
            input=input_bytes,
            env=env if env is not None else self._env,
            capture_output=True,
        )
        if check and proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            stdout = proc.stdout.decode("utf-8", errors="replace").strip()
            raise GitError(
                stderr or stdout or f"git {args[0]} exited with code {proc.returncode}",
                command=command,
                exit_code=proc.returncode,
                stderr=stderr,
            )
        return proc

    def _text(self, args: list[str], **kwargs) -> str:
        return self._run_git(args, **kwargs).stdout.decode("utf-8", errors="replace").strip()

    def _identity_env(self) -> dict[str, str]:
        env = dict(self._env)
        env.update(
            {
                "GIT_AUTHOR_NAME": "stagelint",
                "GIT_AUTHOR_EMAIL": "stagelint@localhost",
                "GIT_COMMITTER_NAME": "stagelint",
                "GIT_COMMITTER_EMAIL": "stagelint@localhost",
            }
        )
        return env

    # ------------------------------------------------------------------ queries

    def current_head(self) -> str | None:
        proc = self._run_git(["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.decode("utf-8").strip() or None

    def staged_files(self) -> list[str]:
        proc = self._run_git(["diff", "--staged", "--diff-filter=ACMR", "--name-only", "-z"])
        return _split_nul(proc.stdout)

    def diff_staged_status(self) -> dict[str, StagingState]:
        proc = self._run_git(["status", "--porcelain", "-z", "--untracked-files=no"])
        entries = proc.stdout.split(b"\0")
        states: dict[str, StagingState] = {}
        position = 0
        while position < len(entries):
            entry = entries[position]
            position += 1
            if len(entry) < 4:
                continue
            index_status = chr(entry[0])
            worktree_status = chr(entry[1])
            if index_status in "RC" or worktree_status in "RC":
                # Renames and copies are followed by their source path.
                position += 1
            states[os.fsdecode(entry[3:])] = StagingState(
                staged=index_status not in " ?!",
                unstaged=worktree_status not in " ?!",
            )
        return states

    def untracked_files(self) -> list[str]:
        proc = self._run_git(["ls-files", "--others", "--exclude-standard", "-z"])
        return _split_nul(proc.stdout)

    def is_index_locked(self) -> bool:
        with self._lock:
            return self.index_lock_file.exists()

    def write_index_tree(self) -> str:
        with self._lock:
            return self._text(["write-tree"])

    def write_worktree_tree(self, index_tree: str) -> str:
        """Record the tracked work tree as a tree object using a throwaway index."""
        with tempfile.TemporaryDirectory(prefix="stagelint-index-") as scratch:
            env = dict(self._env)
            env["GIT_INDEX_FILE"] = str(Path(scratch) / "index")
            self._run_git(["read-tree", index_tree], env=env)
            self._run_git(["add", "--update"], env=env)
            return self._text(["write-tree"], env=env)

    # ------------------------------------------------------------ work tree io

    def _tree_entry(self, tree: str, path: str) -> tuple[str, str] | None:
        proc = self._run_git(["ls-tree", "-z", "--full-tree", tree, "--", path])
        for record in proc.stdout.split(b"\0"):
            if not record:
                continue
            meta, _, name = record.partition(b"\t")
            if os.fsdecode(name) != path:
                continue
            mode, _object_type, sha = meta.decode("ascii").split(" ")
            return mode, sha
        return None

    def _read_blob(self, entry: tuple[str, str], path: str) -> bytes:
        mode, sha = entry
        if mode == SYMLINK_MODE:
            return self._run_git(["cat-file", "blob", sha]).stdout
        return self._run_git(["cat-file", "--filters", f"--path={path}", sha]).stdout

    def read_tree_file(self, tree: str, path: str) -> bytes | None:
        entry = self._tree_entry(tree, path)
        if entry is None or entry[0] == GITLINK_MODE:
            return None
        return self._read_blob(entry, path)

    def read_worktree_file(self, path: str) -> bytes | None:
        target = self.repo_root / path
        if target.is_symlink():
            return os.fsencode(os.readlink(target))
        if target.is_file():
            return target.read_bytes()
        return None

    @staticmethod
    def _remove_path(target: Path) -> None:
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)

    def _write_tree_file(self, tree: str, path: str) -> bool:
        target = self.repo_root / path
        entry = self._tree_entry(tree, path)
        if entry is None:
            if target.exists() or target.is_symlink():
                self._remove_path(target)
                return True
            return False
        mode, _sha = entry
        if mode == GITLINK_MODE:
            return False

        content = self._read_blob(entry, path)
        if mode == SYMLINK_MODE:
            if target.is_symlink() and os.fsencode(os.readlink(target)) == content:
                return False
            self._remove_path(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(os.fsdecode(content), target)
            return True

        executable = mode == EXECUTABLE_MODE
        if target.is_symlink() or target.is_dir():
            self._remove_path(target)
        if target.is_file() and target.read_bytes() == content:
            return self._set_executable(target, executable)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        self._set_executable(target, executable)
        return True

    @staticmethod
    def _set_executable(target: Path, executable: bool) -> bool:
        current_mode = target.stat().st_mode
        if bool(current_mode & 0o100) == executable:
            return False
        if executable:
            target.chmod(current_mode | 0o111)
        else:
            target.chmod(current_mode & ~0o111)
        return True

    def _sync_file_mode(self, tree: str, path: str) -> None:
        entry = self._tree_entry(tree, path)
        target = self.repo_root / path
        if entry is None or entry[0] in (SYMLINK_MODE, GITLINK_MODE):
            return
        if target.is_symlink() or not target.is_file():
            return
        if self._set_executable(target, entry[0] == EXECUTABLE_MODE):
            logger.debug("Restored the executable bit of %s", path)

    # ---------------------------------------------------------------- mutation

    def hide_unstaged(self, paths: list[str]) -> None:
        """Overwrite ``paths`` in the work tree with their staged content."""
        if not paths:
            return
        payload = b"".join(os.fsencode(path) + b"\0" for path in paths)
        with self._lock:
            self._run_git(["checkout-index", "--force", "-z", "--stdin"], input_bytes=payload)

    def stage_files(self, paths: list[str]) -> None:
        if not paths:
            return
        with self._lock:
            tracked = set(self._tracked_files(paths))
            present = [
                path
                for path in paths
                if path in tracked or (self.repo_root / path).exists()
            ]
            for chunk in chunk_paths(present, GIT_ARG_LENGTH):
                self._run_git(["add", "--all", "--", *chunk])

    def _tracked_files(self, paths: list[str]) -> list[str]:
        tracked: list[str] = []
        for chunk in chunk_paths(paths, GIT_ARG_LENGTH):
            proc = self._run_git(["ls-files", "-z", "--", *chunk])
            tracked.extend(_split_nul(proc.stdout))
        return tracked

    def _commit_backup(self, index_tree: str, worktree_tree: str) -> str:
        env = self._identity_env()
        head = self.current_head()
        parents = ["-p", head] if head else []
        index_commit = self._text(
            ["commit-tree", index_tree, *parents, "-m", f"index on {BACKUP_MESSAGE}"],
            env=env,
        )
        return self._text(
            ["commit-tree", worktree_tree, "-p", index_commit, "-m", BACKUP_MESSAGE],
            env=env,
        )

    def create_stash(
        self,
        scope: StashScope,
        *,
        index_tree: str,
        worktree_tree: str,
        paths: list[str],
        untracked: tuple[str, ...] = (),
    ) -> StashRef | None:
        """Preserve the unstaged edits of ``paths`` without touching the index.

        Returns ``None`` when there is nothing to preserve.
        """
        if scope is not StashScope.WORKING_TREE_ONLY:
            raise ValueError(f"Unsupported stash scope: {scope}")
        if not paths or index_tree == worktree_tree:
            return None

        with self._lock:
            patches: dict[str, bytes] = {}
            for path in paths:
                proc = self._run_git([*DIFF_ARGS, "--", path])
                if proc.stdout:
                    patches[path] = proc.stdout
            if not patches:
                return None

            existing = self._run_git(
                ["rev-parse", "--verify", "--quiet", BACKUP_REF], check=False
            )
            if existing.returncode == 0:
                logger.warning("Replacing stale backup left at %s by an earlier run", BACKUP_REF)
            commit = self._commit_backup(index_tree, worktree_tree)
            self._run_git(
                ["update-ref", "--create-reflog", "-m", BACKUP_MESSAGE, BACKUP_REF, commit]
            )
        logger.debug("Preserved unstaged edits of %d file(s) in %s", len(patches), commit)
        return StashRef(
            commit=commit,
            index_tree=index_tree,
            worktree_tree=worktree_tree,
            patches=patches,
            untracked=tuple(untracked),
        )

    def apply_stash(self, ref: StashRef, mode: ApplyMode) -> None:
        if ref.consumed:
            raise GitError(f"Backup {ref.commit} has already been consumed.")
        with self._lock:
            if mode is ApplyMode.RESTORE_EVERYTHING:
                self.restore_trees(ref.index_tree, ref.worktree_tree, ref.untracked)
                self._drop_backup_ref(ref)
                return
            for path in ref.paths:
                self._restore_unstaged_file(ref, path)

    def _restore_unstaged_file(self, ref: StashRef, path: str) -> None:
        target = self.read_tree_file(ref.worktree_tree, path)
        current = self.read_worktree_file(path)
        if target == current:
            logger.debug("Unstaged edits of %s already match the work tree", path)
        else:
            base = self.read_tree_file(ref.index_tree, path)
            if current == base:
                # Untouched by the tasks, so the saved file goes back as it was.
                self._write_tree_file(ref.worktree_tree, path)
                return
            if (
                current is None
                or target is None
                or base is None
                or (self.repo_root / path).is_symlink()
            ):
                raise _restore_conflict(path)
            merged = self._merge_file(current, base, target)
            if merged is not None:
                (self.repo_root / path).write_bytes(merged)
            else:
                self._apply_unstaged_patch(ref, path, current, base)
        self._sync_file_mode(ref.worktree_tree, path)

    def _apply_unstaged_patch(
        self,
        ref: StashRef,
        path: str,
        current: bytes,
        base: bytes,
    ) -> None:
        """Lay zero-context hunks over ``path`` when the tasks kept its line count.

        This resolves edits on lines adjacent to task changes, which a three-way
        merge reports as conflicts.
        """
        # Hunks address lines by number.
        if current.count(b"\n") != base.count(b"\n"):
            raise _restore_conflict(path)
        proc = self._run_git([*APPLY_ARGS, "-"], input_bytes=ref.patches[path], check=False)
        if proc.returncode != 0:
            logger.debug(
                "git apply failed for %s: %s",
                path,
                proc.stderr.decode("utf-8", errors="replace").strip(),
            )
            raise _restore_conflict(path)

    def _merge_file(self, current: bytes, base: bytes, target: bytes) -> bytes | None:
        """Three-way merge of task output and unstaged edits; ``None`` on conflict."""
        with tempfile.TemporaryDirectory(prefix="stagelint-merge-") as scratch:
            scratch_dir = Path(scratch)
            ours = scratch_dir / "linted"
            common = scratch_dir / "staged"
            theirs = scratch_dir / "unstaged"
            ours.write_bytes(current)
            common.write_bytes(base)
            theirs.write_bytes(target)
            proc = self._run_git(
                [
                    "merge-file",
                    "-p",
                    "-L",
                    "linted",
                    "-L",
                    "staged",
                    "-L",
                    "unstaged",
                    str(ours),
                    str(common),
                    str(theirs),
                ],
                check=False,
            )
        if proc.returncode < 0 or proc.returncode > 127:
            raise GitError(
                proc.stderr.decode("utf-8", errors="replace").strip() or "git merge-file failed",
                exit_code=proc.returncode,
            )
        if proc.returncode != 0:
            return None
        return proc.stdout

    def discard_stash(self, ref: StashRef) -> None:
        if ref.consumed:
            raise GitError(f"Backup {ref.commit} has already been consumed.")
        with self._lock:
            self._drop_backup_ref(ref)

    def _drop_backup_ref(self, ref: StashRef) -> None:
        self._run_git(["update-ref", "-d", BACKUP_REF, ref.commit])
        ref.consumed = True

    def _index_differs(self, tree: str) -> bool:
        proc = self._run_git(["diff-index", "--cached", "--quiet", tree, "--"], check=False)
        if proc.returncode not in (0, 1):
            raise GitError(
                proc.stderr.decode("utf-8", errors="replace").strip() or "git diff-index failed",
                exit_code=proc.returncode,
            )
        return proc.returncode == 1

    def restore_trees(
        self,
        index_tree: str,
        worktree_tree: str,
        untracked: tuple[str, ...] | list[str] = (),
    ) -> list[str]:
        """Reset index and work tree to the recorded trees.

        The index is only rewritten when it differs from ``index_tree``, so a
        work tree restore still succeeds while another process holds the index
        lock. Untracked files that did not exist at capture time are removed.
        Returns the paths that were rewritten or removed.
        """
        touched: list[str] = []
        with self._lock:
            if self._index_differs(index_tree):
                self._run_git(["read-tree", index_tree])
            proc = self._run_git(
                ["diff", "--name-only", "--no-renames", "-z", worktree_tree, "--"]
            )
            for path in _split_nul(proc.stdout):
                if self._write_tree_file(worktree_tree, path):
                    touched.append(path)
            known = set(untracked)
            for path in self.untracked_files():
                if path in known:
                    continue
                self._remove_path(self.repo_root / path)
                touched.append(path)
        if touched:
            logger.debug("Restored %d path(s): %s", len(touched), ", ".join(touched[:20]))
        return touched
