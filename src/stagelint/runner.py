from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stagelint.errors import FailureKind
from stagelint.executors.base import CommandExecutor
from stagelint.executors.process import SubprocessExecutor
from stagelint.matching import Matcher, match_files
from stagelint.reconciler import ReconciliationConflictError, reconcile
from stagelint.recovery import recover
from stagelint.repository.gateway import GitGateway
from stagelint.repository.snapshot import (
    IndexLockedError,
    IsolationError,
    WorkingTreeSnapshot,
    capture_snapshot,
)
from stagelint.scheduler import ConcurrencyPolicy, EventHook, Scheduler
from stagelint.tasks import (
    ChainState,
    InvalidTaskDefinitionError,
    StepResult,
    TaskChain,
    build_task_chains,
    build_task_patterns,
)

logger = logging.getLogger(__name__)

INTERFERENCE_MESSAGE = (
    "Another git process seems to be running in this repository, "
    "e.g. an editor opened by 'git commit'. The run was rolled back."
)


@dataclass(slots=True)
class RunOptions:
    cwd: Path
    tasks: Mapping[str, Any]
    concurrency: ConcurrencyPolicy = field(default_factory=ConcurrencyPolicy.unbounded)
    quiet: bool = False
    relative: bool = False
    shell: bool = False
    max_arg_length: int = 0
    step_timeout_seconds: float | None = None
    matcher: Matcher = match_files
    executor: CommandExecutor | None = None
    event_hook: EventHook | None = None


@dataclass(slots=True)
class ChainResult:
    state: ChainState
    steps: list[StepResult]
    error: str | None = None


@dataclass(slots=True)
class RunOutcome:
    success: bool
    chain_results: dict[str, ChainResult] = field(default_factory=dict)
    failure: FailureKind | None = None
    message: str = ""
    skipped: bool = False


class Runner:
    """Runs the configured tasks against the staged content of one repository.

    The repository either ends up with task modifications staged and unstaged
    edits restored, or exactly as it was before the run.
    """

    def __init__(self, options: RunOptions) -> None:
        self.options = options
        self.executor = options.executor or SubprocessExecutor(
            shell=options.shell,
            timeout_seconds=options.step_timeout_seconds,
        )

    def _emit(self, payload: dict[str, Any]) -> None:
        logger.debug("event %s", payload)
        if self.options.quiet or self.options.event_hook is None:
            return
        self.options.event_hook(payload)

    def _finish(self, outcome: RunOutcome, started: float) -> RunOutcome:
        self._emit(
            {
                "event": "run_done",
                "success": outcome.success,
                "failure": outcome.failure.value if outcome.failure else None,
                "skipped": outcome.skipped,
                "duration_ms": int((time.monotonic() - started) * 1000),
            }
        )
        return outcome

    @staticmethod
    def _chain_results(chains: list[TaskChain]) -> dict[str, ChainResult]:
        return {
            chain.pattern: ChainResult(
                state=chain.state, steps=list(chain.results), error=chain.error
            )
            for chain in chains
        }

    def _rollback(self, gateway: GitGateway, snapshot: WorkingTreeSnapshot, reason: str) -> None:
        self._emit({"event": "rollback", "reason": reason})
        recover(gateway, snapshot)

    async def run(self) -> RunOutcome:
        started = time.monotonic()
        gateway = GitGateway(self.options.cwd)
        self._emit({"event": "run_start", "repo_root": str(gateway.repo_root)})

        staged_files = gateway.staged_files()
        try:
            patterns = build_task_patterns(self.options.tasks, staged_files, self.options.matcher)
        except InvalidTaskDefinitionError as exc:
            return self._finish(
                RunOutcome(
                    success=False,
                    failure=FailureKind.INVALID_TASK_DEFINITION,
                    message=str(exc),
                ),
                started,
            )
        chains = build_task_chains(
            patterns,
            repo_root=gateway.repo_root,
            relative=self.options.relative,
            max_arg_length=self.options.max_arg_length,
        )
        if not chains:
            return self._finish(
                RunOutcome(success=True, message="No staged files match any task.", skipped=True),
                started,
            )

        try:
            snapshot = capture_snapshot(gateway, staged_files)
        except IndexLockedError as exc:
            return self._finish(
                RunOutcome(
                    success=False,
                    failure=FailureKind.EXTERNAL_INTERFERENCE,
                    message=str(exc),
                ),
                started,
            )
        except IsolationError as exc:
            return self._finish(
                RunOutcome(success=False, failure=FailureKind.ISOLATION_FAILED, message=str(exc)),
                started,
            )
        self._emit(
            {
                "event": "snapshot",
                "staged_files": len(snapshot.staged_files),
                "partial_staging": snapshot.has_partial_staging,
                "chains": len(chains),
            }
        )

        scheduler = Scheduler(
            self.executor,
            self.options.concurrency,
            event_hook=self._emit,
        )
        try:
            await scheduler.run(chains, gateway.repo_root)
        except BaseException:
            self._rollback(gateway, snapshot, "interrupted")
            raise
        results = self._chain_results(chains)

        failure: FailureKind | None = None
        message = ""
        if gateway.is_index_locked():
            failure = FailureKind.EXTERNAL_INTERFERENCE
            message = f"{gateway.index_lock_file} appeared during the run. {INTERFERENCE_MESSAGE}"
        else:
            failed = [chain for chain in chains if chain.state is not ChainState.SUCCEEDED]
            if failed:
                kinds = {chain.failure for chain in failed}
                failure = (
                    FailureKind.INVALID_TASK_DEFINITION
                    if FailureKind.INVALID_TASK_DEFINITION in kinds
                    else FailureKind.TASK_FAILED
                )
                message = "; ".join(f"{chain.pattern}: {chain.error}" for chain in failed)

        if failure is None:
            try:
                staged = reconcile(gateway, snapshot, chains)
            except ReconciliationConflictError as exc:
                failure = FailureKind.RECONCILIATION_CONFLICT
                message = str(exc)
            else:
                self._emit({"event": "reconcile", "files": len(staged)})
                return self._finish(
                    RunOutcome(success=True, chain_results=results, message="All tasks passed."),
                    started,
                )

        self._rollback(gateway, snapshot, failure.value)
        return self._finish(
            RunOutcome(success=False, chain_results=results, failure=failure, message=message),
            started,
        )


async def run_async(options: RunOptions) -> RunOutcome:
    return await Runner(options).run()


def run(options: RunOptions) -> RunOutcome:
    return asyncio.run(run_async(options))
