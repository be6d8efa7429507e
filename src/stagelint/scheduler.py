from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from stagelint.errors import FailureKind
from stagelint.executors.base import CommandExecutionError, CommandExecutor
from stagelint.tasks import (
    ChainState,
    InvalidTaskDefinitionError,
    StepResult,
    TaskChain,
    resolve_chain,
)

logger = logging.getLogger(__name__)

EventHook = Callable[[dict[str, Any]], None]
OUTPUT_TAIL = 4000


class ConcurrencyMode(str, Enum):
    SEQUENTIAL = "sequential"
    UNBOUNDED = "unbounded"
    BOUNDED = "bounded"


@dataclass(frozen=True, slots=True)
class ConcurrencyPolicy:
    mode: ConcurrencyMode = ConcurrencyMode.UNBOUNDED
    limit: int | None = None

    @classmethod
    def sequential(cls) -> ConcurrencyPolicy:
        return cls(ConcurrencyMode.SEQUENTIAL)

    @classmethod
    def unbounded(cls) -> ConcurrencyPolicy:
        return cls(ConcurrencyMode.UNBOUNDED)

    @classmethod
    def bounded(cls, limit: int) -> ConcurrencyPolicy:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"Concurrency limit must be a positive integer, got {limit!r}")
        return cls(ConcurrencyMode.BOUNDED, limit)

    @classmethod
    def parse(cls, value: object) -> ConcurrencyPolicy:
        if isinstance(value, ConcurrencyPolicy):
            return value
        if isinstance(value, bool):
            return cls.unbounded() if value else cls.sequential()
        if isinstance(value, int):
            return cls.bounded(value)
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {"sequential", "false"}:
                return cls.sequential()
            if normalized in {"unbounded", "true"}:
                return cls.unbounded()
            if normalized.isdigit():
                return cls.bounded(int(normalized))
        raise ValueError(
            f"Invalid concurrency {value!r}: use 'sequential', 'unbounded' or a positive integer"
        )

    def slots(self, chain_count: int) -> int:
        if self.mode is ConcurrencyMode.SEQUENTIAL:
            return 1
        if self.mode is ConcurrencyMode.BOUNDED and self.limit is not None:
            return max(1, min(self.limit, chain_count))
        return max(1, chain_count)

    def __str__(self) -> str:
        if self.mode is ConcurrencyMode.BOUNDED:
            return f"bounded({self.limit})"
        return self.mode.value


class Scheduler:
    """Runs task chains under a concurrency policy.

    Steps inside a chain always run one after another and stop at the first
    failure. Chains are admitted in configuration order from a shared work
    queue; a failing chain never cancels its siblings, and ``run`` returns
    only once every chain is terminal.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        policy: ConcurrencyPolicy,
        *,
        event_hook: EventHook | None = None,
        resolver: Callable[[TaskChain], list[str]] = resolve_chain,
    ) -> None:
        self.executor = executor
        self.policy = policy
        self.event_hook = event_hook
        self.resolver = resolver

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    async def run(self, chains: Sequence[TaskChain], cwd: Path) -> Sequence[TaskChain]:
        if not chains:
            return chains
        queue = iter(chains)

        async def _worker() -> None:
            for chain in queue:
                await self._run_chain(chain, cwd)

        slots = self.policy.slots(len(chains))
        results = await asyncio.gather(
            *(_worker() for _ in range(slots)), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return chains

    async def _run_chain(self, chain: TaskChain, cwd: Path) -> None:
        chain.state = ChainState.RUNNING
        self._emit({"event": "chain_start", "pattern": chain.pattern, "files": len(chain.files)})
        try:
            steps = self.resolver(chain)
        except InvalidTaskDefinitionError as exc:
            chain.fail(str(exc), FailureKind.INVALID_TASK_DEFINITION)
            self._emit_done(chain)
            return

        for command in steps:
            self._emit({"event": "step_start", "pattern": chain.pattern, "command": command})
            try:
                result = await self.executor.execute(command, cwd)
            except CommandExecutionError as exc:
                chain.results.append(
                    StepResult(command=command, exit_code=exc.exit_code, error=str(exc))
                )
                chain.fail(str(exc))
                break

            step = StepResult(
                command=command,
                exit_code=result.exit_code,
                stdout=result.stdout[-OUTPUT_TAIL:],
                stderr=result.stderr[-OUTPUT_TAIL:],
            )
            chain.results.append(step)
            self._emit(
                {
                    "event": "step_result",
                    "pattern": chain.pattern,
                    "command": command,
                    "exit_code": result.exit_code,
                }
            )
            if result.exit_code != 0:
                chain.fail(f"{command!r} exited with code {result.exit_code}")
                break
        else:
            chain.state = ChainState.SUCCEEDED

        logger.debug("Chain %s finished as %s", chain.pattern, chain.state.value)
        self._emit_done(chain)

    def _emit_done(self, chain: TaskChain) -> None:
        self._emit(
            {
                "event": "chain_done",
                "pattern": chain.pattern,
                "state": chain.state.value,
                "error": chain.error,
            }
        )
