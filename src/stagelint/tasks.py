from __future__ import annotations

import shlex
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from stagelint.chunking import chunk_paths
from stagelint.errors import FailureKind, StagelintError
from stagelint.matching import Matcher, match_files

CommandGenerator = Callable[[list[str]], Any]
CommandSpec = str | CommandGenerator


class InvalidTaskDefinitionError(StagelintError):
    """Raised when a configured command cannot be turned into literal commands."""


class ChainState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class TaskPattern:
    pattern: str
    matched_files: list[str]
    commands: list[CommandSpec]


@dataclass(slots=True)
class StepResult:
    command: str
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.exit_code == 0


@dataclass(slots=True)
class TaskChain:
    pattern: str
    files: list[str]
    commands: list[CommandSpec]
    arguments: list[str]
    max_arg_length: int = 0
    steps: list[str] = field(default_factory=list)
    resolved: bool = False
    state: ChainState = ChainState.PENDING
    results: list[StepResult] = field(default_factory=list)
    error: str | None = None
    failure: FailureKind | None = None

    @property
    def terminal(self) -> bool:
        return self.state in {ChainState.SUCCEEDED, ChainState.FAILED}

    def fail(self, message: str, failure: FailureKind = FailureKind.TASK_FAILED) -> None:
        self.state = ChainState.FAILED
        self.error = message
        self.failure = failure


def normalize_commands(pattern: str, spec: Any) -> list[CommandSpec]:
    if isinstance(spec, str) or callable(spec):
        entries: list[Any] = [spec]
    elif isinstance(spec, Sequence) and not isinstance(spec, bytes):
        entries = list(spec)
    else:
        raise InvalidTaskDefinitionError(
            f"Tasks for {pattern!r} must be a command string, a callable or a list of them."
        )
    if not entries:
        raise InvalidTaskDefinitionError(f"Tasks for {pattern!r} are empty.")
    for entry in entries:
        if callable(entry):
            continue
        if not isinstance(entry, str) or not entry.strip():
            raise InvalidTaskDefinitionError(
                f"Invalid command {entry!r} for {pattern!r}: expected a non-empty string."
            )
    return entries


def build_task_patterns(
    tasks: Mapping[str, Any],
    staged_files: Sequence[str],
    matcher: Matcher = match_files,
) -> list[TaskPattern]:
    patterns: list[TaskPattern] = []
    for pattern, spec in tasks.items():
        patterns.append(
            TaskPattern(
                pattern=pattern,
                matched_files=list(matcher(pattern, staged_files)),
                commands=normalize_commands(pattern, spec),
            )
        )
    return patterns


def build_task_chains(
    patterns: Sequence[TaskPattern],
    *,
    repo_root: Path,
    relative: bool = False,
    max_arg_length: int = 0,
) -> list[TaskChain]:
    chains: list[TaskChain] = []
    for pattern in patterns:
        if not pattern.matched_files:
            continue
        if relative:
            arguments = list(pattern.matched_files)
        else:
            arguments = [str(repo_root / path) for path in pattern.matched_files]
        chains.append(
            TaskChain(
                pattern=pattern.pattern,
                files=list(pattern.matched_files),
                commands=list(pattern.commands),
                arguments=arguments,
                max_arg_length=max_arg_length,
            )
        )
    return chains


def _generated_commands(chain: TaskChain, generator: CommandGenerator) -> list[str]:
    try:
        produced = generator(list(chain.arguments))
    except Exception as exc:
        raise InvalidTaskDefinitionError(
            f"Command generator for {chain.pattern!r} raised {exc!r}"
        ) from exc

    if isinstance(produced, str):
        produced = [produced]
    elif isinstance(produced, Sequence) and not isinstance(produced, bytes):
        produced = list(produced)
    else:
        raise InvalidTaskDefinitionError(
            f"Command generator for {chain.pattern!r} returned {produced!r}; "
            "expected a command string or a list of command strings."
        )
    if not produced or any(not isinstance(item, str) or not item.strip() for item in produced):
        raise InvalidTaskDefinitionError(
            f"Command generator for {chain.pattern!r} returned {produced!r}; "
            "expected at least one non-empty command string."
        )
    return produced


def _literal_commands(chain: TaskChain, command: str) -> list[str]:
    budget = chain.max_arg_length - len(command) - 1 if chain.max_arg_length > 0 else 0
    if chain.max_arg_length > 0 and budget <= 0:
        budget = 1
    return [
        f"{command} {' '.join(shlex.quote(argument) for argument in chunk)}"
        for chunk in chunk_paths(chain.arguments, budget)
    ]


def resolve_chain(chain: TaskChain) -> list[str]:
    """Turn the chain's command specs into literal steps, once.

    Literal commands receive the matched files as trailing arguments, chunked
    when ``max_arg_length`` is set. Generators receive the file list and their
    commands are used verbatim.
    """
    if chain.resolved:
        return chain.steps
    steps: list[str] = []
    for command in chain.commands:
        if callable(command):
            steps.extend(_generated_commands(chain, command))
        else:
            steps.extend(_literal_commands(chain, command))
    chain.steps = steps
    chain.resolved = True
    return steps
