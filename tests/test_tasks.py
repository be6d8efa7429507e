from pathlib import Path

import pytest

from stagelint.tasks import (
    ChainState,
    InvalidTaskDefinitionError,
    build_task_chains,
    build_task_patterns,
    normalize_commands,
    resolve_chain,
)


def test_patterns_keep_configuration_order() -> None:
    patterns = build_task_patterns(
        {"*.md": "mdlint", "*.js": ["eslint --fix", "prettier --write"]},
        ["a.js", "b.md"],
    )

    assert [pattern.pattern for pattern in patterns] == ["*.md", "*.js"]
    assert patterns[0].matched_files == ["b.md"]
    assert patterns[1].commands == ["eslint --fix", "prettier --write"]


@pytest.mark.parametrize("spec", [[], "", "   ", 3, ["lint", ""], None])
def test_invalid_command_specs_are_rejected(spec: object) -> None:
    with pytest.raises(InvalidTaskDefinitionError):
        normalize_commands("*.js", spec)


def test_chains_skip_patterns_without_files(tmp_path: Path) -> None:
    patterns = build_task_patterns({"*.md": "mdlint", "*.js": "eslint"}, ["a.js"])

    chains = build_task_chains(patterns, repo_root=tmp_path)

    assert [chain.pattern for chain in chains] == ["*.js"]
    assert chains[0].arguments == [str(tmp_path / "a.js")]
    assert chains[0].state is ChainState.PENDING


def test_relative_chains_pass_repository_paths(tmp_path: Path) -> None:
    patterns = build_task_patterns({"*.js": "eslint"}, ["src/a b.js"])

    chain = build_task_chains(patterns, repo_root=tmp_path, relative=True)[0]

    assert resolve_chain(chain) == ["eslint 'src/a b.js'"]


def test_literal_commands_are_chunked_by_argument_length(tmp_path: Path) -> None:
    files = [f"file{index}.js" for index in range(6)]
    patterns = build_task_patterns({"*.js": "lint"}, files)
    chain = build_task_chains(patterns, repo_root=tmp_path, relative=True, max_arg_length=30)[0]

    steps = resolve_chain(chain)

    assert len(steps) > 1
    assert all(step.startswith("lint ") for step in steps)
    assert " ".join(step.removeprefix("lint ") for step in steps).split() == files


def test_generators_receive_files_and_are_resolved_once(tmp_path: Path) -> None:
    calls: list[list[str]] = []

    def generator(files: list[str]) -> list[str]:
        calls.append(files)
        return [f"tsc --noEmit {len(files)}", "echo done"]

    patterns = build_task_patterns({"*.ts": generator}, ["a.ts", "b.ts"])
    chain = build_task_chains(patterns, repo_root=tmp_path, relative=True)[0]

    assert resolve_chain(chain) == ["tsc --noEmit 2", "echo done"]
    assert resolve_chain(chain) == ["tsc --noEmit 2", "echo done"]
    assert calls == [["a.ts", "b.ts"]]


@pytest.mark.parametrize("produced", [42, [], [""], ["ok", 1]])
def test_generator_output_is_validated(tmp_path: Path, produced: object) -> None:
    patterns = build_task_patterns({"*.ts": lambda files: produced}, ["a.ts"])
    chain = build_task_chains(patterns, repo_root=tmp_path)[0]

    with pytest.raises(InvalidTaskDefinitionError):
        resolve_chain(chain)


def test_generator_exceptions_become_invalid_definitions(tmp_path: Path) -> None:
    def generator(files: list[str]) -> str:
        raise KeyError("boom")

    patterns = build_task_patterns({"*.ts": generator}, ["a.ts"])
    chain = build_task_chains(patterns, repo_root=tmp_path)[0]

    with pytest.raises(InvalidTaskDefinitionError, match="boom"):
        resolve_chain(chain)
