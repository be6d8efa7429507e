import asyncio
import shlex
import sys
from pathlib import Path

import pytest

from stagelint.executors import CommandSpawnError, CommandTimeoutError, SubprocessExecutor

PYTHON = shlex.quote(sys.executable)


def test_simple_commands_are_split_without_shell() -> None:
    used_shell, payload = SubprocessExecutor().build_command("eslint --fix 'a b.js'")

    assert used_shell is False
    assert payload == ["eslint", "--fix", "a b.js"]


@pytest.mark.parametrize("command", ["lint && test", "cat a | grep b", "echo $(pwd)", "a; b"])
def test_shell_syntax_switches_to_shell(command: str) -> None:
    used_shell, payload = SubprocessExecutor().build_command(command)

    assert used_shell is True
    assert payload == command


def test_shell_option_forces_shell() -> None:
    assert SubprocessExecutor(shell=True).build_command("lint a.js")[0] is True


def test_execute_captures_exit_code_and_output(tmp_path: Path) -> None:
    script = "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"
    command = f"{PYTHON} -c \"{script}\""

    result = asyncio.run(SubprocessExecutor().execute(command, tmp_path))

    assert result.exit_code == 3
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_execute_runs_in_given_directory(tmp_path: Path) -> None:
    command = f"{PYTHON} -c \"print(__import__('os').getcwd())\""

    result = asyncio.run(SubprocessExecutor().execute(command, tmp_path))

    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()


def test_missing_binary_raises_spawn_error(tmp_path: Path) -> None:
    with pytest.raises(CommandSpawnError):
        asyncio.run(SubprocessExecutor().execute("stagelint-no-such-binary --fix", tmp_path))


def test_step_timeout_kills_command(tmp_path: Path) -> None:
    command = f"{PYTHON} -c \"__import__('time').sleep(5)\""
    executor = SubprocessExecutor(timeout_seconds=0.2)

    with pytest.raises(CommandTimeoutError, match="timed out"):
        asyncio.run(executor.execute(command, tmp_path))
