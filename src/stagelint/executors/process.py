from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import shlex
from pathlib import Path

from stagelint.executors.base import (
    CommandExecutor,
    CommandSpawnError,
    CommandTimeoutError,
    ExecutionResult,
)

logger = logging.getLogger(__name__)

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`]|[$]\()")


class SubprocessExecutor(CommandExecutor):
    def __init__(
        self,
        *,
        shell: bool = False,
        timeout_seconds: float | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.shell = shell
        self.timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self.env = env

    def build_command(self, command: str) -> tuple[bool, str | list[str]]:
        command_text = command.strip()
        if not command_text:
            raise CommandSpawnError("Command is empty.", command=command)
        used_shell = self.shell or bool(SHELL_REQUIRED_PATTERN.search(command_text))
        if not used_shell:
            try:
                return False, shlex.split(command_text)
            except ValueError:
                used_shell = True
        return True, command_text

    async def execute(self, command: str, cwd: Path) -> ExecutionResult:
        used_shell, payload = self.build_command(command)
        logger.debug("Running %r in %s (shell=%s)", command, cwd, used_shell)
        try:
            if used_shell:
                process = await asyncio.create_subprocess_shell(
                    str(payload),
                    cwd=cwd,
                    env=self.env,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *payload,
                    cwd=cwd,
                    env=self.env,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
        except OSError as exc:
            raise CommandSpawnError(f"Unable to start {command!r}: {exc}", command=command) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise CommandTimeoutError(
                f"{command!r} timed out after {self.timeout_seconds:.1f}s",
                command=command,
            ) from exc

        return ExecutionResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
