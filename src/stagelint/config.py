from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from stagelint.errors import StagelintError
from stagelint.scheduler import ConcurrencyPolicy

CONFIG_FILENAMES = (".stagelint.toml", "stagelint.toml")
PYPROJECT_FILENAME = "pyproject.toml"

TaskCommands = str | list[str]


class ConfigError(StagelintError):
    """Raised when a configuration file is missing, unreadable or invalid."""


@dataclass(slots=True)
class SettingsConfig:
    concurrency: str | int = "unbounded"
    relative: bool = False
    shell: bool = False
    max_arg_length: int = 0
    step_timeout_seconds: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> SettingsConfig:
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
        settings = cls(**data)
        try:
            ConcurrencyPolicy.parse(settings.concurrency)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        for name in ("relative", "shell"):
            if not isinstance(getattr(settings, name), bool):
                raise ConfigError(f"settings.{name} must be true or false")
        max_arg_length = settings.max_arg_length
        if isinstance(max_arg_length, bool) or not isinstance(max_arg_length, int):
            raise ConfigError("settings.max_arg_length must be an integer")
        if max_arg_length < 0:
            raise ConfigError("settings.max_arg_length must not be negative")
        timeout = settings.step_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, int | float) or timeout < 0:
            raise ConfigError("settings.step_timeout_seconds must be a non-negative number")
        settings.step_timeout_seconds = float(timeout)
        return settings


@dataclass(slots=True)
class StagelintConfig:
    settings: SettingsConfig = field(default_factory=SettingsConfig)
    tasks: dict[str, TaskCommands] = field(default_factory=dict)

    @classmethod
    def default(cls) -> StagelintConfig:
        return cls()

    @classmethod
    def sample(cls) -> StagelintConfig:
        return cls(
            tasks={
                "*.py": ["ruff format", "ruff check --fix"],
                "*.{md,toml,yaml,yml}": "prettier --write",
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> StagelintConfig:
        settings_data = data.get("settings", {})
        if not isinstance(settings_data, dict):
            raise ConfigError("[settings] must be a table")
        tasks_data = data.get("tasks", {})
        if not isinstance(tasks_data, dict):
            raise ConfigError("[tasks] must be a table")

        tasks: dict[str, TaskCommands] = {}
        for pattern, commands in tasks_data.items():
            if isinstance(commands, str) and commands.strip():
                tasks[pattern] = commands
            elif (
                isinstance(commands, list)
                and commands
                and all(isinstance(item, str) and item.strip() for item in commands)
            ):
                tasks[pattern] = list(commands)
            else:
                raise ConfigError(
                    f"tasks.{pattern!r} must be a command string or a non-empty list of them"
                )
        return cls(settings=SettingsConfig.from_dict(dict(settings_data)), tasks=tasks)

    def to_dict(self) -> dict:
        return {
            "settings": {
                "concurrency": self.settings.concurrency,
                "relative": self.settings.relative,
                "shell": self.settings.shell,
                "max_arg_length": self.settings.max_arg_length,
                "step_timeout_seconds": self.settings.step_timeout_seconds,
            },
            "tasks": {
                pattern: list(commands) if isinstance(commands, list) else commands
                for pattern, commands in self.tasks.items()
            },
        }

    def concurrency_policy(self) -> ConcurrencyPolicy:
        return ConcurrencyPolicy.parse(self.settings.concurrency)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if "." in rendered else f"{rendered or '0'}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: StagelintConfig) -> str:
    data = config.to_dict()
    lines: list[str] = ["[settings]"]
    for key, value in data["settings"].items():
        lines.append(f"{key} = {_toml_value(value)}")
    lines.extend(["", "[tasks]"])
    for pattern, commands in data["tasks"].items():
        # Glob patterns are never bare keys.
        lines.append(f"{json.dumps(pattern, ensure_ascii=False)} = {_toml_value(commands)}")
    return "\n".join(lines).strip() + "\n"


def _read_toml(path: Path) -> dict:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read {path}: {exc}") from exc


def load_config(path: Path) -> StagelintConfig:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    data = _read_toml(path)
    if path.name == PYPROJECT_FILENAME:
        data = data.get("tool", {}).get("stagelint")
        if not isinstance(data, dict):
            raise ConfigError(f"No [tool.stagelint] table in {path}")
    return StagelintConfig.from_dict(data)


def save_config(path: Path, config: StagelintConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")


def discover_config(start: Path) -> Path | None:
    """Find the nearest configuration file at or above ``start``."""
    for directory in [start, *start.parents]:
        for name in CONFIG_FILENAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
        pyproject = directory / PYPROJECT_FILENAME
        if pyproject.is_file() and isinstance(
            _read_toml(pyproject).get("tool", {}).get("stagelint"), dict
        ):
            return pyproject
    return None
