import tomllib
from pathlib import Path

import pytest

from stagelint import __version__
from stagelint.config import (
    ConfigError,
    StagelintConfig,
    discover_config,
    dumps_toml,
    load_config,
    save_config,
)
from stagelint.scheduler import ConcurrencyPolicy


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / ".stagelint.toml"
    config = StagelintConfig.default()
    config.settings.concurrency = 2
    config.settings.relative = True
    config.settings.max_arg_length = 4096
    config.settings.step_timeout_seconds = 30.0
    config.tasks = {"*.{js,ts}": ["eslint --fix", "prettier --write"], "*.py": "ruff check"}

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.settings.concurrency == 2
    assert loaded.settings.relative is True
    assert loaded.settings.shell is False
    assert loaded.settings.max_arg_length == 4096
    assert loaded.settings.step_timeout_seconds == 30.0
    assert loaded.tasks == config.tasks
    assert loaded.concurrency_policy() == ConcurrencyPolicy.bounded(2)


def test_toml_dump_quotes_glob_keys() -> None:
    rendered = dumps_toml(StagelintConfig.sample())

    assert "[settings]" in rendered
    assert "[tasks]" in rendered
    assert '"*.py" = ["ruff format", "ruff check --fix"]' in rendered
    assert tomllib.loads(rendered)["settings"]["concurrency"] == "unbounded"


def test_pyproject_table_is_loaded(tmp_path: Path) -> None:
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(
        '[project]\nname = "demo"\n\n'
        '[tool.stagelint.settings]\nconcurrency = "sequential"\n\n'
        '[tool.stagelint.tasks]\n"*.md" = "mdlint"\n',
        encoding="utf-8",
    )

    config = load_config(pyproject)

    assert config.tasks == {"*.md": "mdlint"}
    assert config.concurrency_policy() == ConcurrencyPolicy.sequential()


def test_discover_config_walks_up_and_prefers_dedicated_file(tmp_path: Path) -> None:
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text('[tool.stagelint.tasks]\n"*" = "x"\n', encoding="utf-8")
    assert discover_config(nested) == tmp_path / "pyproject.toml"

    (tmp_path / "a" / "stagelint.toml").write_text("[tasks]\n", encoding="utf-8")
    assert discover_config(nested) == tmp_path / "a" / "stagelint.toml"


def test_discover_config_ignores_pyproject_without_table(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "demo"\n', encoding="utf-8")

    assert discover_config(tmp_path) is None


@pytest.mark.parametrize(
    "content",
    [
        "[settings]\nconcurrency = 0\n",
        "[settings]\nconcurrency = \"fast\"\n",
        "[settings]\nrelative = \"yes\"\n",
        "[settings]\nmax_arg_length = -1\n",
        "[settings]\nstep_timeout_seconds = -2\n",
        "[settings]\nparallel = true\n",
        "[tasks]\n\"*.js\" = []\n",
        "[tasks]\n\"*.js\" = 3\n",
        "tasks = \"lint\"\n",
        "[tasks\n",
    ],
)
def test_invalid_config_raises(tmp_path: Path, content: str) -> None:
    config_path = tmp_path / "stagelint.toml"
    config_path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_missing_config_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "stagelint.toml")


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
