import shlex
import subprocess
import sys
from pathlib import Path

import pytest

FORMATTER_SOURCE = '''\
import sys
import time

args = sys.argv[1:]
check = "--check" in args
header = "// HEADER\\n// GENERATED\\n" if "--header" in args else ""
if "--slow" in args:
    time.sleep(0.5)
status = 0
for path in [arg for arg in args if not arg.startswith("--")]:
    with open(path, encoding="utf-8") as handle:
        text = handle.read()
    if text.count("{") != text.count("}"):
        print(f"{path}: unbalanced braces", file=sys.stderr)
        status = 2
        continue
    pretty = text.upper()
    if header and not pretty.startswith(header):
        pretty = header + pretty
    if check:
        if pretty != text:
            print(path)
            status = 1
    elif pretty != text:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(pretty)
sys.exit(status)
'''


def git(repo: Path, *args: str) -> str:
    proc = subprocess.run(["git", *args], cwd=repo, check=True, text=True, capture_output=True)
    return proc.stdout.strip()


def write(repo: Path, name: str, content: str) -> Path:
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def read(repo: Path, name: str) -> str:
    return (repo / name).read_text(encoding="utf-8")


def init_repo(repo: Path) -> Path:
    repo.mkdir(parents=True, exist_ok=True)
    git(repo, "init", "-b", "main")
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "core.autocrlf", "false")
    write(repo, "README.md", "seed\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-m", "initial commit")
    return repo


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    return init_repo(tmp_path / "repo")


@pytest.fixture
def formatter(tmp_path: Path) -> str:
    """Command prefix for a formatter that upper-cases files and rejects unbalanced braces.

    With ``--header`` it also prepends two header lines.
    """
    script = tmp_path / "formatter.py"
    script.write_text(FORMATTER_SOURCE, encoding="utf-8")
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"
