from __future__ import annotations

import fnmatch
import posixpath
import re
from collections.abc import Callable, Sequence

Matcher = Callable[[str, Sequence[str]], list[str]]

BRACE_PATTERN = re.compile(r"\{([^{}]*,[^{}]*)\}")


def expand_braces(pattern: str) -> list[str]:
    match = BRACE_PATTERN.search(pattern)
    if match is None:
        return [pattern]
    head = pattern[: match.start()]
    tail = pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        for candidate in expand_braces(f"{head}{option}{tail}"):
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


def _candidates(pattern: str) -> list[str]:
    patterns: list[str] = []
    for item in expand_braces(pattern.lstrip("/")):
        patterns.append(item)
        # "**/" also matches files at the repository root.
        while item.startswith("**/"):
            item = item[3:]
            patterns.append(item)
    return patterns


def match_files(pattern: str, files: Sequence[str]) -> list[str]:
    """Return the entries of ``files`` matched by the glob ``pattern``.

    Patterns without a slash are matched against the file name only; patterns
    with a slash are matched against the repository-relative path.
    """
    patterns = _candidates(pattern)
    match_basename = "/" not in pattern
    matched: list[str] = []
    seen: set[str] = set()
    for path in files:
        if path in seen:
            continue
        normalized = path.replace("\\", "/")
        subject = posixpath.basename(normalized) if match_basename else normalized
        if any(fnmatch.fnmatchcase(subject, candidate) for candidate in patterns):
            matched.append(path)
            seen.add(path)
    return matched
