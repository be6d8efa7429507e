from __future__ import annotations

import shlex
from collections.abc import Sequence


def chunk_paths(paths: Sequence[str], max_length: int) -> list[list[str]]:
    """Split ``paths`` so each chunk's quoted, space-joined form fits ``max_length``.

    A non-positive ``max_length`` disables chunking. A single path longer than
    the limit still gets a chunk of its own.
    """
    if not paths:
        return []
    if max_length <= 0:
        return [list(paths)]

    chunks: list[list[str]] = []
    current: list[str] = []
    current_length = 0
    for path in paths:
        cost = len(shlex.quote(path)) + 1
        if current and current_length + cost > max_length:
            chunks.append(current)
            current = []
            current_length = 0
        current.append(path)
        current_length += cost
    if current:
        chunks.append(current)
    return chunks
