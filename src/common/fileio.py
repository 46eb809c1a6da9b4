"""File-system helpers that never leave partially written artifacts behind."""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Union

PathLike = Union[str, "os.PathLike[str]"]


def atomic_write_text(path: PathLike, text: str) -> None:
    """Write ``text`` to ``path`` through a sibling temp file and ``os.replace``.

    Readers observe either the previous content or the complete new content.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def is_non_empty_dir(path: PathLike) -> bool:
    """Return True if ``path`` is a directory containing at least one entry."""
    target = Path(path)
    if not target.is_dir():
        return False
    return any(target.iterdir())


def byte_sum(path: PathLike, chunk_size: int = 1024 * 1024) -> int:
    """Sum of every byte value in the file at ``path``."""
    total = 0
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            total += sum(chunk)
    return total
