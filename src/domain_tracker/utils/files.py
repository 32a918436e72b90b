"""Filesystem helpers shared by the updater services."""

import json
import os
from pathlib import Path
from typing import Any, Callable, Optional


def scan_files(root: Path, skip_dir: Optional[Callable[[str], bool]] = None) -> list[str]:
    """List every file under ``root`` as sorted forward-slash relative paths.

    Symlinked directories are not followed. Directories for which
    ``skip_dir(relative_dir)`` is True are not descended into.
    """
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        if skip_dir is not None:
            base = Path(dirpath)
            dirnames[:] = [
                d for d in dirnames
                if not skip_dir((base / d).relative_to(root).as_posix())
            ]
        for name in filenames:
            full = Path(dirpath) / name
            files.append(full.relative_to(root).as_posix())
    return sorted(files)


def resolve_inside(root: Path, relative: str) -> Path:
    """Join ``relative`` onto ``root``, refusing paths that escape it.

    Raises:
        ValueError: If the resolved path is outside root
    """
    target = (root / relative).resolve()
    if not target.is_relative_to(root.resolve()):
        raise ValueError(f"Path escapes installation root: {relative}")
    return target


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def remove_empty_parents(
    path: Path, stop_at: Path, keep: Optional[Callable[[Path], bool]] = None
) -> list[Path]:
    """Remove ``path``'s now-empty parent directories up to ``stop_at``.

    ``stop_at`` itself is never removed, nor is any directory for which
    ``keep`` returns True. Returns the removed directories.
    """
    removed = []
    stop_at = stop_at.resolve()
    current = path.parent.resolve()
    while current != stop_at and current.is_relative_to(stop_at):
        if keep is not None and keep(current):
            break
        try:
            next(current.iterdir())
            break
        except StopIteration:
            current.rmdir()
            removed.append(current)
        current = current.parent
    return removed
