from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path


def _log_walk_error(err: OSError) -> None:
    logging.warning("Cannot read directory %s: %s", err.filename, err.strerror or err)


def walk_documents(root: Path, extension: str = ".md") -> Iterator[Path]:
    """Yield every file under ``root`` whose suffix is ``extension``.

    Depth-first, names sorted at each level. Each call walks again from
    scratch. A missing or unreadable root raises before anything is yielded;
    unreadable subdirectories are logged and skipped.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Documents directory not found: {root}")
    os.listdir(root)  # surface PermissionError for the root itself
    return _walk(root, extension.lower())


def _walk(root: Path, extension: str) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        dirnames.sort()
        for name in sorted(filenames):
            if name.lower().endswith(extension):
                yield Path(dirpath) / name
