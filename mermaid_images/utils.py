from __future__ import annotations

import os
from pathlib import Path


def to_posix_reference(target: Path, base_dir: Path) -> str:
    """Path of ``target`` relative to ``base_dir`` with forward slashes."""
    try:
        rel = target.resolve().relative_to(base_dir.resolve())
    except ValueError:
        rel = Path(os.path.relpath(target.resolve(), base_dir.resolve()))
    return rel.as_posix()


def human_bytes(n: int) -> str:
    step = 1024.0
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    v = float(n)
    while v >= step and i < len(units) - 1:
        v /= step
        i += 1
    return f"{v:.2f} {units[i]}"
