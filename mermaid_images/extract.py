from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path

# Opener must be followed directly by a newline; the closer must sit alone on its line.
MERMAID_BLOCK_RE = re.compile(
    r"```mermaid\r?\n(.*?)\r?\n\s*```(?=[ \t]*(?:\r?\n|\Z))", re.DOTALL
)

_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9-]")
_DASHES_RE = re.compile(r"-+")


@dataclass(frozen=True)
class DiagramBlock:
    code: str
    start: int
    end: int
    ordinal: int
    raw: str

    @property
    def span(self) -> tuple[int, int]:
        return self.start, self.end


def extract_blocks(text: str) -> list[DiagramBlock]:
    """Return the fenced mermaid blocks of ``text`` in document order.

    Unterminated fences produce nothing. The function is pure, so calling it
    twice on the same text gives equal results.
    """
    return [
        DiagramBlock(
            code=m.group(1).replace("\r\n", "\n").strip(),
            start=m.start(),
            end=m.end(),
            ordinal=i,
            raw=m.group(0),
        )
        for i, m in enumerate(MERMAID_BLOCK_RE.finditer(text))
    ]


def _sanitize(raw: str) -> str:
    return _DASHES_RE.sub("-", _UNSAFE_RE.sub("-", raw)).strip("-").lower()


def derive_filename(doc_path: Path, ordinal: int, root: Path, hash_suffix: bool = False) -> str:
    """Build the image base name for block ``ordinal`` of ``doc_path``.

    Result is ``<stem>-<ordinal>-<relative path without suffix>`` reduced to
    ``[a-z0-9-]``. With ``hash_suffix`` a short digest of the relative path and
    ordinal is appended so that paths sanitizing to the same text stay apart.
    """
    try:
        rel = doc_path.relative_to(root)
    except ValueError:
        rel = Path(doc_path.name)
    rel_posix = rel.with_suffix("").as_posix()
    name = _sanitize(f"{doc_path.stem}-{ordinal}-{rel_posix}")
    if hash_suffix:
        digest = hashlib.sha1(f"{rel.as_posix()}#{ordinal}".encode("utf-8")).hexdigest()[:8]
        name = f"{name}-{digest}"
    return name
