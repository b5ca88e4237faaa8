from __future__ import annotations

from collections.abc import Iterable

from .extract import DiagramBlock

ALT_TEXT = "Diagram"


def embedding_reference(relative_path: str, block: DiagramBlock | None = None) -> str:
    """Markdown image link, optionally followed by the collapsed diagram source."""
    ref = f"![{ALT_TEXT}]({relative_path})"
    if block is None:
        return ref
    return f"{ref}\n\n<details>\n<summary>Diagram source</summary>\n\n{block.raw}\n\n</details>"


def rewrite_document(text: str, replacements: Iterable[tuple[DiagramBlock, str]]) -> str:
    """Replace each block's span in ``text`` with its reference.

    ``replacements`` must be in increasing position order and must not
    overlap; blocks that are left out (e.g. failed renders) keep their
    original fenced text. Raises ``ValueError`` on out-of-order input.
    """
    out: list[str] = []
    cursor = 0
    for block, reference in replacements:
        if block.start < cursor:
            raise ValueError(
                f"Block {block.ordinal} at offset {block.start} is out of order "
                f"(already rewritten up to {cursor})"
            )
        if text[block.start : block.end] != block.raw:
            raise ValueError(f"Block {block.ordinal} does not match the document text")
        out.append(text[cursor : block.start])
        out.append(reference)
        cursor = block.end
    out.append(text[cursor:])
    return "".join(out)
