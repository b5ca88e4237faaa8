import pytest

from mermaid_images.extract import extract_blocks
from mermaid_images.rewrite import embedding_reference, rewrite_document


def mk_doc(n: int) -> str:
    parts = ["# Doc\n"]
    for i in range(n):
        parts.append(f"section {i}\n```mermaid\ngraph TD\n" + "  A --> B\n" * (i + 1) + "```\n")
    parts.append("end\n")
    return "".join(parts)


def test_example_document():
    doc = "# Title\ntext\n```mermaid\ngraph TD\n    A --> B\n```\nmore text\n"
    (block,) = extract_blocks(doc)
    out = rewrite_document(doc, [(block, embedding_reference("assets/mermaid/title-0.png"))])
    assert out == "# Title\ntext\n![Diagram](assets/mermaid/title-0.png)\nmore text\n"


def test_no_blocks_is_identity():
    doc = "nothing to see\n"
    assert rewrite_document(doc, []) == doc
    assert rewrite_document("", []) == ""


@pytest.mark.parametrize("n", [1, 2, 5])
def test_all_blocks_replaced(n: int):
    doc = mk_doc(n)
    blocks = extract_blocks(doc)
    refs = [embedding_reference(f"img/{b.ordinal}.png") for b in blocks]
    out = rewrite_document(doc, list(zip(blocks, refs)))

    expected = doc
    for b, ref in zip(blocks, refs):
        expected = expected.replace(b.raw, ref, 1)
    assert out == expected
    assert "```mermaid" not in out
    assert out.startswith("# Doc\nsection 0\n") and out.endswith("end\n")


def test_skipped_block_keeps_fenced_text():
    doc = mk_doc(3)
    b0, b1, b2 = extract_blocks(doc)
    out = rewrite_document(doc, [(b0, "![Diagram](a.png)"), (b2, "![Diagram](c.png)")])
    assert b1.raw in out
    assert b0.raw not in out and b2.raw not in out
    assert out.index("a.png") < out.index(b1.raw) < out.index("c.png")


def test_out_of_order_is_rejected():
    doc = mk_doc(2)
    b0, b1 = extract_blocks(doc)
    with pytest.raises(ValueError):
        rewrite_document(doc, [(b1, "x"), (b0, "y")])


def test_block_from_other_text_is_rejected():
    (block,) = extract_blocks(mk_doc(1))
    with pytest.raises(ValueError):
        rewrite_document("short", [(block, "x")])


def test_reference_with_source():
    (block,) = extract_blocks(mk_doc(1))
    ref = embedding_reference("img/a.svg", block)
    assert ref.startswith("![Diagram](img/a.svg)\n")
    assert "<details>" in ref and block.raw in ref
