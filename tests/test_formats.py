"""Tests for the markdown, HTML and PDF renderers."""

import pytest

from errors import RenderError
from formats import render
from formats.html import markdown_to_html
from shared_schema import ChapterDocument

INDEX = (
    "# Tutorial: Demo\n\nA demo project.\n\n```mermaid\nflowchart TD\n    A0[\"Flow\"] -->|\"Runs\"| A1[\"Node\"]\n```\n\n"
    "## Chapters\n\n1. [Flow](01_flow.md)\n2. [Node](02_node.md)\n"
)
CHAPTERS = [
    ChapterDocument("01_flow.md", "Flow", "# Chapter 1: Flow\n\nSee [Node](02_node.md).\n\n```python\nflow.run(shared)\n```\n"),
    ChapterDocument("02_node.md", "Node", "# Chapter 2: Node\n\nA node has prep, exec and post. Café → done.\n"),
]


def test_markdown_writes_index_and_chapters(tmp_path):
    """markdown/ holds index.md and one file per chapter with the given text."""
    out = render("markdown", str(tmp_path), INDEX, CHAPTERS, "Demo")
    assert out == str(tmp_path / "markdown")
    assert (tmp_path / "markdown" / "index.md").read_text(encoding="utf-8") == INDEX
    assert (tmp_path / "markdown" / "02_node.md").read_text(encoding="utf-8") == CHAPTERS[1].content


def test_renderer_clears_previous_output(tmp_path):
    """Stale files from an earlier run are removed before writing."""
    stale = tmp_path / "markdown" / "99_old.md"
    stale.parent.mkdir(parents=True)
    stale.write_text("old")
    render("markdown", str(tmp_path), INDEX, CHAPTERS, "Demo")
    assert not stale.exists()


def test_html_pages_link_to_html_and_navigate(tmp_path):
    """HTML pages rewrite .md links, carry a sidebar and previous/next links."""
    render("html", str(tmp_path), INDEX, CHAPTERS, "Demo")
    html_dir = tmp_path / "html"
    index = (html_dir / "index.html").read_text(encoding="utf-8")
    first = (html_dir / "01_flow.html").read_text(encoding="utf-8")
    second = (html_dir / "02_node.html").read_text(encoding="utf-8")
    assert 'href="01_flow.html"' in index
    assert '<div class="mermaid">' in index
    assert 'href="02_node.html"' in first
    assert ".md\"" not in first
    assert '<a href="02_node.html">Next &rarr;</a>' in first
    assert '<a href="01_flow.html">&larr; Previous</a>' in second
    assert '<a href="02_node.html" class="active">' in second


def test_markdown_to_html_keeps_external_links():
    """Only local .md links are rewritten."""
    converted = markdown_to_html("[docs](https://example.com/readme.md) and [next](02_node.md)")
    assert 'href="https://example.com/readme.md"' in converted
    assert 'href="02_node.html"' in converted


def test_pdf_writes_single_file(tmp_path):
    """The PDF renderer writes pdf/<project>.pdf, tolerating non-latin-1 text."""
    out = render("pdf", str(tmp_path), INDEX, CHAPTERS, "Demo Project")
    assert out == str(tmp_path / "pdf" / "Demo_Project.pdf")
    data = (tmp_path / "pdf" / "Demo_Project.pdf").read_bytes()
    assert data.startswith(b"%PDF")


@pytest.mark.parametrize("output_format", ["markdown", "html", "pdf"])
def test_renderers_reject_empty_inputs(tmp_path, output_format):
    """Empty index, missing chapters or project name raise RenderError."""
    with pytest.raises(RenderError):
        render(output_format, str(tmp_path), "", CHAPTERS, "Demo")
    with pytest.raises(RenderError):
        render(output_format, str(tmp_path), INDEX, None, "Demo")
    with pytest.raises(RenderError):
        render(output_format, str(tmp_path), INDEX, CHAPTERS, "")


def test_unknown_format_is_render_error(tmp_path):
    """Formats without a renderer are rejected."""
    with pytest.raises(RenderError):
        render("docx", str(tmp_path), INDEX, CHAPTERS, "Demo")
