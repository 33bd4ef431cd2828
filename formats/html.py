"""
HTML renderer: one page per chapter plus index.html, with a sidebar of all
chapters and previous/next links. Markdown is converted with markdown2; Mermaid
fences become `<div class="mermaid">` blocks rendered client-side.
"""

import html
import logging
import os
import re

import markdown2

from formats.common import check_inputs, reset_dir, write_text
from shared_schema import ChapterDocument

logger = logging.getLogger("code2tutorial.render")

MARKDOWN_EXTRAS = ["fenced-code-blocks", "tables", "header-ids"]

_MERMAID_FENCE = re.compile(r"^```mermaid[ \t]*\n(.*?)^```[ \t]*$", re.MULTILINE | re.DOTALL)
_MD_LINK = re.compile(r"\]\(((?!https?://)[^)\s]+?)\.md(#[^)\s]*)?\)")

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <script src="https://cdn.jsdelivr.net/npm/mermaid@10.5.0/dist/mermaid.min.js"></script>
  <style>
    body {{ font-family: sans-serif; color: #2c3e50; margin: 0; line-height: 1.7; }}
    .sidebar {{ position: fixed; top: 0; left: 0; width: 300px; height: 100vh; overflow-y: auto; background: #eef2f6; padding: 20px; box-sizing: border-box; }}
    .sidebar a {{ display: block; color: #2c3e50; text-decoration: none; padding: 4px 8px; border-radius: 6px; }}
    .sidebar a.active, .sidebar a:hover {{ background: #667eea; color: white; }}
    .main-content {{ margin-left: 300px; padding: 20px 40px; max-width: 960px; }}
    pre {{ background: #f4f4f4; padding: 12px; overflow-x: auto; }}
    .chapter-nav {{ display: flex; justify-content: space-between; margin: 40px 0 20px; }}
  </style>
</head>
<body>
  <nav class="sidebar">
    <strong>{project_name}</strong>
    {sidebar}
  </nav>
  <main class="main-content">
{body}
    <div class="chapter-nav">{prev_link}{next_link}</div>
  </main>
  <script>mermaid.initialize({{ startOnLoad: true }});</script>
</body>
</html>
"""


def html_filename(md_filename: str) -> str:
    return re.sub(r"\.md$", ".html", md_filename)


def markdown_to_html(text: str) -> str:
    """Convert tutorial Markdown to HTML, rewriting local `.md` links to `.html`."""
    blocks: list[str] = []

    def stash(match: re.Match) -> str:
        blocks.append(html.escape(match.group(1).strip("\n")))
        return f"\n\nMERMAIDBLOCK{len(blocks) - 1}\n\n"

    text = _MERMAID_FENCE.sub(stash, text)
    text = _MD_LINK.sub(lambda m: f"]({m.group(1)}.html{m.group(2) or ''})", text)
    converted = markdown2.markdown(text, extras=MARKDOWN_EXTRAS)
    for i, block in enumerate(blocks):
        converted = re.sub(
            rf"(<p>)?MERMAIDBLOCK{i}(</p>)?",
            lambda _m, b=block: f'<div class="mermaid">\n{b}\n</div>',
            converted,
        )
    return converted


def _sidebar(chapter_documents: list[ChapterDocument], active: str) -> str:
    links = [("index.html", "Home")]
    links += [(html_filename(d.filename), f"{i}. {d.title}") for i, d in enumerate(chapter_documents, 1)]
    items = []
    for href, label in links:
        css = ' class="active"' if href == active else ""
        items.append(f'<a href="{href}"{css}>{html.escape(label)}</a>')
    return "\n    ".join(items)


def render_page(
    body: str,
    title: str,
    project_name: str,
    chapter_documents: list[ChapterDocument],
    current: str,
    prev_href: str | None,
    next_href: str | None,
) -> str:
    prev_link = f'<a href="{prev_href}">&larr; Previous</a>' if prev_href else '<a href="index.html">&larr; Home</a>'
    next_link = f'<a href="{next_href}">Next &rarr;</a>' if next_href else '<a href="index.html">Back to Home</a>'
    return PAGE_TEMPLATE.format(
        title=html.escape(title),
        project_name=html.escape(project_name),
        sidebar=_sidebar(chapter_documents, current),
        body=body,
        prev_link=prev_link,
        next_link=next_link,
    )


def generate_html_files(
    output_path: str,
    index_document: str,
    chapter_documents: list[ChapterDocument],
    project_name: str,
) -> str:
    check_inputs(index_document, chapter_documents, project_name)
    html_dir = reset_dir(os.path.join(output_path, "html"))

    pages = [html_filename(d.filename) for d in chapter_documents]
    index_page = render_page(
        markdown_to_html(index_document),
        f"Tutorial: {project_name}",
        project_name,
        chapter_documents,
        "index.html",
        None,
        pages[0] if pages else None,
    )
    write_text(os.path.join(html_dir, "index.html"), index_page)

    for i, doc in enumerate(chapter_documents):
        if not doc.content:
            logger.warning("Skipping HTML for %s: content is empty", doc.filename)
            continue
        page = render_page(
            markdown_to_html(doc.content),
            f"{doc.title} - {project_name}",
            project_name,
            chapter_documents,
            pages[i],
            pages[i - 1] if i > 0 else None,
            pages[i + 1] if i + 1 < len(pages) else None,
        )
        write_text(os.path.join(html_dir, pages[i]), page)
    return html_dir
