"""Markdown renderer: index.md plus one file per chapter under markdown/."""

import logging
import os

from formats.common import check_inputs, reset_dir, write_text
from shared_schema import ChapterDocument

logger = logging.getLogger("code2tutorial.render")


def write_markdown_files(
    output_path: str,
    index_document: str,
    chapter_documents: list[ChapterDocument],
    project_name: str,
) -> str:
    check_inputs(index_document, chapter_documents, project_name)
    markdown_dir = reset_dir(os.path.join(output_path, "markdown"))

    write_text(os.path.join(markdown_dir, "index.md"), index_document)
    for doc in chapter_documents:
        if not doc.content:
            logger.warning("Skipping Markdown for %s: content is empty", doc.filename)
            continue
        write_text(os.path.join(markdown_dir, doc.filename), doc.content)
    return markdown_dir
