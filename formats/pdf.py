"""
PDF renderer: the index followed by every chapter in one document, built with
fpdf2 from markdown2's HTML. Uses the core Helvetica/Courier fonts, so text is
reduced to latin-1.
"""

import html
import logging
import os
import re

import markdown2
from fpdf import FPDF
from fpdf.errors import FPDFException

from errors import RenderError
from formats.common import check_inputs, reset_dir, safe_filename
from shared_schema import ChapterDocument

logger = logging.getLogger("code2tutorial.render")

_TAG = re.compile(r"<[^<]+?>")
_HEADING_SIZES = {"<h1": 16, "<h2": 14, "<h3": 12}


def latin1(text: str) -> str:
    return text.encode("latin-1", "replace").decode("latin-1")


def _write_markdown(pdf: FPDF, text: str) -> None:
    converted = markdown2.markdown(text, extras=["fenced-code-blocks", "tables"])
    in_code = False
    for raw in converted.splitlines():
        line = raw.strip()
        if "<pre" in line:
            in_code = True
        plain = latin1(html.unescape(_TAG.sub("", raw if in_code else line)))
        if "</pre>" in line:
            in_code = False
        if not plain.strip():
            pdf.ln(3)
            continue
        size = next((s for prefix, s in _HEADING_SIZES.items() if line.startswith(prefix)), None)
        if size:
            pdf.set_font("Helvetica", "B", size)
            pdf.multi_cell(0, 9, plain, new_x="LMARGIN", new_y="NEXT")
            pdf.set_font("Helvetica", size=11)
        elif in_code:
            pdf.set_font("Courier", size=9)
            pdf.multi_cell(0, 5, plain, new_x="LMARGIN", new_y="NEXT")
            pdf.set_font("Helvetica", size=11)
        else:
            pdf.multi_cell(0, 6, plain, new_x="LMARGIN", new_y="NEXT")


def generate_pdf(
    output_path: str,
    index_document: str,
    chapter_documents: list[ChapterDocument],
    project_name: str,
) -> str:
    check_inputs(index_document, chapter_documents, project_name)
    pdf_dir = reset_dir(os.path.join(output_path, "pdf"))
    pdf_path = os.path.join(pdf_dir, f"{safe_filename(project_name)}.pdf")

    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.set_title(latin1(f"Tutorial: {project_name}"))
    pdf.set_font("Helvetica", size=11)
    try:
        pdf.add_page()
        _write_markdown(pdf, index_document)
        for doc in chapter_documents:
            if not doc.content:
                logger.warning("Skipping PDF section for %s: content is empty", doc.filename)
                continue
            pdf.add_page()
            _write_markdown(pdf, doc.content)
        pdf.output(pdf_path)
    except (FPDFException, OSError) as e:
        raise RenderError(f"PDF generation failed: {e}") from e
    logger.info("  - Wrote %s", pdf_path)
    return pdf_path
