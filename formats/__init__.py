"""Output renderers. Each writes into its own subdirectory of the run's output path."""

from errors import RenderError
from formats.html import generate_html_files
from formats.markdown import write_markdown_files
from formats.pdf import generate_pdf

RENDERERS = {
    "markdown": write_markdown_files,
    "html": generate_html_files,
    "pdf": generate_pdf,
}


def render(output_format, output_path, index_document, chapter_documents, project_name) -> str:
    """Dispatch to the renderer for output_format; returns the written directory or file."""
    renderer = RENDERERS.get(output_format)
    if renderer is None:
        raise RenderError(f"Unknown output format: {output_format}")
    return renderer(output_path, index_document, chapter_documents, project_name)
