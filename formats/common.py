"""Helpers shared by the renderers: input checks and per-format directory reset."""

import logging
import os
import re
import shutil

from errors import RenderError

logger = logging.getLogger("code2tutorial.render")


def check_inputs(index_document, chapter_documents, project_name) -> None:
    if not index_document:
        raise RenderError("Invalid input: index document is empty")
    if chapter_documents is None:
        raise RenderError("Invalid input: chapter documents are missing")
    if not project_name:
        raise RenderError("Invalid input: project name is empty")


def reset_dir(path: str) -> str:
    """Remove path if it exists and recreate it empty, so old and new artifacts never mix."""
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise RenderError(f"Could not prepare output directory {path}: {e}") from e
    return path


def write_text(path: str, content: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        raise RenderError(f"Could not write {path}: {e}") from e
    logger.info("  - Wrote %s", path)


def safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("_") or "tutorial"
