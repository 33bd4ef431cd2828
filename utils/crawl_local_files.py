"""
Crawl a local directory and return file path -> content.

Used by FetchLocal. The root .gitignore is honored via pathspec. Keys are
relative paths in sorted walk order so the resulting inventory (and every
index derived from it) is stable across runs.
"""

import fnmatch
import logging
import os
from typing import Iterable, Optional

import pathspec

from errors import DirectoryNotFoundError, InvalidDirectoryError

logger = logging.getLogger("code2tutorial.crawl")

SKIP_EXTS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".bmp",
    ".ico",
    ".pdf",
    ".zip",
    ".gz",
    ".tar",
    ".7z",
    ".rar",
    ".mp4",
    ".mov",
    ".mp3",
    ".wav",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
}


def crawl_local_files(
    directory: str,
    include_patterns: Iterable[str] | None = None,
    exclude_patterns: Iterable[str] | None = None,
    max_file_size: int = 100_000,
) -> dict:
    """
    Walk a directory and read file contents into a path -> content dict.

    Args:
        directory: Root directory to crawl.
        include_patterns: If non-empty, only include files whose relative path or name matches any glob.
        exclude_patterns: Files or directories whose relative path or name matches any glob are skipped.
        max_file_size: Skip files larger than this (bytes).

    Returns:
        Dict with key "files": dict[str, str] mapping relative path to content,
        inserted in sorted walk order.

    Raises:
        DirectoryNotFoundError: directory does not exist.
        InvalidDirectoryError: directory exists but is not a directory.
    """
    if not os.path.exists(directory):
        raise DirectoryNotFoundError(f"Directory does not exist: {directory}", details={"directory": directory})
    if not os.path.isdir(directory):
        raise InvalidDirectoryError(f"Path is not a directory: {directory}", details={"directory": directory})

    root_dir = os.path.abspath(directory)
    include = set(include_patterns or ())
    exclude = set(exclude_patterns or ())
    files: dict[str, str] = {}
    gitignore_spec = load_gitignore(root_dir)

    def _on_walk_error(err: OSError) -> None:
        logger.warning("Could not read directory %s: %s", err.filename, err)

    def _ignored(rel: str) -> bool:
        return gitignore_spec is not None and gitignore_spec.match_file(rel)

    for root, dirs, filenames in os.walk(root_dir, topdown=True, onerror=_on_walk_error):
        rel_root = os.path.relpath(root, root_dir)
        dirs[:] = sorted(
            d
            for d in dirs
            if not _matches(_join(rel_root, d), d, exclude) and not _ignored(_join(rel_root, d) + "/")
        )
        for name in sorted(filenames):
            rel = _join(rel_root, name)
            full_path = os.path.join(root, name)
            try:
                size = os.path.getsize(full_path)
            except OSError as e:
                logger.warning("Could not stat %s: %s", rel, e)
                continue
            if size > max_file_size:
                logger.debug("Skipping %s (%s bytes > %s)", rel, size, max_file_size)
                continue
            if _has_skip_ext(rel):
                continue
            if include and not _matches(rel, name, include):
                continue
            if _matches(rel, name, exclude) or _ignored(rel):
                continue
            try:
                with open(full_path, "r", encoding="utf-8", errors="strict") as f:
                    files[rel] = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read file %s: %s", rel, e)

    return {"files": files}


def _join(rel_root: str, name: str) -> str:
    path = name if rel_root in ("", ".") else os.path.join(rel_root, name)
    return path.replace(os.sep, "/")


def load_gitignore(root_dir: str) -> Optional[pathspec.PathSpec]:
    """Parse <root>/.gitignore, or None when there is none."""
    gitignore_path = os.path.join(root_dir, ".gitignore")
    if not os.path.isfile(gitignore_path):
        return None
    try:
        with open(gitignore_path, "r", encoding="utf-8-sig") as f:
            lines = f.readlines()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read %s, ignoring it: %s", gitignore_path, e)
        return None
    logger.debug("Loaded .gitignore patterns from %s", gitignore_path)
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def _matches(rel_path: str, name: str, patterns: set[str]) -> bool:
    for p in patterns:
        # `**/` also matches at the root, as in gitignore-style globs.
        candidates = (p, p[3:]) if p.startswith("**/") else (p,)
        if any(fnmatch.fnmatch(rel_path, c) or fnmatch.fnmatch(name, c) for c in candidates):
            return True
    return False


def _has_skip_ext(rel_path: str) -> bool:
    lower = rel_path.lower()
    return any(lower.endswith(ext) for ext in SKIP_EXTS)
