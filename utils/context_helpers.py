"""
Helpers for formatting the file inventory for LLM prompts.

Used by IdentifyAbstractions, AnalyzeRelationships and WriteChapters, which all
refer to files as `index # path`.
"""

from shared_schema import FileEntry


def create_llm_context(
    files: list[FileEntry],
    max_files: int,
    max_chars: int,
) -> tuple[str, list[tuple[int, str]]]:
    """
    Format a bounded prefix of the file inventory with indices.

    Args:
        files: The file inventory.
        max_files: Only the first max_files entries are shown.
        max_chars: Longer contents are truncated to this many characters plus "...".

    Returns:
        (context_string, file_info) where file_info lists the (index, path)
        pairs actually shown.
    """
    context = ""
    file_info = []
    for i, entry in enumerate(files[:max_files]):
        content = entry.content
        if len(content) > max_chars:
            content = content[:max_chars] + "..."
        context += f"--- File Index {i}: {entry.path} ---\n{content}\n\n"
        file_info.append((i, entry.path))
    return context, file_info


def get_content_for_indices(files: list[FileEntry], indices) -> dict[str, str]:
    """
    Map "index # path" to content for the given file indices.

    Invalid indices are skipped.
    """
    content_map = {}
    for i in indices:
        if 0 <= i < len(files):
            entry = files[i]
            content_map[f"{i} # {entry.path}"] = entry.content
    return content_map


def format_file_snippets(content_map: dict[str, str], with_index: bool = True) -> str:
    """Join a get_content_for_indices map into `--- File: ... ---` blocks."""
    blocks = []
    for idx_path, content in content_map.items():
        label = idx_path if with_index else idx_path.split("# ", 1)[-1]
        blocks.append(f"--- File: {label} ---\n{content}")
    return "\n\n".join(blocks)
