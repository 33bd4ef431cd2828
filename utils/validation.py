"""
Index parsing, range checks, duplicate detection and coverage backfill.

Shared by the stages that cross-reference files and abstractions by index.
"""

import logging
from typing import Any, Iterable

from errors import ContractViolationError

logger = logging.getLogger("code2tutorial.validation")


def parse_index(ref: Any) -> int:
    """
    Convert `3`, `"3"` or `"3 # Name"` to 3.

    Raises:
        ContractViolationError: ref has no leading integer.
    """
    if isinstance(ref, bool):
        raise ContractViolationError(f"Could not parse index from: {ref!r}")
    if isinstance(ref, int):
        return ref
    if isinstance(ref, float) and ref.is_integer():
        return int(ref)
    s = str(ref).split("#", 1)[0].strip()
    try:
        return int(s)
    except ValueError:
        raise ContractViolationError(f"Could not parse index from: {ref!r}") from None


def validate_index_range(idx: int, size: int, context: str = "") -> None:
    if idx < 0 or idx >= size:
        raise ContractViolationError(
            f"Invalid index {idx} in {context}. Max index is {size - 1}.",
            details={"index": idx, "max_index": size - 1, "context": context},
        )


def check_for_duplicates(items: Iterable[Any], context: str = "") -> None:
    seen = set()
    for item in items:
        if item in seen:
            raise ContractViolationError(
                f"Duplicate item {item} found in {context}.",
                details={"duplicate": item, "context": context},
            )
        seen.add(item)


def backfill_missing(indices: list[int], size: int, context: str = "") -> list[int]:
    """Append every index in [0, size) missing from indices, ascending, at the end."""
    present = set(indices)
    missing = [i for i in range(size) if i not in present]
    if not missing:
        return list(indices)
    logger.warning(
        "Model omitted indices from %s; appending missing indices at the end: %s",
        context or "list",
        missing,
    )
    return list(indices) + missing


def filter_valid_indices(refs: Iterable[Any], size: int, context: str = "") -> list[int]:
    """
    Parse refs and keep those in [0, size), dropping the rest with a warning.

    Duplicates are removed; the result is sorted.
    """
    valid = set()
    for ref in refs:
        try:
            idx = parse_index(ref)
            validate_index_range(idx, size, context)
        except ContractViolationError as e:
            logger.warning("Dropping file index: %s", e)
            continue
        valid.add(idx)
    return sorted(valid)
