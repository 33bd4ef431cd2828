"""
Shared context and data model for the code2tutorial pipeline.

One SharedContext is created per run and passed by reference through every
stage. Each output field has exactly one owning stage (FIELD_OWNERS); stages
write only through SharedContext.commit, which checks ownership and the
cross-reference invariants:

1. every abstraction file index is in [0, len(files))
2. every relationship endpoint is in [0, len(abstractions))
3. chapter_order is a permutation of range(len(abstractions))
4. chapters follow chapter_order and chapters[k].sequence_number == k + 1
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from config import RunConfig
from errors import ContractViolationError, OwnershipError


@dataclass(frozen=True)
class FileEntry:
    path: str
    content: str


@dataclass(frozen=True)
class Abstraction:
    name: str
    description: str
    file_indices: tuple[int, ...] = ()


@dataclass(frozen=True)
class Relationship:
    from_abstraction: int
    to_abstraction: int
    label: str


@dataclass(frozen=True)
class RelationshipGraph:
    summary: str = ""
    edges: tuple[Relationship, ...] = ()


@dataclass(frozen=True)
class Chapter:
    abstraction_index: int
    sequence_number: int
    filename: str
    content: str


@dataclass(frozen=True)
class ChapterDocument:
    """A rendered-ready chapter: target filename plus final Markdown text."""

    filename: str
    title: str
    content: str


FIELD_OWNERS = {
    "files": "FetchLocal",
    "abstractions": "IdentifyAbstractions",
    "relationships": "AnalyzeRelationships",
    "chapter_order": "OrderChapters",
    "chapters": "WriteChapters",
    "index_document": "CombineTutorial",
    "chapter_documents": "CombineTutorial",
}

_CHECKED_FIELDS = ("files", "abstractions", "relationships", "chapter_order", "chapters")


@dataclass
class SharedContext:
    config: RunConfig
    files: list[FileEntry] = field(default_factory=list)
    abstractions: list[Abstraction] = field(default_factory=list)
    relationships: RelationshipGraph = field(default_factory=RelationshipGraph)
    chapter_order: list[int] = field(default_factory=list)
    chapters: list[Chapter] = field(default_factory=list)
    index_document: str = ""
    chapter_documents: list[ChapterDocument] = field(default_factory=list)
    final_output_dir: Optional[str] = None

    @classmethod
    def new(cls, config: RunConfig) -> "SharedContext":
        return cls(config=config)

    @property
    def project_name(self) -> str:
        return self.config.project_name

    def commit(self, stage: str, **fields: Any) -> None:
        """Write stage-owned fields after checking ownership and invariants."""
        for name in fields:
            owner = FIELD_OWNERS.get(name)
            if owner is None:
                raise OwnershipError(f"Unknown shared context field: {name}")
            if owner != stage:
                raise OwnershipError(
                    f"Stage {stage} cannot write '{name}' (owned by {owner})",
                    details={"stage": stage, "field": name, "owner": owner},
                )
        # Check against the post-commit view so fields written together agree.
        state = {name: getattr(self, name) for name in _CHECKED_FIELDS}
        state.update({k: v for k, v in fields.items() if k in _CHECKED_FIELDS})
        check_invariants(fields.keys(), **state)
        for name, value in fields.items():
            setattr(self, name, value)


def check_invariants(
    written: Any,
    files: list[FileEntry],
    abstractions: list[Abstraction],
    relationships: RelationshipGraph,
    chapter_order: list[int],
    chapters: list[Chapter],
) -> None:
    """Raise ContractViolationError if a written field breaks a cross-reference invariant."""
    written = set(written)
    n_files = len(files)
    n_abs = len(abstractions)
    if "abstractions" in written:
        for a in abstractions:
            bad = [i for i in a.file_indices if not 0 <= i < n_files]
            if bad:
                raise ContractViolationError(
                    f"Abstraction '{a.name}' references file indices {bad} outside [0, {n_files})"
                )
    if "relationships" in written:
        for e in relationships.edges:
            for idx in (e.from_abstraction, e.to_abstraction):
                if not 0 <= idx < n_abs:
                    raise ContractViolationError(
                        f"Relationship {e.from_abstraction}->{e.to_abstraction} references abstraction {idx} outside [0, {n_abs})"
                    )
    if "chapter_order" in written:
        if sorted(chapter_order) != list(range(n_abs)):
            raise ContractViolationError(
                f"Chapter order {chapter_order} is not a permutation of 0..{n_abs - 1}"
            )
    if "chapters" in written:
        if [c.abstraction_index for c in chapters] != list(chapter_order):
            raise ContractViolationError("Chapters are not in chapter order")
        for k, c in enumerate(chapters):
            if c.sequence_number != k + 1:
                raise ContractViolationError(
                    f"Chapter at position {k} has sequence number {c.sequence_number}, expected {k + 1}"
                )
