"""Unit tests for shared_schema: SharedContext ownership and cross-reference invariants."""

import pytest

from config import build_config
from errors import ContractViolationError, OwnershipError
from shared_schema import (
    FIELD_OWNERS,
    Abstraction,
    Chapter,
    FileEntry,
    Relationship,
    RelationshipGraph,
    SharedContext,
)


def _context():
    context = SharedContext.new(build_config(project_name="Demo"))
    context.commit("FetchLocal", files=[FileEntry("a.py", "a"), FileEntry("b.py", "b")])
    return context


def test_new_context_is_empty():
    """A new context has the config and empty outputs."""
    context = SharedContext.new(build_config(project_name="Demo"))
    assert context.project_name == "Demo"
    assert context.files == []
    assert context.abstractions == []
    assert context.relationships == RelationshipGraph()
    assert context.chapter_order == []
    assert context.chapters == []
    assert context.index_document == ""
    assert context.final_output_dir is None


def test_every_field_has_one_owner():
    """Each output field is owned by exactly one stage."""
    assert FIELD_OWNERS["files"] == "FetchLocal"
    assert FIELD_OWNERS["abstractions"] == "IdentifyAbstractions"
    assert FIELD_OWNERS["relationships"] == "AnalyzeRelationships"
    assert FIELD_OWNERS["chapter_order"] == "OrderChapters"
    assert FIELD_OWNERS["chapters"] == "WriteChapters"
    assert FIELD_OWNERS["index_document"] == FIELD_OWNERS["chapter_documents"] == "CombineTutorial"


def test_commit_rejects_field_owned_by_another_stage():
    """A stage writing a field it does not own raises OwnershipError and leaves the context unchanged."""
    context = _context()
    with pytest.raises(OwnershipError):
        context.commit("OrderChapters", abstractions=[Abstraction("A", "d", (0,))])
    assert context.abstractions == []


def test_commit_rejects_unknown_field():
    """Unknown fields are rejected."""
    with pytest.raises(OwnershipError):
        _context().commit("FetchLocal", language="english")


def test_commit_checks_abstraction_file_indices():
    """Abstraction file indices must be in [0, len(files))."""
    context = _context()
    context.commit("IdentifyAbstractions", abstractions=[Abstraction("A", "d", (0, 1))])
    with pytest.raises(ContractViolationError):
        context.commit("IdentifyAbstractions", abstractions=[Abstraction("A", "d", (2,))])


def test_commit_checks_relationship_endpoints():
    """Relationship endpoints must be valid abstraction indices."""
    context = _context()
    context.commit("IdentifyAbstractions", abstractions=[Abstraction("A", "d"), Abstraction("B", "d")])
    context.commit("AnalyzeRelationships", relationships=RelationshipGraph("s", (Relationship(0, 1, "uses"),)))
    with pytest.raises(ContractViolationError):
        context.commit("AnalyzeRelationships", relationships=RelationshipGraph("s", (Relationship(0, 2, "uses"),)))


def test_commit_checks_chapter_order_is_permutation():
    """chapter_order must contain every abstraction index exactly once."""
    context = _context()
    context.commit("IdentifyAbstractions", abstractions=[Abstraction("A", "d"), Abstraction("B", "d")])
    context.commit("OrderChapters", chapter_order=[1, 0])
    with pytest.raises(ContractViolationError):
        context.commit("OrderChapters", chapter_order=[0, 0])
    with pytest.raises(ContractViolationError):
        context.commit("OrderChapters", chapter_order=[0])


def test_commit_checks_chapters_follow_order_and_numbering():
    """Chapters follow chapter_order with sequence numbers 1..n."""
    context = _context()
    context.commit("IdentifyAbstractions", abstractions=[Abstraction("A", "d"), Abstraction("B", "d")])
    context.commit("OrderChapters", chapter_order=[1, 0])
    good = [Chapter(1, 1, "01_b.md", "# B"), Chapter(0, 2, "02_a.md", "# A")]
    context.commit("WriteChapters", chapters=good)
    assert context.chapters == good
    with pytest.raises(ContractViolationError):
        context.commit("WriteChapters", chapters=[Chapter(0, 1, "01_a.md", "# A"), Chapter(1, 2, "02_b.md", "# B")])
    with pytest.raises(ContractViolationError):
        context.commit("WriteChapters", chapters=[Chapter(1, 1, "01_b.md", "# B"), Chapter(0, 3, "03_a.md", "# A")])
