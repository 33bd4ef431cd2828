"""Integration tests: full pipeline over a real directory with the LLM mocked."""

from unittest.mock import patch

import pytest
from pocketflow import Flow

from config import build_config
from errors import ContractViolationError, DirectoryNotFoundError
from flow import create_analysis_flow, create_fetch_flow, create_tutorial_flow, run_pipeline
from shared_schema import SharedContext


def _project(tmp_path):
    src = tmp_path / "proj"
    src.mkdir()
    (src / "app.py").write_text("from store import Store\n\nclass App:\n    pass\n")
    (src / "store.py").write_text("class Store:\n    pass\n")
    (src / "README.md").write_text("not included")
    return src


def _context(tmp_path, **overrides):
    config = build_config(
        local_dir=str(_project(tmp_path)),
        project_name="Proj",
        api_key="test-key",
        include_patterns=["*.py"],
        cache_path=str(tmp_path / "llm_cache.json"),
        **overrides,
    )
    return SharedContext.new(config)


def fake_structured(prompt, schema, config, use_cache=True):
    if "Identify the top" in prompt:
        return [
            {"name": "App", "description": "Entry point.", "file_indices": ["0 # app.py"]},
            {"name": "Store", "description": "Keeps data.", "file_indices": [1]},
        ]
    if "high-level `summary`" in prompt:
        return {
            "summary": "A tiny app.",
            "relationships": [{"from_abstraction": "0 # App", "to_abstraction": "1 # Store", "label": "Uses"}],
        }
    if "best order to explain" in prompt:
        return ["1 # Store", "0 # App"]
    raise AssertionError(f"unexpected prompt: {prompt[:80]}")


def test_create_flows_return_flow_instances():
    """All flow factories return pocketflow Flows."""
    for factory in (create_fetch_flow, create_analysis_flow, create_tutorial_flow):
        assert isinstance(factory(), Flow)


def test_fetch_flow_reads_directory(tmp_path):
    """The fetch flow fills files from the real directory in sorted order."""
    context = _context(tmp_path)
    create_fetch_flow().run(context)
    assert [f.path for f in context.files] == ["app.py", "store.py"]


def test_fetch_flow_missing_directory(tmp_path):
    """A missing directory aborts before any LLM call."""
    context = SharedContext.new(build_config(local_dir=str(tmp_path / "missing")))
    with patch("nodes.call_llm_structured") as mock_llm:
        with pytest.raises(DirectoryNotFoundError):
            run_pipeline(context)
    mock_llm.assert_not_called()


def test_analysis_flow_populates_abstractions_relationships_chapter_order(tmp_path):
    """The analysis flow fills abstractions, relationships and chapter_order."""
    context = _context(tmp_path)
    with patch("nodes.call_llm_structured", side_effect=fake_structured):
        create_analysis_flow().run(context)
    assert [a.name for a in context.abstractions] == ["App", "Store"]
    assert context.abstractions[0].file_indices == (0,)
    assert context.relationships.summary == "A tiny app."
    assert context.chapter_order == [1, 0]


def test_full_pipeline_produces_chapters_in_order(tmp_path):
    """End to end: chapters follow the order and each later prompt carries earlier chapters."""
    context = _context(tmp_path)
    chapter_prompts = []

    def fake_call_llm(prompt, config, use_cache=True):
        chapter_prompts.append(prompt)
        return f"# Chapter {len(chapter_prompts)}: x\nText of chapter {len(chapter_prompts)}."

    with patch("nodes.call_llm_structured", side_effect=fake_structured):
        with patch("nodes.call_llm", side_effect=fake_call_llm):
            run_pipeline(context)

    assert [c.abstraction_index for c in context.chapters] == [1, 0]
    assert [c.sequence_number for c in context.chapters] == [1, 2]
    assert [c.filename for c in context.chapters] == ["01_store.md", "02_app.md"]
    assert "Text of chapter 1." in chapter_prompts[1]
    assert "class Store" in chapter_prompts[0]
    assert context.index_document.startswith("# Tutorial: Proj")
    assert "A0 -->|\"Uses\"| A1" in context.index_document
    assert [d.title for d in context.chapter_documents] == ["Store", "App"]


def test_pipeline_stops_at_first_failing_stage(tmp_path):
    """An invalid relationship index aborts the run; later stages never run."""

    def bad_relationships(prompt, schema, config, use_cache=True):
        if "high-level `summary`" in prompt:
            return {"summary": "s", "relationships": [{"from_abstraction": 0, "to_abstraction": 7, "label": "x"}]}
        return fake_structured(prompt, schema, config, use_cache)

    context = _context(tmp_path)
    with patch("nodes.call_llm_structured", side_effect=bad_relationships):
        with patch("nodes.call_llm") as mock_chapter_llm:
            with pytest.raises(ContractViolationError):
                run_pipeline(context)
    mock_chapter_llm.assert_not_called()
    assert context.chapter_order == []
    assert context.chapters == []


def test_pipeline_uses_cache_between_runs(tmp_path):
    """A second identical run is served from the on-disk cache without provider calls."""

    class Reply:
        def __init__(self, text):
            self.text = text
            self.parsed = None

    replies = {
        "Identify the top": '[{"name": "App", "description": "d", "file_indices": [0]}]',
        "high-level `summary`": '{"summary": "s", "relationships": []}',
        "best order to explain": "[0]",
    }

    def generate_content(model, contents, config):
        prompt = contents[0]
        for marker, text in replies.items():
            if marker in prompt:
                return Reply(text)
        return Reply("# Chapter 1: App\nbody")

    with patch("google.genai.Client") as mock_cls:
        mock_cls.return_value.models.generate_content.side_effect = generate_content
        run_pipeline(_context(tmp_path))
        calls_after_first = mock_cls.return_value.models.generate_content.call_count
        second = SharedContext.new(
            build_config(
                local_dir=str(tmp_path / "proj"),
                project_name="Proj",
                api_key="test-key",
                include_patterns=["*.py"],
                cache_path=str(tmp_path / "llm_cache.json"),
            )
        )
        run_pipeline(second)
    assert calls_after_first == 4
    assert mock_cls.return_value.models.generate_content.call_count == 4
    assert second.chapters[0].content == "# Chapter 1: App\nbody"


def test_three_chapters_follow_order_with_rolling_context(tmp_path):
    """Order [2, 0, 1] yields chapters 1..3 for abstractions 2, 0, 1; each prompt carries all earlier chapters."""
    src = tmp_path / "three"
    src.mkdir()
    for name in ("a.py", "b.py", "c.py"):
        (src / name).write_text(f"# {name}\n")
    config = build_config(
        local_dir=str(src),
        project_name="Three",
        api_key="test-key",
        cache_path=str(tmp_path / "llm_cache.json"),
    )
    context = SharedContext.new(config)

    def structured(prompt, schema, config, use_cache=True):
        if "Identify the top" in prompt:
            return [{"name": n, "description": "d", "file_indices": [i]} for i, n in enumerate(["A", "B", "C"])]
        if "high-level `summary`" in prompt:
            edges = [(0, 1), (1, 2), (2, 0)]
            return {
                "summary": "s",
                "relationships": [{"from_abstraction": f, "to_abstraction": t, "label": "x"} for f, t in edges],
            }
        return [2, 0, 1]

    prompts = []
    bodies = ["# Chapter 1: C\nFIRST BODY", "# Chapter 2: A\nSECOND BODY", "# Chapter 3: B\nTHIRD BODY"]

    def plain(prompt, config, use_cache=True):
        prompts.append(prompt)
        return bodies[len(prompts) - 1]

    with patch("nodes.call_llm_structured", side_effect=structured), patch("nodes.call_llm", side_effect=plain):
        run_pipeline(context)

    assert [c.sequence_number for c in context.chapters] == [1, 2, 3]
    assert [c.abstraction_index for c in context.chapters] == [2, 0, 1]
    assert bodies[0] in prompts[1]
    assert f"{bodies[0]}\n---\n{bodies[1]}" in prompts[2]
