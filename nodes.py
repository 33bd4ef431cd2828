"""
PocketFlow nodes for the code2tutorial pipeline.

Each node follows prep/exec/post: prep reads its slice of the SharedContext and
builds prompt text, exec is the only phase that calls the LLM (and validates
what comes back), post commits the fields the node owns.
"""

import logging
from typing import Any, Optional

from pocketflow import BatchNode, Node

from config import MAX_CONTENT_LENGTH, MAX_FILES_TO_PROCESS, MIN_ABSTRACTIONS
from errors import ConfigError, ContractViolationError
from shared_schema import (
    Abstraction,
    Chapter,
    ChapterDocument,
    FileEntry,
    Relationship,
    RelationshipGraph,
    SharedContext,
)
from utils.call_llm import call_llm, call_llm_structured, forget_cached_response
from utils.context_helpers import create_llm_context, format_file_snippets, get_content_for_indices
from utils.crawl_local_files import crawl_local_files
from utils.validation import (
    backfill_missing,
    check_for_duplicates,
    filter_valid_indices,
    parse_index,
    validate_index_range,
)

logger = logging.getLogger("code2tutorial")

ATTRIBUTION = "Generated by code2tutorial"

ABSTRACTIONS_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING"},
            "description": {"type": "STRING"},
            "file_indices": {"type": "ARRAY", "items": {"type": "INTEGER"}},
        },
        "required": ["name", "description", "file_indices"],
    },
}

RELATIONSHIPS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "relationships": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "from_abstraction": {"type": "INTEGER"},
                    "to_abstraction": {"type": "INTEGER"},
                    "label": {"type": "STRING"},
                },
                "required": ["from_abstraction", "to_abstraction", "label"],
            },
        },
    },
    "required": ["summary", "relationships"],
}

ORDER_SCHEMA = {"type": "ARRAY", "items": {"type": "INTEGER"}}


def chapter_title(name: str) -> str:
    name = name.strip()
    return name[:1].upper() + name[1:]


def chapter_filename(sequence_number: int, name: str) -> str:
    """`01_query_processing.md`: zero-padded number plus the name with non-alphanumerics as `_`."""
    safe_name = "".join(c if c.isalnum() else "_" for c in chapter_title(name)).lower()
    return f"{sequence_number:02d}_{safe_name}.md"


class FetchLocal(Node):
    """
    Crawl the local directory into the file inventory.

    prep: Read local_dir, include/exclude patterns, max_file_size from config.
    exec: Call crawl_local_files; convert the path -> content mapping to an ordered list of FileEntry.
    post: Commit files.
    """

    def prep(self, shared: SharedContext) -> dict:
        config = shared.config
        return {
            "local_dir": config.local_dir,
            "include_patterns": list(config.include_patterns),
            "exclude_patterns": list(config.exclude_patterns),
            "max_file_size": config.max_file_size,
        }

    def exec(self, prep_res: dict) -> list[FileEntry]:
        logger.info("Crawling directory: %s", prep_res["local_dir"])
        result = crawl_local_files(
            prep_res["local_dir"],
            include_patterns=prep_res["include_patterns"],
            exclude_patterns=prep_res["exclude_patterns"],
            max_file_size=prep_res["max_file_size"],
        )
        files = [FileEntry(path, content) for path, content in (result.get("files") or {}).items()]
        if not files:
            raise ConfigError(f"No files matched in {prep_res['local_dir']}")
        return files

    def post(self, shared: SharedContext, prep_res: dict, exec_res: list[FileEntry]) -> str:
        shared.commit("FetchLocal", files=exec_res)
        logger.info("FetchLocal: fetched %s files", len(exec_res))
        return "default"


class IdentifyAbstractions(Node):
    """
    Identify core abstractions from a bounded prefix of the inventory.

    prep: Build the prompt from the first MAX_FILES_TO_PROCESS files (each truncated).
    exec: Structured LLM call; drop malformed items and out-of-range file indices with a warning; truncate.
    post: Commit abstractions.
    """

    def prep(self, shared: SharedContext) -> dict:
        config = shared.config
        files = shared.files
        context, file_info = create_llm_context(files, MAX_FILES_TO_PROCESS, MAX_CONTENT_LENGTH)
        file_listing = "\n".join(f"- {i} # {path}" for i, path in file_info)
        max_abstractions = config.max_abstractions
        prompt = f"""For the project `{shared.project_name}`:

Codebase Context:
{context}
Analyze the codebase context.
Identify the top {MIN_ABSTRACTIONS}-{max_abstractions} core most important abstractions to help those new to the codebase.

For each abstraction, provide:
1. A concise `name`.
2. A beginner-friendly `description` explaining what it is with a simple analogy, in around 100 words.
3. A list of relevant `file_indices` (integers) using the format `idx # path/comment`.

List of file indices and paths present in the context:
{file_listing}

Format the output as a YAML list of dictionaries:

```yaml
- name: |
    Query Processing
  description: |
    Explains what the abstraction does.
    It's like a central dispatcher routing requests.
  file_indices:
    - 0 # path/to/file1.py
    - 3 # path/to/related.py
- name: |
    Query Optimization
  description: |
    Another core concept, similar to a blueprint for objects.
  file_indices:
    - 5 # path/to/another.js
# ... up to {max_abstractions} abstractions
```"""
        return {
            "prompt": prompt,
            "file_count": len(files),
            "max_abstractions": max_abstractions,
            "config": config,
        }

    def exec(self, prep_res: dict) -> list[Abstraction]:
        logger.info("Identifying abstractions using LLM...")
        response = call_llm_structured(prep_res["prompt"], ABSTRACTIONS_SCHEMA, prep_res["config"])
        try:
            abstractions = _parse_abstractions(response, prep_res["file_count"])
        except ContractViolationError:
            forget_cached_response(prep_res["prompt"], prep_res["config"])
            raise

        limited = abstractions[: prep_res["max_abstractions"]]
        logger.info("Identified %s abstractions: %s", len(limited), [a.name for a in limited])
        return limited

    def post(self, shared: SharedContext, prep_res: dict, exec_res: list[Abstraction]) -> str:
        shared.commit("IdentifyAbstractions", abstractions=exec_res)
        return "default"


def _parse_abstractions(response: Any, file_count: int) -> list[Abstraction]:
    if not isinstance(response, list):
        raise ContractViolationError(f"LLM output is not a list of abstractions (got {type(response).__name__})")

    abstractions: list[Abstraction] = []
    for item in response:
        problem = _abstraction_item_problem(item)
        if problem:
            logger.warning("Skipping invalid abstraction item (%s): %s", problem, item)
            continue
        name = item["name"].strip()
        indices = filter_valid_indices(item["file_indices"], file_count, f"file indices for {name}")
        abstractions.append(Abstraction(name, item["description"].strip(), tuple(indices)))
    return abstractions


def _abstraction_item_problem(item: Any) -> Optional[str]:
    if not isinstance(item, dict):
        return "not a mapping"
    for key in ("name", "description", "file_indices"):
        if key not in item:
            return f"missing {key}"
    if not isinstance(item["name"], str):
        return "name is not a string"
    if not isinstance(item["description"], str):
        return "description is not a string"
    if not isinstance(item["file_indices"], list):
        return "file_indices is not a list"
    return None


class AnalyzeRelationships(Node):
    """
    Generate the project summary and index-based relationships between abstractions.

    prep: List abstractions by index and gather content for the union of their files.
    exec: Structured LLM call; strict validation, any bad edge or index is fatal.
    post: Commit relationships.
    """

    def prep(self, shared: SharedContext) -> dict:
        abstractions = shared.abstractions
        context_lines = ["Identified Abstractions:"]
        abstraction_listing = []
        all_file_indices: set[int] = set()
        for i, a in enumerate(abstractions):
            indices_str = ", ".join(map(str, a.file_indices))
            context_lines.append(
                f"- Index {i}: {a.name} (Relevant file indices: [{indices_str}])\n  Description: {a.description}"
            )
            abstraction_listing.append(f"{i} # {a.name}")
            all_file_indices.update(a.file_indices)

        context_lines.append("\nRelevant File Snippets (Referenced by Index and Path):")
        content_map = get_content_for_indices(shared.files, sorted(all_file_indices))
        context_lines.append(format_file_snippets(content_map))
        context = "\n".join(context_lines)
        listing = "\n".join(abstraction_listing)

        prompt = f"""Based on the following abstractions and relevant code snippets from the project `{shared.project_name}`:

List of Abstraction Indices and Names:
{listing}

Context (Abstractions, Descriptions, Code):
{context}

Please provide:
1. A high-level `summary` of the project's main purpose and functionality in a few beginner-friendly sentences. Use markdown formatting with **bold** and *italic* text to highlight important concepts.
2. A list (`relationships`) describing the key interactions between these abstractions. For each relationship, specify:
   - `from_abstraction`: Index of the source abstraction (e.g., `0 # AbstractionName1`)
   - `to_abstraction`: Index of the target abstraction (e.g., `1 # AbstractionName2`)
   - `label`: A brief label for the interaction **in just a few words** (e.g., "Manages", "Inherits", "Uses").
   Ideally the relationship should be backed by one abstraction calling or passing parameters to another.
   Simplify the relationship and exclude those non-important ones.

IMPORTANT: Make sure EVERY abstraction is involved in at least ONE relationship (either as source or target). Each abstraction index must appear at least once across all relationships.

Format the output as YAML:

```yaml
summary: |
  A brief, simple explanation of the project.
  Can span multiple lines with **bold** and *italic* for emphasis.
relationships:
  - from_abstraction: 0 # AbstractionName1
    to_abstraction: 1 # AbstractionName2
    label: "Manages"
  - from_abstraction: 2 # AbstractionName3
    to_abstraction: 0 # AbstractionName1
    label: "Provides config"
  # ... other relationships
```

Now, provide the YAML output:
"""
        return {"prompt": prompt, "num_abstractions": len(abstractions), "config": shared.config}

    def exec(self, prep_res: dict) -> RelationshipGraph:
        logger.info("Analyzing relationships using LLM...")
        data = call_llm_structured(prep_res["prompt"], RELATIONSHIPS_SCHEMA, prep_res["config"])
        try:
            return self._to_graph(data, prep_res["num_abstractions"])
        except ContractViolationError:
            forget_cached_response(prep_res["prompt"], prep_res["config"])
            raise

    def _to_graph(self, data: Any, n_abs: int) -> RelationshipGraph:
        if not isinstance(data, dict) or "summary" not in data or "relationships" not in data:
            raise ContractViolationError(
                f"LLM output is missing required keys ('summary', 'relationships'). Got: {data!r:.300}"
            )
        if not isinstance(data["summary"], str):
            raise ContractViolationError("summary is not a string")
        if not isinstance(data["relationships"], list):
            raise ContractViolationError("relationships is not a list")

        edges: list[Relationship] = []
        for rel in data["relationships"]:
            if not isinstance(rel, dict) or not all(k in rel for k in ("from_abstraction", "to_abstraction", "label")):
                raise ContractViolationError(
                    f"Missing keys (expected from_abstraction, to_abstraction, label) in relationship item: {rel!r}"
                )
            if not isinstance(rel["label"], str):
                raise ContractViolationError(f"Relationship label is not a string: {rel!r}")
            from_idx = parse_index(rel["from_abstraction"])
            to_idx = parse_index(rel["to_abstraction"])
            validate_index_range(from_idx, n_abs, "relationship from index")
            validate_index_range(to_idx, n_abs, "relationship to index")
            edges.append(Relationship(from_idx, to_idx, rel["label"].strip()))

        uncovered = set(range(n_abs)) - {i for e in edges for i in (e.from_abstraction, e.to_abstraction)}
        if uncovered:
            logger.info("Abstractions not in any relationship: %s", sorted(uncovered))
        logger.info("Generated project summary and %s relationships.", len(edges))
        return RelationshipGraph(summary=data["summary"].strip(), edges=tuple(edges))

    def post(self, shared: SharedContext, prep_res: dict, exec_res: RelationshipGraph) -> str:
        shared.commit("AnalyzeRelationships", relationships=exec_res)
        return "default"


class OrderChapters(Node):
    """
    Determine the teaching order (a permutation of abstraction indices).

    prep: Summarize abstractions and relationships for the prompt.
    exec: Structured LLM call; parse and range-check each entry, reject duplicates, append missing indices.
    post: Commit chapter_order.
    """

    def prep(self, shared: SharedContext) -> dict:
        abstractions = shared.abstractions
        graph = shared.relationships
        listing = "\n".join(f"- {i} # {a.name}" for i, a in enumerate(abstractions))

        context = f"Project Summary:\n{graph.summary}\n\n"
        context += "Relationships (Indices refer to abstractions above):\n"
        for rel in graph.edges:
            from_name = abstractions[rel.from_abstraction].name
            to_name = abstractions[rel.to_abstraction].name
            context += f"- From {rel.from_abstraction} ({from_name}) to {rel.to_abstraction} ({to_name}): {rel.label}\n"

        project_name = shared.project_name
        prompt = f"""Given the following project abstractions and their relationships for the project `{project_name}`:

Abstractions (Index # Name):
{listing}

Context about relationships and project summary:
{context}
If you are going to make a tutorial for `{project_name}`, what is the best order to explain these abstractions, from first to last?
Ideally, first explain those that are the most important or foundational, perhaps user-facing concepts or entry points. Then move to more detailed, lower-level implementation details or supporting concepts.

Output the ordered list of abstraction indices, including the name in a comment for clarity. Use the format `idx # AbstractionName`.

```yaml
- 2 # FoundationalConcept
- 0 # CoreClassA
- 1 # CoreClassB (uses CoreClassA)
- ...
```

Now, provide the YAML output:
"""
        return {"prompt": prompt, "num_abstractions": len(abstractions), "config": shared.config}

    def exec(self, prep_res: dict) -> list[int]:
        logger.info("Determining chapter order using LLM...")
        response = call_llm_structured(prep_res["prompt"], ORDER_SCHEMA, prep_res["config"])
        try:
            return self._to_order(response, prep_res["num_abstractions"])
        except ContractViolationError:
            forget_cached_response(prep_res["prompt"], prep_res["config"])
            raise

    def _to_order(self, response: Any, n_abs: int) -> list[int]:
        if not isinstance(response, list):
            raise ContractViolationError(f"Expected a list for chapter order, got {type(response).__name__}")

        ordered: list[int] = []
        for entry in response:
            idx = parse_index(entry)
            validate_index_range(idx, n_abs, "ordered list")
            ordered.append(idx)
        check_for_duplicates(ordered, "ordered list")
        ordered = backfill_missing(ordered, n_abs, "chapter order")
        logger.info("Determined chapter order: %s", ordered)
        return ordered

    def post(self, shared: SharedContext, prep_res: dict, exec_res: list[int]) -> str:
        shared.commit("OrderChapters", chapter_order=exec_res)
        return "default"


class WriteChapters(BatchNode):
    """
    Generate one chapter per position in chapter_order, strictly in sequence.

    Each exec(item) sees every chapter written before it through
    chapters_written_so_far; the buffer lives only for the batch and is
    cleared in post.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.chapters_written_so_far: list[str] = []

    def prep(self, shared: SharedContext) -> list[dict]:
        order = shared.chapter_order
        abstractions = shared.abstractions
        self.chapters_written_so_far = []

        refs: list[dict] = []
        for i, abs_idx in enumerate(order):
            name = chapter_title(abstractions[abs_idx].name)
            refs.append({"num": i + 1, "name": name, "filename": chapter_filename(i + 1, name)})
        full_chapter_listing = "\n".join(f"{r['num']}. [{r['name']}]({r['filename']})" for r in refs)

        items: list[dict] = []
        for i, abs_idx in enumerate(order):
            abstraction = abstractions[abs_idx]
            content_map = get_content_for_indices(shared.files, abstraction.file_indices)
            items.append({
                "chapter_number": i + 1,
                "abstraction_index": abs_idx,
                "name": refs[i]["name"],
                "description": abstraction.description,
                "filename": refs[i]["filename"],
                "file_context": format_file_snippets(content_map, with_index=False),
                "full_chapter_listing": full_chapter_listing,
                "prev_chapter": refs[i - 1] if i > 0 else None,
                "next_chapter": refs[i + 1] if i + 1 < len(refs) else None,
                "project_name": shared.project_name,
                "config": shared.config,
            })
        logger.info("Prepared %s chapters for writing...", len(items))
        return items

    def exec(self, item: dict) -> Chapter:
        num = item["chapter_number"]
        name = item["name"]
        logger.info("Writing chapter %s: %s", num, name)

        previous_chapters = "\n---\n".join(self.chapters_written_so_far)
        prompt = _chapter_prompt(item, previous_chapters)
        content = call_llm(prompt, item["config"])
        content = ensure_chapter_heading(content, num, name)

        self.chapters_written_so_far.append(content)
        return Chapter(
            abstraction_index=item["abstraction_index"],
            sequence_number=num,
            filename=item["filename"],
            content=content,
        )

    def post(self, shared: SharedContext, prep_res: list[dict], exec_res_list: list[Chapter]) -> str:
        shared.commit("WriteChapters", chapters=list(exec_res_list))
        self.chapters_written_so_far = []
        logger.info("Written all %s chapters.", len(exec_res_list))
        return "default"


def ensure_chapter_heading(content: str, num: int, name: str) -> str:
    """Replace a wrong first heading, or prepend one, so the chapter starts with `# Chapter N: Name`."""
    heading = f"# Chapter {num}: {name}"
    text = content.strip()
    if text.startswith(f"# Chapter {num}"):
        return content
    lines = text.split("\n")
    if lines and lines[0].strip().startswith("#"):
        lines[0] = heading
        return "\n".join(lines)
    return f"{heading}\n\n{text}"


def _chapter_prompt(item: dict, previous_chapters: str) -> str:
    num = item["chapter_number"]
    name = item["name"]
    prev_chapter = item["prev_chapter"]
    next_chapter = item["next_chapter"]

    if prev_chapter:
        transition_in = (
            f"- Begin with a brief transition from the previous chapter, referencing it with a proper Markdown link: "
            f"[{prev_chapter['name']}]({prev_chapter['filename']}).\n"
        )
    else:
        transition_in = ""
    if next_chapter:
        transition_out = (
            f"Provide a transition to the next chapter using a proper Markdown link: "
            f"[{next_chapter['name']}]({next_chapter['filename']})."
        )
    else:
        transition_out = "Do not mention any next chapter since this is the final chapter."

    return f"""Write a very beginner-friendly tutorial chapter (in Markdown format) for the project `{item['project_name']}` about the concept: "{name}". This is Chapter {num}.

Concept Details:
- Name: {name}
- Description:
{item['description']}

Complete Tutorial Structure:
{item['full_chapter_listing']}

Context from previous chapters:
{previous_chapters or "This is the first chapter."}

Relevant Code Snippets (Code itself remains unchanged):
{item['file_context'] or "No specific code snippets provided for this abstraction."}

Instructions for the chapter:
- Start with a clear heading (e.g., `# Chapter {num}: {name}`). Use the provided concept name.
{transition_in}- Begin with a high-level motivation explaining what problem this abstraction solves. Start with a central use case as a concrete example. The whole chapter should guide the reader to understand how to solve this use case. Make it very minimal and friendly to beginners.
- If the abstraction is complex, break it down into key concepts. Explain each concept one-by-one in a very beginner-friendly way.
- Explain how to use this abstraction to solve the use case. Give example inputs and outputs for code snippets (if the output isn't values, describe at a high level what will happen).
- Each code block should be BELOW 10 lines! If longer code blocks are needed, break them down into smaller pieces and walk through them one-by-one. Aggressively simplify the code to make it minimal. Use comments to skip non-important implementation details. Each code block should have a beginner friendly explanation right after it.
- Describe the internal implementation to help understand what's under the hood. First provide a non-code or code-light walkthrough on what happens step-by-step when the abstraction is called. It's recommended to use a simple sequenceDiagram with a dummy example - keep it minimal with at most 5 participants to ensure clarity. If participant name has space, use: `participant QP as Query Processing`.
- Then dive deeper into code for the internal implementation with references to files. Provide example code blocks, but make them similarly simple and beginner-friendly. Explain.
- IMPORTANT: When you need to refer to other core abstractions covered in other chapters, ALWAYS use proper Markdown links like this: [Chapter Title](filename.md). Use the Complete Tutorial Structure above to find the correct filename and the chapter title.
- Use mermaid diagrams to illustrate complex concepts (```mermaid``` format).
- Heavily use analogies and examples throughout to help beginners understand.
- End the chapter with a brief conclusion that summarizes what was learned. {transition_out}
- Ensure the tone is welcoming and easy for a newcomer to understand.
- Output *only* the Markdown content for this chapter.

Now, directly provide a super beginner-friendly Markdown output (DON'T need ```markdown``` tags):
"""


class CombineTutorial(Node):
    """
    Compose index.md (summary, Mermaid diagram, chapter links) and the final chapter documents.

    No LLM call; exec only checks that there is something to combine.
    post: Commit index_document and chapter_documents.
    """

    def prep(self, shared: SharedContext) -> dict:
        return {
            "project_name": shared.project_name,
            "abstractions": list(shared.abstractions),
            "relationships": shared.relationships,
            "chapters": list(shared.chapters),
        }

    def exec(self, prep_res: dict) -> tuple[str, list[ChapterDocument]]:
        abstractions: list[Abstraction] = prep_res["abstractions"]
        chapters: list[Chapter] = prep_res["chapters"]
        if not abstractions or not chapters:
            raise ContractViolationError("Nothing to combine: no abstractions or chapters were generated")

        graph: RelationshipGraph = prep_res["relationships"]
        index_content = f"# Tutorial: {prep_res['project_name']}\n\n"
        index_content += f"{graph.summary}\n\n"
        index_content += "```mermaid\n" + mermaid_flowchart(abstractions, graph) + "\n```\n\n"
        index_content += "## Chapters\n\n"

        documents: list[ChapterDocument] = []
        for chapter in chapters:
            title = chapter_title(abstractions[chapter.abstraction_index].name)
            index_content += f"{chapter.sequence_number}. [{title}]({chapter.filename})\n"
            content = chapter.content
            if not content.endswith("\n\n"):
                content = content.rstrip("\n") + "\n\n"
            content += f"---\n\n{ATTRIBUTION}"
            documents.append(ChapterDocument(filename=chapter.filename, title=title, content=content))

        index_content += f"\n\n---\n\n{ATTRIBUTION}"
        return index_content, documents

    def post(self, shared: SharedContext, prep_res: dict, exec_res: tuple[str, list[ChapterDocument]]) -> str:
        index_document, documents = exec_res
        shared.commit("CombineTutorial", index_document=index_document, chapter_documents=documents)
        logger.info("CombineTutorial: index plus %s chapter documents", len(documents))
        return "default"


def mermaid_flowchart(abstractions: list[Abstraction], graph: RelationshipGraph, max_label_len: int = 30) -> str:
    lines = ["flowchart TD"]
    for i, a in enumerate(abstractions):
        lines.append(f'    A{i}["{a.name.replace(chr(34), chr(39))}"]')
    for rel in graph.edges:
        label = rel.label.replace('"', "'").replace("\n", " ")
        if len(label) > max_label_len:
            label = label[: max_label_len - 3] + "..."
        lines.append(f'    A{rel.from_abstraction} -->|"{label}"| A{rel.to_abstraction}')
    return "\n".join(lines)
