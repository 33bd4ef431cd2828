"""
PocketFlow flow for the code2tutorial pipeline.
"""

import logging

from pocketflow import Flow

from nodes import (
    AnalyzeRelationships,
    CombineTutorial,
    FetchLocal,
    IdentifyAbstractions,
    OrderChapters,
    WriteChapters,
)
from shared_schema import SharedContext

logger = logging.getLogger("code2tutorial")


def create_fetch_flow() -> Flow:
    """Create minimal flow with FetchLocal only."""
    return Flow(start=FetchLocal())


def create_analysis_flow() -> Flow:
    """Create flow: FetchLocal -> IdentifyAbstractions -> AnalyzeRelationships -> OrderChapters."""
    fetch_local = FetchLocal()
    identify = IdentifyAbstractions()
    analyze = AnalyzeRelationships()
    order = OrderChapters()
    fetch_local >> identify >> analyze >> order
    return Flow(start=fetch_local)


def create_tutorial_flow() -> Flow:
    """Create full flow: FetchLocal -> IdentifyAbstractions -> AnalyzeRelationships -> OrderChapters -> WriteChapters -> CombineTutorial."""
    fetch_local = FetchLocal()
    identify = IdentifyAbstractions()
    analyze = AnalyzeRelationships()
    order = OrderChapters()
    write_chapters = WriteChapters()
    combine = CombineTutorial()
    fetch_local >> identify >> analyze >> order >> write_chapters >> combine
    return Flow(start=fetch_local)


def run_pipeline(context: SharedContext, flow: Flow | None = None) -> SharedContext:
    """
    Run the stages strictly in order against one context.

    The first stage failure propagates unchanged; later stages do not run.
    """
    flow = flow or create_tutorial_flow()
    logger.info("Starting pipeline for %s (%s)", context.project_name, context.config.local_dir)
    flow.run(context)
    logger.info(
        "Pipeline finished: %s files, %s abstractions, %s chapters",
        len(context.files),
        len(context.abstractions),
        len(context.chapters),
    )
    return context
