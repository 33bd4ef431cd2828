"""
code2tutorial CLI entrypoint.

Builds the run configuration from the persisted config document and CLI flags,
runs the pipeline flow, then hands the combined documents to the renderer.
"""

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from config import DEFAULT_CONFIG_PATH, build_config, load_config
from errors import ConfigError, TutorialError
from formats import render
from shared_schema import SharedContext

load_dotenv()
from flow import create_tutorial_flow, run_pipeline

logger = logging.getLogger("code2tutorial")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments. Unset options fall back to the config document."""
    p = argparse.ArgumentParser(
        prog="code2tutorial",
        description="Generate tutorials from codebases using AI.",
    )
    p.add_argument("-d", "--dir", default=os.getcwd(), help="Path to local directory (default: cwd).")
    p.add_argument("-n", "--name", default=None, help="Project name (default: directory name, capitalized).")
    p.add_argument("-o", "--output", default="output", help="Output directory (default: output).")
    p.add_argument("-i", "--include", nargs="+", default=None, help="Include file patterns.")
    p.add_argument("-e", "--exclude", nargs="+", default=None, help="Exclude file patterns.")
    p.add_argument("-s", "--max-size", type=int, default=None, help="Max file size in bytes.")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output (logs full prompts).")
    p.add_argument(
        "--cache",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable or disable the LLM response cache.",
    )
    p.add_argument("--max-abstractions", type=int, default=None, help="Max abstractions.")
    p.add_argument(
        "--llm-provider",
        choices=["gemini", "openai", "gemini_aiplatform", "cursor"],
        default=None,
        help="LLM provider.",
    )
    p.add_argument("--format", choices=["markdown", "html", "pdf"], default=None, help="Output format.")
    p.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the JSON config document (default: {DEFAULT_CONFIG_PATH}).",
    )
    return p.parse_args(argv)


def default_project_name(directory: str) -> str:
    name = os.path.basename(os.path.abspath(directory)) or "project"
    return name[:1].upper() + name[1:]


def config_from_args(args: argparse.Namespace):
    """Merge CLI flags over the persisted document and validate into a RunConfig."""
    document = load_config(args.config)
    values = dict(document)
    values["local_dir"] = args.dir
    values["project_name"] = (args.name or "").strip() or default_project_name(args.dir)
    values["output_dir"] = (args.output or "output").strip()
    values["verbose"] = args.verbose
    if args.include:
        values["include_patterns"] = args.include
    if args.exclude:
        values["exclude_patterns"] = args.exclude
    if args.max_size is not None:
        values["max_file_size"] = args.max_size
    if args.cache is not None:
        values["use_cache"] = args.cache
    if args.max_abstractions is not None:
        values["max_abstractions"] = args.max_abstractions
    if args.llm_provider:
        values["llm_provider"] = args.llm_provider
    if args.format:
        values["output_format"] = args.format
    return build_config(**values)


def main(argv: list[str] | None = None) -> int:
    """Parse args, build config, run flow, render. Returns 0 on success, 1 on run failure, 2 on bad input."""
    try:
        args = parse_args(argv)
    except SystemExit as e:
        return 2 if e.code else 0  # argparse error -> 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    context = SharedContext.new(config)
    logger.info("Starting tutorial generation for %s...", config.project_name)

    try:
        run_pipeline(context, create_tutorial_flow())
        out_path = os.path.join(config.output_dir, config.project_name.replace(os.sep, "_").strip() or "output")
        written = render(
            config.output_format,
            out_path,
            context.index_document,
            context.chapter_documents,
            config.project_name,
        )
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except TutorialError as e:
        logger.error("Pipeline failed [%s]: %s", e.code, e)
        return 1
    except Exception as e:
        logger.exception("Pipeline failed: %s", e)
        return 1

    context.final_output_dir = out_path
    logger.info("Tutorial written to: %s", written)
    print("Tutorial written to:", written)
    return 0


if __name__ == "__main__":
    sys.exit(main())
