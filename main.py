"""Command-line entry point for DocChat.

``serve`` starts the Streamlit chat, ``ingest`` loads files into the
document store and vector index, and ``ask`` answers a single question
against what has been ingested.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from docchat.config import config
from docchat.errors import DocChatError, QueryValidationError
from docchat.models import QueryOptions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docchat.pipeline import DocChatPipeline

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_APP = PROJECT_ROOT / "app.py"
DEFAULT_USER = "cli"

logger = config.get_logger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Read command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Ask questions about your documents.",
    )
    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Start even when required configuration is missing.",
    )
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the Streamlit chat UI.")
    serve.add_argument("--port", type=int, default=8501)
    serve.add_argument("--address", default="localhost")
    serve.add_argument(
        "--show",
        dest="headless",
        action="store_false",
        help="Open a browser window instead of running headless.",
    )
    serve.set_defaults(headless=True)

    ingest = commands.add_parser("ingest", help="Add PDF, TXT or Markdown files.")
    ingest.add_argument("paths", nargs="+", type=Path)
    ingest.add_argument("--user", default=DEFAULT_USER)

    ask = commands.add_parser("ask", help="Answer one question.")
    ask.add_argument("question")
    ask.add_argument("--user", default=DEFAULT_USER)
    ask.add_argument("--chat", default="cli-chat")
    ask.add_argument("--temperature", type=float)
    ask.add_argument("--max-results", type=int)
    ask.add_argument(
        "--details", action="store_true", help="Print answer metadata as JSON."
    )

    argv = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args([*argv, "serve"])
    return args


def build_streamlit_command(
    script_path: Path, *, port: int, headless: bool, address: str
) -> list[str]:
    return [
        sys.executable,
        "-m",
        "streamlit",
        "run",
        str(script_path),
        "--server.port",
        str(port),
        "--server.address",
        address,
        "--server.headless",
        str(headless).lower(),
    ]


def serve(args: argparse.Namespace) -> int:
    command = build_streamlit_command(
        DEFAULT_APP, port=args.port, headless=args.headless, address=args.address
    )
    logger.info("Starting DocChat at http://%s:%s", args.address, args.port)
    try:
        result = subprocess.run(command, check=False, cwd=PROJECT_ROOT)
    except KeyboardInterrupt:
        logger.info("DocChat stopped by user")
        return 0
    except OSError:
        logger.exception("Unable to launch Streamlit")
        return 1
    return result.returncode


async def ingest_paths(
    pipeline: DocChatPipeline, user_id: str, paths: Sequence[Path]
) -> int:
    """Ingest every path, continuing past files that fail.

    Returns:
        Number of files that could not be ingested.
    """
    failures = 0
    for path in paths:
        try:
            result = await pipeline.ingest_file(user_id, path)
        except (ValueError, OSError, DocChatError):
            logger.exception("Could not ingest %s", path)
            failures += 1
            continue
        status = "indexed" if result.indexed else "stored only"
        print(f"{result.filename}: {result.chunks_created} chunks, {status}")
    return failures


def ingest(pipeline: DocChatPipeline, args: argparse.Namespace) -> int:
    failures = asyncio.run(ingest_paths(pipeline, args.user, args.paths))
    return 1 if failures else 0


def ask(pipeline: DocChatPipeline, args: argparse.Namespace) -> int:
    options = QueryOptions(temperature=args.temperature, max_results=args.max_results)
    try:
        result = pipeline.answer_query_sync(
            args.user, args.chat, args.question, options
        )
    except QueryValidationError as exc:
        print(exc, file=sys.stderr)
        return 2
    print(result.response)
    if args.details:
        print(json.dumps(result.metadata, indent=2, default=str))
    return 0


def build_pipeline() -> DocChatPipeline:
    from docchat.pipeline import DocChatPipeline

    return DocChatPipeline.from_config()


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the chosen command."""
    args = parse_args(argv)
    config.setup_logging()

    if not args.skip_validation:
        try:
            config.validate()
        except ValueError:
            logger.exception("Configuration invalid")
            return 1

    if args.command == "serve":
        return serve(args)

    pipeline = build_pipeline()
    if args.command == "ingest":
        return ingest(pipeline, args)
    return ask(pipeline, args)


if __name__ == "__main__":
    sys.exit(main())
