"""
Command line entry point.

    python -m curriculum_rag index lessons.json
    python -m curriculum_rag ask lessons.json "How do I add fractions?" --scope lesson-1
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv

from .config.settings import get_settings
from .core.logging import configure_logging
from .rag.pipeline import create_rag_pipeline
from .rag.store import InMemoryContentStore

logger = structlog.get_logger(__name__)


async def run_index(lessons_path: Path) -> int:
    content_store = InMemoryContentStore.from_json_file(lessons_path)
    pipeline = create_rag_pipeline(content_store)

    summary = await pipeline.index_documents(content_store.content_ids())
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if summary["failed"] == 0 else 1


async def run_ask(lessons_path: Path, question: str, scope_id: str = None) -> int:
    content_store = InMemoryContentStore.from_json_file(lessons_path)
    pipeline = create_rag_pipeline(content_store)

    await pipeline.index_documents(content_store.content_ids())
    response = await pipeline.answer_question(question, scope_id)
    print(json.dumps(response.to_dict(), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="curriculum_rag",
                                     description="Index curriculum lessons and answer questions about them.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Chunk and embed every lesson in a JSON file.")
    index_parser.add_argument("lessons", type=Path, help="JSON array of lesson content records.")

    ask_parser = subparsers.add_parser("ask", help="Index lessons, then answer one question.")
    ask_parser.add_argument("lessons", type=Path, help="JSON array of lesson content records.")
    ask_parser.add_argument("question", help="The question to answer.")
    ask_parser.add_argument("--scope", default=None, help="Restrict retrieval to this lesson id.")

    return parser


def main(argv=None) -> int:
    """Run the command line interface."""
    load_dotenv()
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    args = build_parser().parse_args(argv)

    if args.command == "index":
        return asyncio.run(run_index(args.lessons))
    return asyncio.run(run_ask(args.lessons, args.question, args.scope))


if __name__ == "__main__":
    sys.exit(main())
