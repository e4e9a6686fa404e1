#!/usr/bin/env python
"""Generate learning questions from the notes in a folder.

Usage:
    python scripts/generate_exam.py notes/chapter1
    python scripts/generate_exam.py notes/chapter1 --details "Focus on proofs"
    python scripts/generate_exam.py notes/chapter1 --details-file extra.txt
    python scripts/generate_exam.py notes/chapter1 --reprovision
"""
import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragtutor import config
from ragtutor.config import SettingsStore
from ragtutor.errors import RagError
from ragtutor.log_config import configure_logging
from ragtutor.orchestrator import RagOrchestrator, RunResult
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, echo: bool = True):
        self.echo = echo
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}", file=sys.stderr)
        print(f"  {message}", file=sys.stderr)
        print(f"{'=' * 60}\n", file=sys.stderr)

    def notice(self, message: str):
        print(f"  ℹ {message}", file=sys.stderr)

    def fragment(self, text: str):
        if self.echo:
            sys.stdout.write(text)
            sys.stdout.flush()

    def finish(self, result: RunResult):
        """Finish progress reporting."""
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print("\n", file=sys.stderr)
        print(f"{'=' * 60}", file=sys.stderr)
        print(f"  Generation Complete!", file=sys.stderr)
        print(f"{'=' * 60}\n", file=sys.stderr)
        print(f"  📁 Documents read:    {result.documents_read}", file=sys.stderr)
        print(f"  ❌ Documents skipped: {result.documents_failed}", file=sys.stderr)
        print(f"  🧩 Chunks created:    {result.chunks_created}", file=sys.stderr)
        print(f"  📝 Chunks indexed:    {result.chunks_indexed}", file=sys.stderr)
        print(f"  🔎 Chunks retrieved:  {result.retrieved}", file=sys.stderr)
        print(f"  ✍️  Fragments written: {result.fragments}", file=sys.stderr)
        print(f"  ⏱️  Time elapsed:      {elapsed_seconds:.1f}s", file=sys.stderr)
        print(f"\n✅ Output at: {result.output_path}\n", file=sys.stderr)


def read_details(args) -> str:
    """Resolve the free-text user guidance from the CLI arguments."""
    if args.details_file:
        if str(args.details_file) == "-":
            return sys.stdin.read()
        return args.details_file.read_text(encoding="utf-8")
    return args.details or ""


async def main():
    """Main entry point for the exam generation script."""
    parser = argparse.ArgumentParser(
        description="Index a folder of notes and stream generated learning questions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/generate_exam.py notes/chapter1
  python scripts/generate_exam.py notes/chapter1 --details "Multiple choice only"
  echo "Focus on dates" | python scripts/generate_exam.py notes/chapter1 --details-file -
        """,
    )

    parser.add_argument("folder", type=Path, help="Folder with .md and .pdf sources")

    details = parser.add_mutually_exclusive_group()
    details.add_argument("--details", help="Extra details added to the prompt")
    details.add_argument(
        "--details-file",
        type=Path,
        help="Read extra details from a file ('-' for stdin)",
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Where to write the output document (default: the source folder)",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help=f"Settings file (default: {config.SETTINGS_PATH})",
    )
    parser.add_argument("--top-k", type=int, default=None, help="Chunks to retrieve")
    parser.add_argument(
        "--reprovision",
        action="store_true",
        help="Ignore the stored collection id and resolve it again",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Do not echo generated text to stdout",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL)")

    args = parser.parse_args()

    configure_logging(args.log_level)

    store = SettingsStore(args.settings)
    progress = ProgressReporter(echo=not args.quiet)
    orchestrator = None

    try:
        settings = store.load()

        if args.reprovision:
            settings = settings.with_collection_id("")
        if args.top_k is not None:
            settings = replace(settings, top_k=args.top_k)

        user_prompt = read_details(args)

        print("\n📋 Configuration:", file=sys.stderr)
        print(f"   Source folder:    {args.folder}", file=sys.stderr)
        print(f"   LLM model:        {settings.llm_model}", file=sys.stderr)
        print(f"   Embedding model:  {settings.embedding_model}", file=sys.stderr)
        print(f"   Chroma:           {settings.chroma_base_url}", file=sys.stderr)
        print(f"   Collection:       {settings.chroma_collection}", file=sys.stderr)
        print(f"   Chunk size:       {settings.chunk_size} chars", file=sys.stderr)
        print(f"   Chunk overlap:    {settings.chunk_overlap} chars", file=sys.stderr)
        print(f"   Top-K retrieval:  {settings.top_k}", file=sys.stderr)

        orchestrator = RagOrchestrator(
            settings,
            notify=progress.notice,
            on_fragment=progress.fragment,
        )

        progress.start("Generating Learning Questions")
        result = await orchestrator.run(args.folder, user_prompt, output_dir=args.output_dir)

        if result.collection_id != settings.chroma_collection_id:
            store.save(store.load().with_collection_id(result.collection_id))

        progress.finish(result)

    except KeyboardInterrupt:
        print("\n\n⚠️  Generation cancelled by user.\n", file=sys.stderr)
        sys.exit(1)

    except RagError as e:
        print(f"\n❌ {e.kind}: {e}\n", file=sys.stderr)
        if orchestrator is not None and orchestrator.output_path:
            print(f"   Partial output kept at: {orchestrator.output_path}\n", file=sys.stderr)
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n", file=sys.stderr)
        logger.error("generate_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
