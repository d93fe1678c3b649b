"""Command-line entry point.

Usage:
    semantic-indexer ingest
    semantic-indexer ingest --max-documents 200 --batch-size 10 --no-skip-existing
    semantic-indexer search "transformer attention" --max-results 10 --score-threshold 0.5
    semantic-indexer reset --yes
    semantic-indexer serve
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional, Sequence

from semantic_indexer.config import Settings, get_settings
from semantic_indexer.models.batch import BatchProgress, RunSummary
from semantic_indexer.models.search import SearchResult
from semantic_indexer.pipeline import DEFAULT_MAX_DOCUMENTS, build_pipeline
from semantic_indexer.services.embedding_service import EmbeddingService
from semantic_indexer.services.qdrant_service import VectorStore
from semantic_indexer.services.search_service import SearchEngine
from semantic_indexer.utils.errors import IndexerException
from semantic_indexer.utils.logging import get_logger, setup_logging

logger = get_logger("cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def parse_filters(values: Optional[Sequence[str]]) -> Optional[Dict[str, Any]]:
    """Parse ``key=value`` pairs; values are read as JSON when possible."""
    if not values:
        return None
    filters: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Invalid filter '{item}', expected key=value")
        try:
            filters[key] = json.loads(raw)
        except json.JSONDecodeError:
            filters[key] = raw
    return filters


def print_progress(progress: BatchProgress) -> None:
    print(
        f"[{progress.batch_index}/{progress.total_batches}] "
        f"{progress.processed}/{progress.total} chunks ({progress.percentage}%)",
        file=sys.stderr,
    )


def print_results(query: str, results: List[SearchResult]) -> None:
    print(f'Results for "{query}": {len(results)}')
    for position, result in enumerate(results, start=1):
        metadata = result.document.metadata
        name = metadata.get("file_name") or metadata.get("source") or "unknown"
        preview = result.document.content[:200].replace("\n", " ")
        print(f"\n{position}. [{result.relevance.value}] distance={result.score:.3f}  {name}")
        print(f"   {preview}")


async def run_ingest(settings: Settings, args: argparse.Namespace) -> int:
    pipeline = build_pipeline(settings, chunks_dir=args.chunks_dir, on_progress=print_progress)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; cancellation disabled")

    summary: Optional[RunSummary] = None
    try:
        summary = await pipeline.run(
            max_documents=args.max_documents,
            batch_size=args.batch_size,
            skip_existing=args.skip_existing,
            cancel_event=cancel_event,
        )
        code = EXIT_OK
    except IndexerException as e:
        summary = e.summary
        code = EXIT_CANCELLED if e.code == "CANCELLED" else EXIT_FAILED
        if summary is None:
            print(f"Error: {e.message}", file=sys.stderr)

    if summary is not None:
        print(summary.render())
    return code


async def run_search(settings: Settings, args: argparse.Namespace) -> int:
    cap = settings.search.max_results_cap
    embedder = EmbeddingService(settings.embedding)
    async with VectorStore(settings.qdrant) as store:
        engine = SearchEngine(embedder, store, settings.search)
        options = engine.default_options(
            max_results=min(args.max_results, cap) if args.max_results else None,
            score_threshold=args.score_threshold,
            source_contains=args.source_contains,
            metadata_filter=parse_filters(args.filter),
        )
        try:
            results = await engine.search(args.query, options)
        except IndexerException as e:
            print(f"Error: {e.message} ({e.code})", file=sys.stderr)
            return EXIT_FAILED

    print_results(args.query, results)
    return EXIT_OK


async def run_reset(settings: Settings, args: argparse.Namespace) -> int:
    if not args.yes:
        print(
            f"Refusing to drop collection '{settings.qdrant.collection_name}' without --yes",
            file=sys.stderr,
        )
        return EXIT_FAILED

    async with VectorStore(settings.qdrant) as store:
        try:
            await store.delete_collection()
        except IndexerException as e:
            print(f"Error: {e.message} ({e.code})", file=sys.stderr)
            return EXIT_FAILED

    print(f"Dropped collection '{settings.qdrant.collection_name}'")
    return EXIT_OK


def run_server(settings: Settings) -> int:
    import uvicorn

    uvicorn.run(
        "semantic_indexer.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload and settings.is_development,
        log_level=settings.log_level.lower(),
    )
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="semantic-indexer",
        description="Embed document chunks into Qdrant and search them semantically",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Embed chunks and store them in the vector store")
    ingest.add_argument(
        "--max-documents",
        type=int,
        default=DEFAULT_MAX_DOCUMENTS,
        help=f"Maximum number of chunks to process (default: {DEFAULT_MAX_DOCUMENTS})",
    )
    ingest.add_argument("--batch-size", type=int, default=None, help="Chunks per batch (default: from settings)")
    ingest.add_argument(
        "--no-skip-existing",
        dest="skip_existing",
        action="store_false",
        help="Embed even when the store already holds as many documents as the source",
    )
    ingest.add_argument("--chunks-dir", default=None, help="Directory of chunk JSON files (default: CHUNKS_DIRECTORY)")

    search = subparsers.add_parser("search", help="Run a semantic search")
    search.add_argument("query", help="Free-text query")
    search.add_argument("--max-results", type=int, default=None, help="Candidates to retrieve (capped at 20)")
    search.add_argument("--score-threshold", type=float, default=None, help="Maximum distance kept, in [0, 1]")
    search.add_argument("--source-contains", default=None, help="Keep results whose file name contains this text")
    search.add_argument(
        "--filter",
        action="append",
        metavar="KEY=VALUE",
        help="Exact-match metadata filter; may be repeated",
    )

    reset = subparsers.add_parser("reset", help="Drop the collection and every stored vector")
    reset.add_argument("--yes", action="store_true", help="Confirm the deletion")

    subparsers.add_parser("serve", help="Run the HTTP search API")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "batch_size", None) is not None and args.batch_size < 1:
        parser.error("--batch-size must be at least 1")
    if getattr(args, "score_threshold", None) is not None and not 0 <= args.score_threshold <= 1:
        parser.error("--score-threshold must be between 0 and 1")
    if getattr(args, "max_results", None) is not None and args.max_results < 1:
        parser.error("--max-results must be at least 1")
    try:
        parse_filters(getattr(args, "filter", None))
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    settings = get_settings()
    setup_logging(settings)

    if args.command == "ingest":
        return asyncio.run(run_ingest(settings, args))
    if args.command == "search":
        return asyncio.run(run_search(settings, args))
    if args.command == "reset":
        return asyncio.run(run_reset(settings, args))
    return run_server(settings)


if __name__ == "__main__":
    sys.exit(main())
