#!/usr/bin/env python3
"""CLI for the moderation-guide retrieval engine: build, search, ask."""

import argparse
import asyncio
import functools
import logging
import sys

from core.config import settings
from core.models import SourceKind


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


def make_retriever(args: argparse.Namespace):
    from ingestion.embedder import Embedder
    from ingestion.loader import load_content
    from retrieval.retriever import Retriever
    from storage.vector_store import EvidenceIndex

    index = EvidenceIndex(Embedder())
    return Retriever(index, functools.partial(load_content, args.content_dir))


async def cmd_build(args: argparse.Namespace) -> None:
    """Build the evidence index and show its statistics."""
    retriever = make_retriever(args)
    print(f"Building evidence index from {args.content_dir}...")
    await retriever.ensure_index(use_offline=args.offline)
    _print_stats(retriever.index.stats())


async def cmd_stats(args: argparse.Namespace) -> None:
    """Show index statistics broken down by source kind and category."""
    retriever = make_retriever(args)
    await retriever.ensure_index(use_offline=args.offline)
    stats = retriever.index.stats()

    _print_stats(stats)
    print("By category:")
    for category, count in sorted(stats.by_category.items()):
        print(f"  {category or '(none)'}: {count}")


async def cmd_search(args: argparse.Namespace) -> None:
    """Retrieve evidence for a query without generating an answer."""
    from retrieval.confidence import assess
    from retrieval.retriever import RetrievalConfig

    retriever = make_retriever(args)
    config = RetrievalConfig(top_k=args.top_k, use_offline=args.offline)

    if args.penalty:
        result = await retriever.retrieve_penalty_context(args.query, config)
    elif args.kind:
        result = await retriever.retrieve_by_kind(args.query, SourceKind(args.kind), config)
    else:
        result = await retriever.retrieve(args.query, config)

    score, tier = assess(result)
    print(f"Query: {result.query}")
    print(f"Confidence: {score:.2f} ({tier.value})")
    print(f"Average relevance: {result.average_relevance:.3f}")

    print(f"\nChunks ({len(result.chunks)}):")
    for i, chunk in enumerate(result.chunks, 1):
        preview = chunk.text[:100].replace("\n", " ")
        print(f"  {i}. [{chunk.similarity:.3f}] {chunk.id}: {preview}...")

    print(f"\nSources ({len(result.sources)}):")
    for source in result.sources:
        print(f"  [{source.score:.3f}] {source.kind.value}: {source.title}")


async def cmd_ask(args: argparse.Namespace) -> None:
    """Answer a question through the confidence-gated answering layer."""
    from generation.generator import answer_question

    retriever = make_retriever(args)
    print(f"Query: {args.question}")
    answer = await answer_question(args.question, retriever, use_offline=args.offline)

    print(f"\nAnswer: {answer.response}")
    print(f"\nConfidence: {answer.confidence.value} ({answer.confidence_score:.2f})")
    print(f"Context used: {answer.context_used}")


async def cmd_source(args: argparse.Namespace) -> None:
    """Print the indexed text of one source entity."""
    retriever = make_retriever(args)
    await retriever.ensure_index(use_offline=args.offline)

    text = retriever.index.full_source_text(args.source_id)
    if text is None:
        print(f"No indexed source with id {args.source_id}")
        sys.exit(1)
    print(text)


def _print_stats(stats) -> None:
    print(f"Total chunks: {stats.total_chunks}")
    print(f"Average chunk length: {stats.average_chunk_length}")
    for kind, count in sorted(stats.by_source_kind.items()):
        print(f"  {kind}: {count}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Moderation guide RAG CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    parser.add_argument(
        "--content-dir", default=settings.content_dir, help="Content repository directory"
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        default=settings.use_offline,
        help="Use deterministic offline embeddings",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("build", help="Build the evidence index")
    subparsers.add_parser("stats", help="Show index statistics")

    p_search = subparsers.add_parser("search", help="Retrieve evidence for a query")
    p_search.add_argument("query", help="Search query")
    p_search.add_argument("--top-k", type=int, default=settings.top_k)
    p_search.add_argument("--kind", choices=[k.value for k in SourceKind])
    p_search.add_argument(
        "--penalty", action="store_true", help="Use penalty + guide fusion retrieval"
    )

    p_ask = subparsers.add_parser("ask", help="Ask a question")
    p_ask.add_argument("question", help="Question to ask")

    p_source = subparsers.add_parser("source", help="Show one source's indexed text")
    p_source.add_argument("source_id", help="Source entity id")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "build": cmd_build,
        "stats": cmd_stats,
        "search": cmd_search,
        "ask": cmd_ask,
        "source": cmd_source,
    }
    asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    main()
