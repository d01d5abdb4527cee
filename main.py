"""
page-indexer - Main Entry Point

CLI for building, inspecting, searching and benchmarking document tree indexes.
Results go to stdout, logs to stderr. Any failure exits non-zero with its
error kind in the message.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from page_indexer.core.config import settings
from page_indexer.core.errors import PageIndexError, PersistenceError
from page_indexer.observability.logging import setup_logging


async def run_index(document_path: str, output: str, delimiter: Optional[str]) -> int:
    """Build a tree index for a document and save it."""
    from page_indexer.llm.groq_client import GroqClient
    from page_indexer.pageindex.document import Document
    from page_indexer.pageindex.tree_generator import TreeGenerator
    from page_indexer.pageindex.tree_store import save_tree

    document = Document.from_text_file(document_path, delimiter=delimiter)
    print(f"📄 Indexing: {document.name} ({document.page_count} pages)")

    generator = TreeGenerator(llm=GroqClient())
    tree = await generator.generate_tree(document)
    path = save_tree(tree, output)

    print(f"✅ {tree.node_count()} sections, depth {tree.max_depth()}")
    print(f"💾 Saved to {path}")
    return 0


async def run_search(
    query: str,
    index: str,
    top_k: int,
    min_relevance: str,
    with_content: bool,
    document_path: Optional[str],
    delimiter: Optional[str],
    as_json: bool,
) -> int:
    """Search a saved tree index."""
    from page_indexer.llm.groq_client import GroqClient
    from page_indexer.pageindex.document import Document
    from page_indexer.pageindex.tree_searcher import Relevance, TreeSearcher
    from page_indexer.pageindex.tree_store import load_tree

    tree = load_tree(index)
    document = None
    if with_content and document_path:
        document = Document.from_text_file(document_path, delimiter=delimiter)

    searcher = TreeSearcher(llm=GroqClient())
    outcome = await searcher.search(
        query,
        tree,
        top_k=top_k,
        document=document,
        include_content=with_content,
        min_relevance=Relevance(min_relevance),
    )

    if as_json:
        print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print(f"\n📝 Query: {query}\n")
    if not outcome.results:
        print("No relevant sections found.")
    for rank, result in enumerate(outcome, start=1):
        print(f"{rank}. [{result.relevance.value.upper()}] {result.title} "
              f"(pages {result.start_index}-{result.end_index})")
        if result.reason:
            print(f"   {result.reason}")
        if result.content is not None:
            print("-" * 60)
            print(result.content)
            print("-" * 60)
        elif result.content_error:
            print(f"   ⚠️  Content unavailable: {result.content_error}")
    for warning in outcome.warnings:
        print(f"⚠️  {warning}", file=sys.stderr)
    print(f"\n⏱️  Latency: {outcome.elapsed_ms:.0f}ms")
    return 0


def run_show(index: str, as_json: bool) -> int:
    """Print a saved tree."""
    from page_indexer.pageindex.tree_store import load_tree

    tree = load_tree(index)
    if as_json:
        print(json.dumps(tree.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(tree.format_outline())
    return 0


def run_info(index: str) -> int:
    """Print summary statistics for a saved tree."""
    from page_indexer.pageindex.tree_store import load_tree, tree_size

    tree = load_tree(index)
    meta = tree.source_metadata
    print(f"📁 File: {index}")
    print(f"📦 Size: {tree_size(index) / 1024:.1f} KB")
    print(f"📄 Title: {tree.name}")
    print(f"📃 Pages: {tree.page_count if tree.page_count is not None else 'unknown'}")
    print(f"🕒 Created: {meta.created_at if meta and meta.created_at else 'unknown'}")
    print(f"🌳 Sections: {tree.node_count()} ({len(tree.roots)} top-level), depth {tree.max_depth()}")
    return 0


async def run_test() -> int:
    """Check configuration and LLM connectivity."""
    from page_indexer.llm.groq_client import GroqClient

    print(f"🤖 Model: {settings.llm_model}")
    print(f"🌐 Endpoint: {settings.llm_base_url or 'Groq default'}")
    print(f"🔑 API key: {'set' if settings.groq_api_key else 'missing'}")

    ok, reply = await GroqClient().health_check()
    if ok:
        print(f"✅ LLM reachable: {reply!r}")
        return 0
    print(f"❌ Unexpected LLM reply: {reply!r}")
    return 1


async def run_eval(args: argparse.Namespace) -> int:
    """Benchmark tree search against the vector baseline on a dataset."""
    from page_indexer.eval.benchmark import Benchmark, BenchmarkConfig
    from page_indexer.eval.dataset import load_custom_dataset, load_quality_dataset, sample_dataset
    from page_indexer.eval.vector_search import SentenceEmbedder, TextChunker
    from page_indexer.llm.groq_client import GroqClient

    if args.source == "sample":
        dataset = sample_dataset()
    elif args.source == "quality":
        dataset = load_quality_dataset(args.path)
    else:
        dataset = load_custom_dataset(args.path)
    print(f"📚 Dataset: {dataset.name} ({len(dataset)} items)")

    config = BenchmarkConfig(
        top_k=args.top_k,
        run_tree=not args.vector_only,
        run_vector=not args.tree_only,
        max_items=args.max_items,
    )
    embedder = SentenceEmbedder() if config.run_vector else None
    benchmark = Benchmark(
        llm=GroqClient(),
        embedder=embedder,
        config=config,
        chunker=TextChunker(args.chunk_size, args.chunk_overlap),
    )
    results = await benchmark.run(dataset)

    summary = results.summary()
    total = summary["total_items"] or 1
    print("\n========== Benchmark Results ==========")
    print(f"Items:          {summary['total_items']}")
    print(f"Tree wins:      {summary['tree_wins']} ({summary['tree_wins'] / total:.1%})")
    print(f"Vector wins:    {summary['vector_wins']} ({summary['vector_wins'] / total:.1%})")
    print(f"Ties:           {summary['ties']} ({summary['ties'] / total:.1%})")
    print(f"Avg score:      tree {summary['avg_tree_score']:.2f}/5, vector {summary['avg_vector_score']:.2f}/5")
    print(f"Avg time:       tree {summary['avg_tree_time_ms']:.0f}ms, vector {summary['avg_vector_time_ms']:.0f}ms")
    print(f"Total time:     {summary['total_time_secs']:.1f}s")

    if args.output:
        try:
            with open(args.output, "w", encoding="utf-8") as handle:
                json.dump(results.to_dict(), handle, indent=2, ensure_ascii=False)
        except OSError as exc:
            raise PersistenceError(f"Cannot write results to {args.output}: {exc}") from exc
        print(f"💾 Results saved to {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="page-indexer",
        description="Reasoning-based hierarchical document index",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Build a tree index for a document")
    index_parser.add_argument("document", help="Text file (pages separated by form feeds)")
    index_parser.add_argument("-o", "--output", default=settings.default_index_path,
                              help="Index file (.json, or .bin for binary)")
    index_parser.add_argument("--delimiter", default=settings.page_delimiter,
                              help="Page delimiter in the document")

    search_parser = subparsers.add_parser("search", help="Search a tree index")
    search_parser.add_argument("query", help="Question to answer")
    search_parser.add_argument("-i", "--index", default=settings.default_index_path)
    search_parser.add_argument("-k", "--top-k", type=int, default=settings.search_top_k)
    search_parser.add_argument("--min-relevance", choices=["high", "medium", "low"], default="low",
                               help="Lowest relevance tier to return")
    search_parser.add_argument("--with-content", action="store_true",
                               help="Include section text (needs -d)")
    search_parser.add_argument("-d", "--document", default=None,
                               help="Source document for --with-content")
    search_parser.add_argument("--delimiter", default=settings.page_delimiter)
    search_parser.add_argument("--json", action="store_true", help="Print JSON")

    show_parser = subparsers.add_parser("show", help="Print a tree index")
    show_parser.add_argument("index", nargs="?", default=settings.default_index_path)
    show_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    info_parser = subparsers.add_parser("info", help="Show index statistics")
    info_parser.add_argument("index", nargs="?", default=settings.default_index_path)

    subparsers.add_parser("test", help="Test LLM connectivity")

    eval_parser = subparsers.add_parser("eval", help="Benchmark tree search against vector search")
    eval_parser.add_argument("source", choices=["sample", "quality", "custom"],
                             help="Built-in sample, QuALITY JSONL or custom JSON dataset")
    eval_parser.add_argument("path", nargs="?", default=None, help="Dataset file (quality/custom)")
    eval_parser.add_argument("--max-items", type=int, default=None)
    eval_parser.add_argument("-k", "--top-k", type=int, default=settings.eval_top_k)
    eval_parser.add_argument("--tree-only", action="store_true", help="Skip the vector baseline")
    eval_parser.add_argument("--vector-only", action="store_true", help="Skip tree search")
    eval_parser.add_argument("--chunk-size", type=int, default=settings.eval_chunk_size)
    eval_parser.add_argument("--chunk-overlap", type=int, default=settings.eval_chunk_overlap)
    eval_parser.add_argument("-o", "--output", default=None, help="Write full results as JSON")
    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "search":
        if args.top_k < 1:
            parser.error("--top-k must be at least 1")
        if not args.query.strip():
            parser.error("query must not be empty")
    if args.command == "eval":
        if args.source != "sample" and not args.path:
            parser.error(f"{args.source} needs a dataset path")
        if args.tree_only and args.vector_only:
            parser.error("--tree-only and --vector-only are mutually exclusive")
        if args.top_k < 1 or (args.max_items is not None and args.max_items < 1):
            parser.error("--top-k and --max-items must be at least 1")
        if not 0 <= args.chunk_overlap < args.chunk_size:
            parser.error("--chunk-overlap must be smaller than --chunk-size")

    try:
        if args.command == "index":
            return asyncio.run(run_index(args.document, args.output, args.delimiter))
        if args.command == "search":
            return asyncio.run(run_search(
                args.query, args.index, args.top_k, args.min_relevance, args.with_content,
                args.document, args.delimiter, args.json,
            ))
        if args.command == "show":
            return run_show(args.index, args.json)
        if args.command == "info":
            return run_info(args.index)
        if args.command == "test":
            return asyncio.run(run_test())
        if args.command == "eval":
            return asyncio.run(run_eval(args))
    except PageIndexError as exc:
        print(f"❌ {exc.kind}: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("❌ Cancelled", file=sys.stderr)
        return 130

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
