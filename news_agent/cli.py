"""
Command-Line Interface for the News Agent

Provides CLI commands for:
- Article ingestion (single URL or a file of URLs)
- Question answering, optionally streamed
- Article summaries
- Similarity search and lookup by id
- System statistics
"""

import os
import sys
import argparse
import logging
from pathlib import Path
from typing import Optional

from .config import get_config
from .main_pipeline import NewsAgentSystem
from .models import QueryResult
from .query.rag_service import StreamingCallbacks

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'news_agent.log'


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None):
    """
    Configure root logging with a console handler and, if log_dir is set,
    a file handler writing to <log_dir>/news_agent.log.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE), encoding='utf-8')
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def _print_sources(result: QueryResult):
    if not result.sources:
        return
    print("Sources:")
    for i, source in enumerate(result.sources, 1):
        print(f"  [{i}] {source.title}")
        print(f"      {source.url}")
        if source.date:
            print(f"      Date: {source.date}")
    print()


def _print_result(result: QueryResult):
    print("Answer:")
    print(f"{result.answer}")
    print()
    _print_sources(result)
    print(f"Response time: {result.response_time:.2f}s")


def cmd_ingest(args):
    """Handle the ingest command."""
    if args.workers is not None:
        get_config().update(max_workers=args.workers)

    system = NewsAgentSystem()

    if args.url:
        print(f"Ingesting article from: {args.url}")
        record = system.ingest(args.url)

        print(f"✓ Successfully ingested article")
        print(f"  Article ID: {record.id}")
        print(f"  Title: {record.title}")
        print(f"  Source: {record.source}")

    elif args.file:
        if not Path(args.file).exists():
            print(f"✗ Error: File not found: {args.file}")
            sys.exit(1)

        print(f"Ingesting articles from: {args.file}")
        results = system.ingest_from_file(args.file)

        print(f"\n{'='*60}")
        print(f"Ingestion Summary:")
        print(f"  Total URLs: {results.total}")
        print(f"  Successful: {results.successful}")
        print(f"  Failed: {results.failed}")
        print(f"  Processing time: {results.processing_time:.2f}s")
        print(f"{'='*60}")

        if results.failed > 0:
            print("\nFailed URLs:")
            for detail in results.details:
                if not detail.success:
                    print(f"  - {detail.url}: {detail.error or 'Unknown error'}")

    else:
        print("✗ Error: Either --url or --file must be specified")
        sys.exit(1)

    system.shutdown()


def cmd_ask(args):
    """Handle the ask command."""
    system = NewsAgentSystem()

    print(f"Question: {args.question}")
    print()

    if not args.stream:
        _print_result(system.process_query(args.question))
        return

    outcome = {}

    def on_complete(result: QueryResult):
        outcome['result'] = result

    def on_error(error: Exception):
        outcome['error'] = error

    print("Answer:")
    system.process_query_streaming(
        args.question,
        StreamingCallbacks(
            on_token=lambda token: print(token, end='', flush=True),
            on_complete=on_complete,
            on_error=on_error
        )
    )
    print("\n")

    if 'error' in outcome:
        print(f"✗ Error: {outcome['error']}")
        sys.exit(1)

    result = outcome['result']
    _print_sources(result)
    print(f"Response time: {result.response_time:.2f}s")


def cmd_summarize(args):
    """Handle the summarize command."""
    system = NewsAgentSystem()

    print(f"Summarizing: {args.url}")
    print()

    result = system.summarize(args.url)
    _print_result(result)

    if result.is_degraded:
        sys.exit(1)


def cmd_search(args):
    """Handle the search command."""
    system = NewsAgentSystem()

    print(f"Searching for: {args.term}")
    print()

    records = system.search(args.term, limit=args.limit)

    if not records:
        print("No results found.")
        return

    print(f"Found {len(records)} results:\n")

    for i, record in enumerate(records, 1):
        print(f"[{i}] {record.title}")
        print(f"    ID: {record.id}")
        print(f"    URL: {record.url}")
        print(f"    Content: {record.content[:200]}...")
        print()


def cmd_get(args):
    """Handle the get command."""
    system = NewsAgentSystem()

    record = system.get_by_id(args.id)
    if record is None:
        print(f"✗ No article with id: {args.id}")
        sys.exit(1)

    print(f"Title: {record.title}")
    print(f"URL: {record.url}")
    print(f"Source: {record.source}")
    print(f"Published: {record.published_at or 'Unknown'}")
    print(f"Ingested: {record.created_at}")
    if record.summary:
        print(f"\nSummary:\n{record.summary}")
    print(f"\nContent:\n{record.content}")


def cmd_stats(args):
    """Handle the stats command."""
    system = NewsAgentSystem()
    system.start()

    stats = system.get_stats()

    print("="*60)
    print("System Statistics")
    print("="*60)
    print(f"Total Articles: {stats['total_articles']}")
    print()

    print("Vector Store:")
    vs_stats = stats['vector_store_stats']
    print(f"  Initialized: {vs_stats.get('initialized', False)}")
    print(f"  Dimension: {vs_stats.get('dimension') or 'N/A'}")
    print(f"  Index Type: {vs_stats.get('index_type', 'N/A')}")
    print(f"  Total Vectors: {vs_stats.get('total_vectors', 0)}")
    print()

    print("Embedding Cache:")
    cache_stats = stats['embedding_cache_stats']
    print(f"  Cache Size: {cache_stats.get('cache_size', 0)}")
    print(f"  Hit Rate: {cache_stats.get('hit_rate', 0):.2%}")
    print(f"  Hits: {cache_stats.get('hits', 0)}")
    print(f"  Misses: {cache_stats.get('misses', 0)}")
    print("="*60)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='News Agent - article ingestion and question answering over the news',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest a single article
  python -m news_agent.cli ingest --url https://example.com/article

  # Ingest articles from a CSV file with a 'url' column
  python -m news_agent.cli ingest --file data/articles_dataset.csv --workers 8

  # Ask a question, streaming the answer
  python -m news_agent.cli ask "What happened in Canada?" --stream

  # Ask about one article
  python -m news_agent.cli ask "Summarize the key points of https://example.com/article"

  # Summarize an article
  python -m news_agent.cli summarize https://example.com/article

  # Search stored articles
  python -m news_agent.cli search "interest rates" --limit 5

  # View statistics
  python -m news_agent.cli stats
        """
    )

    # Global arguments
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Ingest command
    ingest_parser = subparsers.add_parser(
        'ingest',
        help='Ingest articles from URLs'
    )
    ingest_parser.add_argument(
        '--url',
        help='Single URL to ingest'
    )
    ingest_parser.add_argument(
        '--file',
        help="File containing URLs (CSV with a 'url' column, or one per line)"
    )
    ingest_parser.add_argument(
        '--workers',
        type=int,
        help='Number of parallel workers for file ingestion'
    )
    ingest_parser.set_defaults(func=cmd_ingest)

    # Ask command
    ask_parser = subparsers.add_parser(
        'ask',
        help='Ask a question and get an AI-generated answer'
    )
    ask_parser.add_argument(
        'question',
        help='Question to ask (may include an article URL)'
    )
    ask_parser.add_argument(
        '--stream',
        action='store_true',
        help='Print the answer as it is generated'
    )
    ask_parser.set_defaults(func=cmd_ask)

    # Summarize command
    summarize_parser = subparsers.add_parser(
        'summarize',
        help='Summarize the article at a URL'
    )
    summarize_parser.add_argument(
        'url',
        help='Article URL'
    )
    summarize_parser.set_defaults(func=cmd_summarize)

    # Search command
    search_parser = subparsers.add_parser(
        'search',
        help='Search for relevant articles'
    )
    search_parser.add_argument(
        'term',
        help='Search text'
    )
    search_parser.add_argument(
        '--limit',
        type=int,
        default=10,
        help='Number of results to return (default: 10)'
    )
    search_parser.set_defaults(func=cmd_search)

    # Get command
    get_parser = subparsers.add_parser(
        'get',
        help='Show a stored article by id'
    )
    get_parser.add_argument(
        'id',
        help='Article id'
    )
    get_parser.set_defaults(func=cmd_get)

    # Stats command
    stats_parser = subparsers.add_parser(
        'stats',
        help='Display system statistics'
    )
    stats_parser.set_defaults(func=cmd_stats)

    # Parse arguments
    args = parser.parse_args(argv)

    # Setup logging
    config = get_config()
    setup_logging('DEBUG' if args.verbose else config.log_level, config.log_dir)

    # Execute command
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
