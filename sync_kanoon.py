"""
Batch sync of Indian Kanoon judgments into the precedent store.

Searches each query, fetches up to --limit judgments per query (one detail
fetch per second), stores new ones and embeds them.

Usage:
    python sync_kanoon.py --popular
    python sync_kanoon.py --queries "Section 302 IPC murder" "dowry death 304B" --limit 3
    python sync_kanoon.py --popular --no-index

Ctrl+C stops issuing new requests; everything already stored is kept.
"""

import sys
import time
import signal
import argparse
import logging
import threading
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    arg_parser = argparse.ArgumentParser(description="Sync Indian Kanoon precedents")
    arg_parser.add_argument("--queries", nargs="+", default=[], help="Search queries to sync")
    arg_parser.add_argument(
        "--popular",
        action="store_true",
        help="Sync the recommended seed queries (IPC offences, landmark topics)",
    )
    arg_parser.add_argument("--limit", type=int, default=5, help="Judgments per query (default: 5)")
    arg_parser.add_argument("--no-index", action="store_true", help="Store precedents without embedding them")
    arg_parser.add_argument("--memory", action="store_true", help="Use the in-memory store (dry run)")
    args = arg_parser.parse_args()

    from execution.precedent_rag.kanoon_client import KanoonClient, POPULAR_QUERIES
    from execution.precedent_rag.embeddings import EmbeddingService
    from execution.precedent_rag.errors import AuthenticationError
    from execution.precedent_rag.precedent_store import InMemoryPrecedentStore, PostgresPrecedentStore
    from execution.precedent_rag.sync import PrecedentSyncService

    queries = list(args.queries)
    if args.popular:
        queries.extend(q for q in POPULAR_QUERIES if q not in queries)
    if not queries:
        logger.error("No queries given. Use --queries ... or --popular")
        sys.exit(1)

    client = KanoonClient()
    try:
        client.validate_configuration()
    except AuthenticationError as e:
        logger.error(str(e))
        sys.exit(1)

    if args.memory:
        store = InMemoryPrecedentStore()
    else:
        store = PostgresPrecedentStore()
        store.connect()
        store.initialize()

    embeddings = None if args.no_index else EmbeddingService()
    service = PrecedentSyncService(store, client, embeddings)

    cancel_event = threading.Event()

    def _handle_sigint(signum, frame):
        logger.warning("Interrupt received, finishing current request and stopping...")
        cancel_event.set()

    signal.signal(signal.SIGINT, _handle_sigint)

    logger.info(f"Syncing {len(queries)} queries, {args.limit} judgments each")
    start_time = time.time()
    report = service.sync_batch(
        queries,
        per_query_limit=args.limit,
        auto_index=not args.no_index,
        cancel_event=cancel_event,
    )
    elapsed = time.time() - start_time

    stats = service.stats()
    store.close()
    client.close()

    print("\n" + "=" * 60)
    print("SYNC CANCELLED" if report.cancelled else "SYNC COMPLETE")
    print("=" * 60)
    print(f"Queries processed: {report.queries_processed}/{len(queries)}")
    print(f"Hits found:        {report.hits_found}")
    print(f"Fetched:           {report.fetched}")
    print(f"Newly stored:      {report.newly_indexed} ({report.already_present} already present)")
    print(f"Embedded:          {report.embeddings_indexed}")
    print(f"Failed:            {report.failed}")
    for failure in report.failure_preview():
        target = failure.doc_id or failure.query
        print(f"  - {target}: {failure.error}")
    print(f"Store total:       {stats['total']} ({stats['percentage_indexed']}% indexed)")
    print(f"Time elapsed:      {elapsed:.1f}s")
    print("=" * 60)


if __name__ == "__main__":
    main()
