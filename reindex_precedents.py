"""
Embed stored precedents that have no embedding yet.

Usage:
    python reindex_precedents.py
    python reindex_precedents.py --force --source IndianKanoon
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
    arg_parser = argparse.ArgumentParser(description="Re-embed stored precedents")
    arg_parser.add_argument("--force", action="store_true", help="Re-embed every precedent, not only missing ones")
    arg_parser.add_argument("--source", type=str, default=None, help="Only precedents from this source (e.g. IndianKanoon)")
    args = arg_parser.parse_args()

    from execution.precedent_rag.embeddings import EmbeddingService
    from execution.precedent_rag.precedent_store import PostgresPrecedentStore
    from execution.precedent_rag.sync import PrecedentSyncService

    store = PostgresPrecedentStore()
    store.connect()
    store.initialize()

    # Reindexing never calls the Kanoon API
    service = PrecedentSyncService(store, client=None, embeddings=EmbeddingService())

    cancel_event = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())

    start_time = time.time()
    report = service.reindex_all(force=args.force, source=args.source, cancel_event=cancel_event)
    elapsed = time.time() - start_time

    stats = service.stats()
    store.close()

    print("\n" + "=" * 60)
    print("REINDEX CANCELLED" if report.cancelled else "REINDEX COMPLETE")
    print("=" * 60)
    print(f"Indexed:       {report.succeeded}/{report.total} ({report.failed} failed)")
    print(f"Store total:   {stats['total']} ({stats['percentage_indexed']}% indexed)")
    print(f"Time elapsed:  {elapsed:.1f}s")
    print("=" * 60)


if __name__ == "__main__":
    main()
