"""
villagerdb.worker.__main__ — Entry point for ``python -m villagerdb.worker``
============================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Open the search index store and build the town indexer.
5. Run the periodic jobs until interrupted.

Pass ``--full-reindex`` to rebuild the town index once and exit.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from villagerdb.config import load_config
from villagerdb.database.engine import create_db_engine, init_db
from villagerdb.search.store import SearchIndexStore
from villagerdb.services.indexer import TownIndexer
from villagerdb.worker.scheduler import build_jobs, run_forever

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("villagerdb")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m villagerdb.worker",
        description="VillagerDB search index worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m villagerdb.worker                    # run the periodic jobs
  python -m villagerdb.worker --full-reindex     # rebuild the town index once
  python -m villagerdb.worker -c /etc/villagerdb/config.yaml
        """,
    )
    parser.add_argument(
        "--config", "-c",
        default="config.yaml",
        help="Path to config.yaml (default: ./config.yaml)",
    )
    parser.add_argument(
        "--full-reindex",
        action="store_true",
        help="Build a new town index generation, make it live, and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Bootstrap and run the VillagerDB worker."""
    args = build_parser().parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config(args.config)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Search index store + indexer.
    store = SearchIndexStore(cfg.search_index_dir)
    indexer = TownIndexer(engine, store, cfg)

    if args.full_reindex:
        result = indexer.full_reindex()
        logger.info(
            "Full reindex complete: %s (%d documents, replaced %s)",
            result.generation, result.documents, result.previous,
        )
        return 0

    # 5. Periodic jobs.
    try:
        asyncio.run(run_forever(build_jobs(indexer, cfg)))
    except KeyboardInterrupt:
        logger.info("Worker interrupted; shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
