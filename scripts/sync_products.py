#!/usr/bin/env python3
"""CLI script to sync the product catalog into the search index.

Usage:
    uv run python scripts/sync_products.py --mode index
    uv run python scripts/sync_products.py --mode ingest --locale en_US
    uv run python scripts/sync_products.py --mode full-scan
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from index_sync_service.logging_config import configure_logging
from index_sync_service.services.jobs import (
    run_full_scan_export,
    run_product_indexing,
    run_product_ingestion,
)

logger = structlog.get_logger()


async def main(args: argparse.Namespace) -> int:
    """Main sync function."""
    logger.info("Starting product sync", mode=args.mode, locale=args.locale)

    if args.mode == "index":
        run_log = await run_product_indexing(chunk_size=args.chunk_size)
    elif args.mode == "ingest":
        run_log = await run_product_ingestion(args.locale, chunk_size=args.chunk_size)
    else:
        run_log = await run_full_scan_export()

    logger.info("Product sync completed", **run_log.to_record())
    return 1 if run_log.processed_error or run_log.send_error else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync products into the search index")
    parser.add_argument("--mode", choices=["index", "ingest", "full-scan"], default="index")
    parser.add_argument("--locale", help="Locale to ingest (ingest mode)")
    parser.add_argument("--chunk-size", type=int, default=None)
    configure_logging()
    sys.exit(asyncio.run(main(parser.parse_args())))
