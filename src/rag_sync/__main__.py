"""Command-line entry point: ``python -m rag_sync``.

Sub-commands
------------
``init-db``   create (or upgrade) the pgvector schema
``ingest``    run every registered ingestor once
``serve``     keep the scheduled ingestion running until interrupted
``search``    query the knowledge base
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from rag_sync.config import settings
from rag_sync.retrieval.tools import format_results
from rag_sync.service import RagSyncService, build_service

logger = logging.getLogger(__name__)


async def _init_db() -> int:
    from rag_sync.store.pgvector_store import PgVectorStore

    store = PgVectorStore.from_settings(settings)
    try:
        await store.migrate()
    finally:
        await store.close()
    logger.info("Schema ready: table %s", settings.embeddings_table)
    return 0


async def _ingest(service: RagSyncService) -> int:
    report = await service.pipeline.run()
    print(report.model_dump_json(indent=2))
    return 1 if report.failed else 0


async def _serve(service: RagSyncService) -> int:
    service.pipeline.start()
    try:
        await asyncio.Event().wait()
    finally:
        await service.pipeline.stop()
    return 0


async def _search(service: RagSyncService, query: str, amount: int | None, filter_json: str | None) -> int:
    row_filter = json.loads(filter_json) if filter_json else None
    documents = await service.store.similarity_search(query, filter=row_filter, amount=amount)
    print(format_results(documents))
    return 0


async def _main(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        return await _init_db()

    service = build_service(settings)
    try:
        if args.command == "ingest":
            return await _ingest(service)
        if args.command == "serve":
            return await _serve(service)
        return await _search(service, args.query, args.amount, args.filter)
    finally:
        await service.aclose()


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rag-sync", description=__doc__.splitlines()[0])
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create or upgrade the embeddings table")
    sub.add_parser("ingest", help="Run all ingestors once")
    sub.add_parser("serve", help="Run the scheduled ingestion until interrupted")
    search = sub.add_parser("search", help="Search the knowledge base")
    search.add_argument("query")
    search.add_argument("--amount", type=_positive_int, default=None)
    search.add_argument("--filter", default=None, help='JSON metadata filter, e.g. \'{"source": "docs"}\'')
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(_main(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
