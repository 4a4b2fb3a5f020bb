# logstore/cli.py
"""
Command-line entry point.

    logstore import access.log other.log --workers 4
    logstore query --start 2021-10-27T00:00:00Z --status 500 --limit 20
    logstore serve --port 8000

`import` exits with status 1 if any file ended in ERROR or halted on a
malformed line.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from logstore.core.config import settings
from logstore.core.errors import LogStoreError
from logstore.core.logging import configure_logging
from logstore.schemas.query import LogQuery
from logstore.services.ingest_service import IngestionPipeline
from logstore.services.positions import PositionTracker
from logstore.services.query_service import QueryService
from logstore.services.storage import LogStore
from logstore.utils.parsers import encode
from logstore.utils.timestamps import to_epoch

logger = logging.getLogger(__name__)


def _epoch_arg(value: str) -> float:
    try:
        return to_epoch(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logstore",
        description="Import Caddy JSON access logs into a keyed store and query them.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help=f"SQLAlchemy URL (default: {settings.DATABASE_URL})",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Ingest one or more log files")
    imp.add_argument("paths", nargs="+", help="Caddy log files in JSON format")
    imp.add_argument("--workers", type=int, default=settings.INGEST_WORKERS, help="Concurrent files")
    imp.add_argument(
        "--policy",
        choices=["skip", "halt"],
        default=settings.PARSE_ERROR_POLICY,
        help="What to do with malformed lines",
    )
    imp.add_argument(
        "--from-start",
        action="store_true",
        help="Re-read every file from its first line instead of resuming",
    )

    qry = sub.add_parser("query", help="Print matching records as NDJSON")
    qry.add_argument("--start", type=_epoch_arg, help="Earliest ts (epoch seconds or ISO 8601)")
    qry.add_argument("--end", type=_epoch_arg, help="Latest ts (epoch seconds or ISO 8601)")
    qry.add_argument("--user", dest="user_id", help="Exact user id")
    qry.add_argument("--status", dest="status_code", type=int, help="HTTP status code")
    qry.add_argument("--file", dest="file_ids", action="append", default=[], help="File id (repeatable)")
    qry.add_argument("--limit", type=int, help="Max records")

    srv = sub.add_parser("serve", help="Run the HTTP API")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    return parser


def _cmd_import(args: argparse.Namespace, store: LogStore) -> int:
    tracker = PositionTracker(store)
    pipeline = IngestionPipeline(store, tracker, policy=args.policy, max_workers=args.workers)
    reports = pipeline.ingest_files(args.paths, resume=not args.from_start)

    failed = 0
    for report in reports:
        if not report.ok:
            failed += 1
        print(
            f"{report.source}: file_id={report.file_id} inserted={report.inserted}/"
            f"{report.processed} duplicates={report.duplicates} malformed={report.parse_errors} "
            f"watermark={report.watermark} state={report.state.value}"
            + (f" error={report.error}" if report.error else ""),
            file=sys.stderr,
        )
    return 1 if failed else 0


def _cmd_query(args: argparse.Namespace, store: LogStore) -> int:
    try:
        query = LogQuery(
            start=args.start,
            end=args.end,
            user_id=args.user_id,
            status_code=args.status_code,
            file_ids=args.file_ids,
            limit=args.limit,
        )
    except ValidationError as e:
        print(f"invalid query: {e}", file=sys.stderr)
        return 2

    out = sys.stdout.buffer
    with contextlib.closing(QueryService(store).run(query)) as records:
        for record in records:
            out.write(encode(record) + b"\n")
    out.flush()
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from logstore.main import create_app

    uvicorn.run(create_app(args.database_url), host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        return _cmd_serve(args)

    try:
        store = LogStore.open(args.database_url)
    except LogStoreError as e:
        logger.error("%s", e)
        return 1

    try:
        if args.command == "import":
            return _cmd_import(args, store)
        return _cmd_query(args, store)
    except (LogStoreError, ValueError) as e:
        logger.error("%s", e)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
