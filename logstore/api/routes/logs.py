# logstore/api/routes/logs.py
"""
Read endpoints over stored records.

- GET /logs                      filtered scan, NDJSON stream
- GET /logs/{file_id}/{line_no}  point lookup
- GET /files                     per-file summary with watermarks
- GET /files/{file_id}/lines     line range of one file, NDJSON stream

NDJSON bodies are produced lazily from the storage scans; each line is the
canonical encoded record.
"""

from __future__ import annotations

import asyncio
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from logstore.api.deps import get_query_service, get_store, get_tracker
from logstore.schemas.logs import FileSummary, FilesResponse, LogItem
from logstore.schemas.query import LogQuery
from logstore.services.positions import PositionTracker
from logstore.services.query_service import QueryService
from logstore.services.storage import LogStore
from logstore.utils.parsers import LogRecord, encode
from logstore.utils.timestamps import to_epoch

router = APIRouter()

NDJSON = "application/x-ndjson"


def _ndjson(records: Iterator[LogRecord]) -> Iterator[bytes]:
    try:
        for record in records:
            yield encode(record) + b"\n"
    finally:
        close = getattr(records, "close", None)
        if close is not None:
            close()


def _parse_time(name: str, value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return to_epoch(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"{name}: {e}")


@router.get("/logs")
def query_logs(
    start: Optional[str] = Query(default=None, description="Earliest ts: epoch seconds or ISO 8601"),
    end: Optional[str] = Query(default=None, description="Latest ts: epoch seconds or ISO 8601"),
    user_id: Optional[str] = Query(default=None, description="Exact user id"),
    status_code: Optional[int] = Query(default=None, description="HTTP status code"),
    file_id: List[str] = Query(default=[], description="Restrict to these files (repeatable)"),
    limit: Optional[int] = Query(default=None, ge=1, description="Max records to return"),
    queries: QueryService = Depends(get_query_service),
):
    """
    Stream records matching every filter, ordered by ts then (file_id, line_no).

    Example:
      /logs?start=2021-10-27T00:00:00Z&status_code=404&limit=100
    """
    try:
        query = LogQuery(
            start=_parse_time("start", start),
            end=_parse_time("end", end),
            user_id=user_id,
            status_code=status_code,
            file_ids=file_id,
            limit=limit,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return StreamingResponse(_ndjson(queries.run(query)), media_type=NDJSON)


@router.get("/logs/{file_id}/{line_no}", response_model=LogItem)
async def get_log(
    file_id: str,
    line_no: int,
    store: LogStore = Depends(get_store),
):
    """Point lookup; 404 when the line was never stored."""
    record = await asyncio.to_thread(store.get, file_id, line_no)
    return LogItem.model_validate(record.to_dict())


@router.get("/files", response_model=FilesResponse)
async def list_files(
    store: LogStore = Depends(get_store),
    tracker: PositionTracker = Depends(get_tracker),
):
    stats = await asyncio.to_thread(store.file_summaries)
    files = [
        FileSummary(
            file_id=s.file_id,
            records=s.records,
            max_line_no=s.max_line_no,
            watermark=tracker.watermark(s.file_id),
            first_ts=s.first_ts,
            last_ts=s.last_ts,
        )
        for s in stats
    ]
    return FilesResponse(files=files, total_records=sum(f.records for f in files))


@router.get("/files/{file_id}/lines")
def file_lines(
    file_id: str,
    from_line: int = Query(default=1, ge=0, description="First line (inclusive)"),
    to_line: Optional[int] = Query(default=None, ge=0, description="Last line (inclusive)"),
    queries: QueryService = Depends(get_query_service),
):
    """Stream one file's records in line order."""
    return StreamingResponse(
        _ndjson(queries.file_range(file_id, from_line, to_line)),
        media_type=NDJSON,
    )
