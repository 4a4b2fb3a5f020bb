# logstore/api/routes/ingest.py
"""
Log ingestion endpoint.

Responsibilities:
- Accept a Caddy JSON access-log upload
- Derive the file id from the content (re-uploads map to the same id)
- Run the ingestion pipeline off the event loop
- Return the ingestion report
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from logstore.api.deps import get_pipeline
from logstore.schemas.ingest import UploadResponse
from logstore.services.ingest_service import IngestionPipeline, SourceLine
from logstore.utils.parsers import derive_file_id_from_lines

logger = logging.getLogger(__name__)

router = APIRouter()


def _split_lines(content: bytes) -> List[bytes]:
    """Split on '\\n' exactly like iterating over a file opened in binary mode."""
    lines = content.split(b"\n")
    if lines and lines[-1] == b"":
        lines.pop()
    return lines


@router.post("/upload", response_model=UploadResponse)
async def upload_logs(
    file: UploadFile = File(...),
    resume: bool = Query(default=True, description="Skip lines at or below the watermark"),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Upload and ingest a Caddy access log.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing filename.")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    lines = _split_lines(content)
    file_id = derive_file_id_from_lines(lines, request_message=pipeline.request_message)
    if file_id is None:
        raise HTTPException(
            status_code=400,
            detail="No access entries found. Expected Caddy JSON logs with msg='handled request'.",
        )

    start = pipeline.start_line_no
    stream = (SourceLine(file_id, raw, line_no) for line_no, raw in enumerate(lines, start=start))

    report = await asyncio.to_thread(
        pipeline.ingest_lines,
        file_id,
        stream,
        resume=resume,
        source=file.filename,
    )

    return UploadResponse(
        status="halted" if report.halted_at is not None else "success",
        file_id=file_id,
        processed=report.processed,
        inserted=report.inserted,
        duplicates=report.duplicates,
        ignored=report.ignored,
        parse_errors=report.parse_errors,
        watermark=report.watermark,
        state=report.state.value,
        halted_at=report.halted_at,
        skipped_lines=report.skipped_lines,
    )
