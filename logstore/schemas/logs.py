# logstore/schemas/logs.py
"""
Schemas for stored log records.

`LogItem` is the wire form of a `LogRecord`: it validates encoded records in
the codec and serves as the response model for point lookups.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from logstore.schemas.types import INT64_MAX, ByteCount, HeaderBlock, NonNegativeNumber, Number, StatusCode


class LogItem(BaseModel):
    """A single stored access-log record."""

    model_config = ConfigDict(extra="forbid")

    file_id: StrictStr = Field(..., description="Source file identifier")
    line_no: StrictInt = Field(..., ge=0, le=INT64_MAX, description="Position of the line within the file")
    ts: Number = Field(..., description="Seconds since epoch, fractional")
    user_id: StrictStr = Field(..., description="Authenticated user, empty when anonymous")
    duration: NonNegativeNumber = Field(..., description="Handling time in seconds")
    size: ByteCount = Field(..., description="Response body size in bytes")
    status_code: StatusCode = Field(..., description="HTTP status code")
    resp_headers: HeaderBlock = Field(..., description="Response headers, may be empty")
    remote_addr: StrictStr
    proto: StrictStr
    method: StrictStr
    host: StrictStr
    uri: StrictStr
    req_headers: HeaderBlock = Field(..., description="Request headers, may be empty")


class FileSummary(BaseModel):
    """Per-file ingestion summary for GET /files."""

    file_id: str
    records: int = Field(..., ge=0, description="Stored records for this file")
    max_line_no: Optional[int] = Field(None, description="Highest stored line number")
    watermark: Optional[int] = Field(None, description="Position tracker watermark")
    first_ts: Optional[float] = None
    last_ts: Optional[float] = None


class FilesResponse(BaseModel):
    files: List[FileSummary] = Field(default_factory=list)
    total_records: int = Field(..., ge=0)
