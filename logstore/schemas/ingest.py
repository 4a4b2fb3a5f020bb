# logstore/schemas/ingest.py
"""
Schemas for POST /upload.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """
    Result of ingesting one uploaded log file.

    Example:
    {
      "status": "success",
      "file_id": "9f2c...",
      "processed": 150,
      "inserted": 148,
      "duplicates": 0,
      "ignored": 1,
      "parse_errors": 1,
      "watermark": 150,
      "state": "idle",
      "halted_at": null,
      "skipped_lines": [42]
    }
    """

    status: str = Field(..., description="'success', or 'halted' when a parse error stopped ingestion")
    file_id: str = Field(..., description="Identifier derived from the file content")
    processed: int = Field(..., ge=0, description="Lines read past the resume point")
    inserted: int = Field(..., ge=0, description="New records written")
    duplicates: int = Field(..., ge=0, description="Records that were already stored")
    ignored: int = Field(..., ge=0, description="Empty or non-access lines")
    parse_errors: int = Field(..., ge=0, description="Malformed lines")
    watermark: Optional[int] = Field(None, description="Last ingested line after this run")
    state: str = Field(..., description="Pipeline state for this file")
    halted_at: Optional[int] = Field(None, description="Line that stopped a halt-policy run")
    skipped_lines: List[int] = Field(default_factory=list, description="Malformed lines skipped")
