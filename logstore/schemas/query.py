# logstore/schemas/query.py
"""
Filter specification accepted by the query layer.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class LogQuery(BaseModel):
    """
    Conjunction of filters over stored records.

    `start` / `end` bound `ts` as a closed interval; either may be omitted.
    An empty `file_ids` list means every file.
    """

    start: Optional[float] = Field(None, description="Earliest ts (inclusive), epoch seconds")
    end: Optional[float] = Field(None, description="Latest ts (inclusive), epoch seconds")
    user_id: Optional[str] = Field(None, description="Exact user id; '' selects anonymous")
    status_code: Optional[int] = Field(None, ge=0, description="HTTP status code as logged, 0 if none was written")
    file_ids: List[str] = Field(default_factory=list, description="Restrict to these files")
    limit: Optional[int] = Field(None, ge=1, description="Max records to return")

    @model_validator(mode="after")
    def _check_window(self) -> "LogQuery":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")
        return self
