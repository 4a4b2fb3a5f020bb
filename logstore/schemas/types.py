# logstore/schemas/types.py
"""
Shared field types for the pydantic schemas.

JSON numbers arrive as int or float; anything else (strings, booleans) in a
numeric position is a malformed line, so numbers are checked before pydantic
gets a chance to coerce them.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List

from pydantic import BeforeValidator, Field, StrictInt, StrictStr


def _require_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    return value


Number = Annotated[float, BeforeValidator(_require_number)]
NonNegativeNumber = Annotated[float, BeforeValidator(_require_number), Field(ge=0)]

# Integer columns are signed 64-bit; status codes are logged as u16.
INT64_MAX = 2**63 - 1
ByteCount = Annotated[StrictInt, Field(ge=0, le=INT64_MAX)]
StatusCode = Annotated[StrictInt, Field(ge=0, le=65535)]

# `{"Header-Name": ["value", ...]}` as logged by Caddy
HeaderBlock = Dict[str, List[StrictStr]]
