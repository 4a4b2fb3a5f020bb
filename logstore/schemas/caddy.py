# logstore/schemas/caddy.py
"""
Shape of a Caddy `"handled request"` JSON access-log entry.

Only the fields we store are declared; Caddy adds more (`logger`, `level`,
`bytes_read`, ...) and those are ignored.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, StrictStr, model_validator

from logstore.schemas.types import ByteCount, HeaderBlock, NonNegativeNumber, Number, StatusCode


class CaddyRequest(BaseModel):
    """The `.request` object of an access entry."""

    model_config = ConfigDict(extra="ignore")

    # Caddy < 2.7 logs `remote_addr`; newer versions split it into ip + port
    remote_addr: Optional[StrictStr] = None
    remote_ip: Optional[StrictStr] = None
    remote_port: Optional[StrictStr] = None

    proto: StrictStr
    method: StrictStr
    host: StrictStr
    uri: StrictStr
    headers: HeaderBlock

    @model_validator(mode="after")
    def _require_remote(self) -> "CaddyRequest":
        if self.remote_addr is None and self.remote_ip is None:
            raise ValueError("request has neither remote_addr nor remote_ip")
        return self

    @property
    def address(self) -> str:
        if self.remote_addr is not None:
            return self.remote_addr
        ip = self.remote_ip or ""
        if not self.remote_port:
            return ip
        if ":" in ip:
            return f"[{ip}]:{self.remote_port}"
        return f"{ip}:{self.remote_port}"


class CaddyEntry(BaseModel):
    """A single access entry (`msg == "handled request"`)."""

    model_config = ConfigDict(extra="ignore")

    ts: Number
    user_id: Optional[StrictStr] = None
    duration: NonNegativeNumber
    size: ByteCount
    status: StatusCode
    resp_headers: HeaderBlock
    request: CaddyRequest
