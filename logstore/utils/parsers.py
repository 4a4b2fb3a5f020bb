# logstore/utils/parsers.py
"""
Record codec: Caddy access-log lines in, `LogRecord`s out, and back.

Three jobs live here:
- `parse_line`: one raw line plus its position -> `LogRecord` (or None for
  lines that are not access entries)
- `encode` / `decode`: canonical byte form of a stored record
  (`decode(encode(r)) == r`)
- `derive_file_id`: stable identifier for a log file, taken from its content

Line numbers are 1-based by default: the first physical line of a file is
line 1, and empty or ignored lines still consume a number.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

import orjson
from pydantic import ValidationError

from logstore.core.config import settings
from logstore.core.errors import ParseError
from logstore.schemas.caddy import CaddyEntry
from logstore.schemas.logs import LogItem
from logstore.utils.headers import HeaderMap

RawLine = Union[str, bytes]

# Column order of the `logs` table; also the field order of encoded records.
RECORD_FIELDS = (
    "file_id",
    "line_no",
    "ts",
    "user_id",
    "duration",
    "size",
    "status_code",
    "resp_headers",
    "remote_addr",
    "proto",
    "method",
    "host",
    "uri",
    "req_headers",
)


@dataclass(frozen=True)
class LogRecord:
    """One HTTP request/response event, keyed by (file_id, line_no)."""

    file_id: str
    line_no: int
    ts: float
    user_id: str
    duration: float
    size: int
    status_code: int
    resp_headers: HeaderMap
    remote_addr: str
    proto: str
    method: str
    host: str
    uri: str
    req_headers: HeaderMap

    @property
    def key(self) -> tuple:
        return (self.file_id, self.line_no)

    @property
    def sort_key(self) -> tuple:
        """Ordering used by filtered scans: ts, then position."""
        return (self.ts, self.file_id, self.line_no)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name in RECORD_FIELDS:
            value = getattr(self, name)
            data[name] = value.to_dict() if isinstance(value, HeaderMap) else value
        return data

    @classmethod
    def from_item(cls, item: LogItem) -> "LogRecord":
        return cls(
            file_id=item.file_id,
            line_no=item.line_no,
            ts=float(item.ts),
            user_id=item.user_id,
            duration=float(item.duration),
            size=item.size,
            status_code=item.status_code,
            resp_headers=HeaderMap.from_dict(item.resp_headers),
            remote_addr=item.remote_addr,
            proto=item.proto,
            method=item.method,
            host=item.host,
            uri=item.uri,
            req_headers=HeaderMap.from_dict(item.req_headers),
        )


# ----------------------------
# Raw line handling
# ----------------------------
def _to_text(raw: RawLine, file_id: Optional[str], line_no: Optional[int]) -> str:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"invalid utf-8: {e}", file_id=file_id, line_no=line_no) from e
    return raw.rstrip("\r\n")


def _load_object(text: str, file_id: Optional[str], line_no: Optional[int]) -> Dict[str, Any]:
    try:
        obj = orjson.loads(text)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"json decode error: {e}", file_id=file_id, line_no=line_no) from e
    if not isinstance(obj, dict):
        raise ParseError(
            f"expected a JSON object, got {type(obj).__name__}",
            file_id=file_id,
            line_no=line_no,
        )
    return obj


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
    return f"{loc}: {err.get('msg', 'invalid value')}"


def is_access_entry(obj: Dict[str, Any], request_message: Optional[str] = None) -> bool:
    """True when a decoded JSON object is a Caddy access entry."""
    expected = request_message if request_message is not None else settings.REQUEST_MESSAGE
    return obj.get("msg") == expected


def parse_line(
    file_id: str,
    line_no: int,
    raw: RawLine,
    *,
    request_message: Optional[str] = None,
) -> Optional[LogRecord]:
    """
    Parse one raw Caddy log line.

    Returns:
        The `LogRecord`, or None when the line is empty or a non-access entry.

    Raises:
        ParseError: invalid UTF-8 or JSON, missing fields, wrong types,
        negative duration/size, or a malformed header block.
    """
    text = _to_text(raw, file_id, line_no)
    if not text.strip():
        return None

    obj = _load_object(text, file_id, line_no)
    if not is_access_entry(obj, request_message):
        return None

    try:
        entry = CaddyEntry.model_validate(obj)
    except ValidationError as e:
        raise ParseError(
            f"cannot decode log: {_first_error(e)}", file_id=file_id, line_no=line_no
        ) from e

    return LogRecord(
        file_id=file_id,
        line_no=line_no,
        ts=float(entry.ts),
        user_id=entry.user_id or "",
        duration=float(entry.duration),
        size=entry.size,
        status_code=entry.status,
        resp_headers=HeaderMap.from_dict(entry.resp_headers),
        remote_addr=entry.request.address,
        proto=entry.request.proto,
        method=entry.request.method,
        host=entry.request.host,
        uri=entry.request.uri,
        req_headers=HeaderMap.from_dict(entry.request.headers),
    )


# ----------------------------
# Stored record codec
# ----------------------------
def encode(record: LogRecord) -> bytes:
    """Canonical JSON bytes for a record (fields in column order)."""
    return orjson.dumps(record.to_dict())


def decode(data: RawLine) -> LogRecord:
    """
    Inverse of `encode`.

    Raises:
        ParseError: if `data` is not a complete, well-typed encoded record.
    """
    text = _to_text(data, None, None)
    obj = _load_object(text, None, None)
    try:
        item = LogItem.model_validate(obj)
    except ValidationError as e:
        raise ParseError(
            f"invalid record: {_first_error(e)}",
            file_id=obj.get("file_id") if isinstance(obj.get("file_id"), str) else None,
            line_no=obj.get("line_no") if isinstance(obj.get("line_no"), int) else None,
        ) from e
    return LogRecord.from_item(item)


# ----------------------------
# File identity
# ----------------------------
def file_id_for_line(line: RawLine) -> str:
    """BLAKE2b-256 hex digest of a line (without its newline)."""
    if isinstance(line, str):
        line = line.encode("utf-8")
    return hashlib.blake2b(line.rstrip(b"\r\n"), digest_size=32).hexdigest()


def derive_file_id_from_lines(
    lines: Iterable[RawLine],
    *,
    request_message: Optional[str] = None,
) -> Optional[str]:
    """
    File id = hash of the first access entry in the file.

    Stable across restarts and renames, and unaffected by lines appended later.
    Returns None when the input holds no access entry.
    """
    for raw in lines:
        try:
            text = _to_text(raw, None, None)
            if not text.strip():
                continue
            obj = _load_object(text, None, None)
        except ParseError:
            continue
        if is_access_entry(obj, request_message):
            return file_id_for_line(text)
    return None


def derive_file_id(path: str, *, request_message: Optional[str] = None) -> Optional[str]:
    """`derive_file_id_from_lines` over a file on disk (read lazily)."""
    with open(path, "rb") as fh:
        return derive_file_id_from_lines(fh, request_message=request_message)
