# logstore/services/storage.py
"""
Storage engine: durable keyed store of `LogRecord`s.

Records are keyed by (file_id, line_no) and written once. Every `put` is its
own transaction and returns only after commit, so an accepted record is
recoverable after a crash and a reader never observes half of one.

Scans are generators holding one session each. The session is opened on the
first `next()` and closed when the generator finishes or is closed, so a
consumer that stops early releases its connection immediately:

    with contextlib.closing(store.scan_file(fid, 1, 100)) as rows:
        for record in rows:
            ...
"""

from __future__ import annotations

import logging
from typing import Iterator, List, NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.sql import Select

from logstore.core.config import settings
from logstore.core.errors import DuplicateKey, RecordNotFound, StorageIOError
from logstore.db.models import LogRow
from logstore.db.session import create_db_engine, create_session_factory, init_db
from logstore.utils.headers import HeaderMap
from logstore.utils.parsers import LogRecord

logger = logging.getLogger(__name__)


class TimeRange(NamedTuple):
    """Closed interval [start, end] over `ts`; a None bound is open."""

    start: Optional[float] = None
    end: Optional[float] = None

    def contains(self, ts: float) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


class FileStats(NamedTuple):
    file_id: str
    records: int
    max_line_no: Optional[int]
    first_ts: Optional[float]
    last_ts: Optional[float]


def _to_row(record: LogRecord) -> LogRow:
    return LogRow(
        file_id=record.file_id,
        line_no=record.line_no,
        ts=record.ts,
        user_id=record.user_id,
        duration=record.duration,
        size=record.size,
        status_code=record.status_code,
        resp_headers=record.resp_headers.to_dict(),
        remote_addr=record.remote_addr,
        proto=record.proto,
        method=record.method,
        host=record.host,
        uri=record.uri,
        req_headers=record.req_headers.to_dict(),
    )


def _to_record(row: LogRow) -> LogRecord:
    return LogRecord(
        file_id=row.file_id,
        line_no=row.line_no,
        ts=row.ts,
        user_id=row.user_id,
        duration=row.duration,
        size=row.size,
        status_code=row.status_code,
        resp_headers=HeaderMap.from_dict(row.resp_headers),
        remote_addr=row.remote_addr,
        proto=row.proto,
        method=row.method,
        host=row.host,
        uri=row.uri,
        req_headers=HeaderMap.from_dict(row.req_headers),
    )


class LogStore:
    """Keyed record store over a SQLAlchemy engine."""

    def __init__(self, engine: Engine, *, batch_size: Optional[int] = None) -> None:
        self._engine = engine
        self._sessions = create_session_factory(engine)
        self._batch_size = batch_size or settings.SCAN_BATCH_SIZE

    @classmethod
    def open(
        cls,
        database_url: Optional[str] = None,
        *,
        batch_size: Optional[int] = None,
        busy_timeout_ms: Optional[int] = None,
    ) -> "LogStore":
        """Create the engine, make sure the schema exists, return a store."""
        engine = create_db_engine(database_url, busy_timeout_ms=busy_timeout_ms)
        try:
            init_db(engine)
        except SQLAlchemyError as e:
            engine.dispose()
            raise StorageIOError(f"cannot initialize database: {e}") from e
        return cls(engine, batch_size=batch_size)

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        self._engine.dispose()

    # -----------------------
    # Writes
    # -----------------------
    def put(self, record: LogRecord) -> None:
        """
        Durably insert `record`.

        Raises:
            DuplicateKey: (file_id, line_no) is already stored.
            StorageIOError: any other database failure; nothing was written.
        """
        try:
            with self._sessions() as session:
                session.add(_to_row(record))
                session.commit()
        except IntegrityError as e:
            raise DuplicateKey(
                "record already stored", file_id=record.file_id, line_no=record.line_no
            ) from e
        except SQLAlchemyError as e:
            raise StorageIOError(
                f"write failed: {e}", file_id=record.file_id, line_no=record.line_no
            ) from e
        except (OverflowError, TypeError) as e:
            # value the driver cannot bind, e.g. an int wider than 64 bits
            raise StorageIOError(
                f"write failed: {e}", file_id=record.file_id, line_no=record.line_no
            ) from e

    # -----------------------
    # Point reads
    # -----------------------
    def get(self, file_id: str, line_no: int) -> LogRecord:
        try:
            with self._sessions() as session:
                row = session.get(LogRow, (file_id, line_no))
                if row is None:
                    raise RecordNotFound("no such record", file_id=file_id, line_no=line_no)
                return _to_record(row)
        except SQLAlchemyError as e:
            raise StorageIOError(f"read failed: {e}", file_id=file_id, line_no=line_no) from e

    def max_line_no(self, file_id: str) -> Optional[int]:
        """Highest stored line number for `file_id`, None if the file has no rows."""
        stmt = select(func.max(LogRow.line_no)).where(LogRow.file_id == file_id)
        try:
            with self._sessions() as session:
                return session.execute(stmt).scalar()
        except SQLAlchemyError as e:
            raise StorageIOError(f"read failed: {e}", file_id=file_id) from e

    def file_ids(self) -> List[str]:
        stmt = select(LogRow.file_id).distinct().order_by(LogRow.file_id)
        try:
            with self._sessions() as session:
                return list(session.execute(stmt).scalars())
        except SQLAlchemyError as e:
            raise StorageIOError(f"read failed: {e}") from e

    def count(self, file_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(LogRow)
        if file_id is not None:
            stmt = stmt.where(LogRow.file_id == file_id)
        try:
            with self._sessions() as session:
                return int(session.execute(stmt).scalar() or 0)
        except SQLAlchemyError as e:
            raise StorageIOError(f"read failed: {e}", file_id=file_id) from e

    def file_summaries(self) -> List[FileStats]:
        stmt = (
            select(
                LogRow.file_id,
                func.count(),
                func.max(LogRow.line_no),
                func.min(LogRow.ts),
                func.max(LogRow.ts),
            )
            .group_by(LogRow.file_id)
            .order_by(LogRow.file_id)
        )
        try:
            with self._sessions() as session:
                return [FileStats(*row) for row in session.execute(stmt)]
        except SQLAlchemyError as e:
            raise StorageIOError(f"read failed: {e}") from e

    # -----------------------
    # Scans
    # -----------------------
    def scan_file(
        self,
        file_id: str,
        from_line: int = 1,
        to_line: Optional[int] = None,
    ) -> Iterator[LogRecord]:
        """
        Records of one file with from_line <= line_no <= to_line, ascending.

        To resume after the last record seen, call again with
        `from_line = last.line_no + 1`.
        """
        stmt = select(LogRow).where(
            LogRow.file_id == file_id,
            LogRow.line_no >= from_line,
        )
        if to_line is not None:
            stmt = stmt.where(LogRow.line_no <= to_line)
        return self._stream(stmt.order_by(LogRow.line_no), file_id=file_id)

    def scan_filtered(
        self,
        time_range: Optional[TimeRange] = None,
        user_id: Optional[str] = None,
        status_code: Optional[int] = None,
        file_id: Optional[str] = None,
    ) -> Iterator[LogRecord]:
        """
        Records matching every supplied filter, ordered by ts then
        (file_id, line_no).
        """
        stmt = select(LogRow)
        if time_range is not None:
            if time_range.start is not None:
                stmt = stmt.where(LogRow.ts >= time_range.start)
            if time_range.end is not None:
                stmt = stmt.where(LogRow.ts <= time_range.end)
        if user_id is not None:
            stmt = stmt.where(LogRow.user_id == user_id)
        if status_code is not None:
            stmt = stmt.where(LogRow.status_code == status_code)
        if file_id is not None:
            stmt = stmt.where(LogRow.file_id == file_id)
        stmt = stmt.order_by(LogRow.ts, LogRow.file_id, LogRow.line_no)
        return self._stream(stmt, file_id=file_id)

    def _stream(self, stmt: Select, *, file_id: Optional[str] = None) -> Iterator[LogRecord]:
        try:
            with self._sessions() as session:
                result = session.execute(stmt.execution_options(yield_per=self._batch_size))
                for row in result.scalars():
                    yield _to_record(row)
        except SQLAlchemyError as e:
            raise StorageIOError(f"scan failed: {e}", file_id=file_id) from e
