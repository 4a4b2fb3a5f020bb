# logstore/services/ingest_service.py
"""
Ingestion pipeline (file -> codec -> tracker check -> store -> advance).

Per file the pipeline walks a small state machine:

    IDLE -> READING -> PARSING -> WRITING -> IDLE (loop)
                 \________________________-> ERROR (terminal)

ERROR is entered when the source cannot be read or the store fails a write.
A file in ERROR is refused until a collaborator calls `reset(file_id)`.

Ordering rules:
- one file is ingested strictly in line order, by one worker at a time
  (the scheduler guarantees this; `ingest_files` refuses obvious conflicts)
- the watermark advances only after `put` returned, so a crash between the
  two is repaired by `PositionTracker.reconcile` on the next run
- `DuplicateKey` is a no-op success: re-ingesting a file never adds rows

Precondition on sources: lines arrive in file order and nobody appends to a
file while it is being read.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Union

from logstore.core.config import settings
from logstore.core.errors import (
    DuplicateKey,
    IngestStateError,
    OutOfOrderAdvance,
    ParseError,
    SourceIOError,
    StorageIOError,
)
from logstore.services.positions import PositionTracker
from logstore.services.storage import LogStore
from logstore.utils.parsers import RawLine, derive_file_id, parse_line

logger = logging.getLogger(__name__)


class IngestState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    PARSING = "parsing"
    WRITING = "writing"
    ERROR = "error"


class ParseErrorPolicy(str, Enum):
    """What to do with a line that fails to parse."""

    SKIP = "skip"  # log it, move the watermark past it, keep going
    HALT = "halt"  # log it, stop this file, leave the watermark before it


class SourceLine(NamedTuple):
    """One line handed to the pipeline by a collaborator."""

    file_id: str
    raw_line: RawLine
    line_no: int


@dataclass
class IngestReport:
    """Outcome of one ingestion run over one file."""

    file_id: Optional[str]
    source: Optional[str] = None
    first_line: Optional[int] = None
    processed: int = 0
    inserted: int = 0
    duplicates: int = 0
    ignored: int = 0
    parse_errors: int = 0
    watermark: Optional[int] = None
    state: IngestState = IngestState.IDLE
    halted_at: Optional[int] = None
    error: Optional[str] = None
    skipped_lines: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state != IngestState.ERROR and self.halted_at is None


class IngestionPipeline:
    """Feeds log lines through the codec into the store, one file at a time."""

    def __init__(
        self,
        store: LogStore,
        tracker: PositionTracker,
        *,
        policy: Union[ParseErrorPolicy, str, None] = None,
        request_message: Optional[str] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self.policy = ParseErrorPolicy(policy or settings.PARSE_ERROR_POLICY)
        self._request_message = request_message
        self._max_workers = max_workers or settings.INGEST_WORKERS
        self._states: Dict[str, IngestState] = {}
        self._lock = threading.Lock()

    @property
    def start_line_no(self) -> int:
        return self._tracker.start_line_no

    @property
    def request_message(self) -> Optional[str]:
        """`msg` marker of access entries; None means the configured default."""
        return self._request_message

    # -----------------------
    # State
    # -----------------------
    def state(self, file_id: str) -> IngestState:
        with self._lock:
            return self._states.get(file_id, IngestState.IDLE)

    def states(self) -> Dict[str, IngestState]:
        with self._lock:
            return dict(self._states)

    def reset(self, file_id: str) -> None:
        """Manual restart of a file that ended in ERROR."""
        with self._lock:
            if self._states.get(file_id) == IngestState.ERROR:
                logger.info("Resetting %s from ERROR", file_id)
            self._states[file_id] = IngestState.IDLE

    def _set(self, file_id: str, state: IngestState) -> None:
        with self._lock:
            self._states[file_id] = state

    def _begin(self, file_id: str) -> None:
        with self._lock:
            if self._states.get(file_id) == IngestState.ERROR:
                raise IngestStateError(
                    "file is in ERROR state; reset it before ingesting again", file_id=file_id
                )
            self._states[file_id] = IngestState.READING

    # -----------------------
    # Entry points
    # -----------------------
    def ingest_file(
        self,
        path: str,
        *,
        file_id: Optional[str] = None,
        resume: bool = True,
    ) -> IngestReport:
        """
        Ingest a Caddy log file.

        Args:
            path: file to read.
            file_id: identifier to store under; derived from the content if None.
            resume: start after the watermark (True) or from the first line (False).
        """
        source = os.path.abspath(path)
        if file_id is None:
            try:
                file_id = derive_file_id(source, request_message=self._request_message)
            except OSError as e:
                raise SourceIOError(f"cannot read {source}: {e}") from e
            if file_id is None:
                logger.info("No access entries in %s; nothing to ingest", source)
                return IngestReport(file_id=None, source=source)
            logger.info("Generated file id %s for %s", file_id, source)

        lines = self._read_lines(source, file_id)
        return self._run(file_id, lines, resume=resume, source=source)

    def ingest_lines(
        self,
        file_id: str,
        lines: Iterable[SourceLine],
        *,
        resume: bool = True,
        source: Optional[str] = None,
    ) -> IngestReport:
        """Ingest a collaborator-supplied stream of `(file_id, raw_line, line_no)`."""
        return self._run(file_id, lines, resume=resume, source=source)

    def ingest_files(
        self,
        paths: Sequence[str],
        *,
        resume: bool = True,
        max_workers: Optional[int] = None,
    ) -> List[IngestReport]:
        """
        Ingest several files concurrently, one worker per file.

        Raises:
            ValueError: two paths resolve to the same file id.
            SourceIOError: a file cannot be opened to derive its id.
        """
        planned: List[tuple] = []
        owners: Dict[str, str] = {}
        for path in paths:
            source = os.path.abspath(path)
            try:
                file_id = derive_file_id(source, request_message=self._request_message)
            except OSError as e:
                raise SourceIOError(f"cannot read {source}: {e}") from e
            if file_id is not None:
                if file_id in owners:
                    raise ValueError(
                        f"{source} and {owners[file_id]} have the same file id {file_id}"
                    )
                owners[file_id] = source
            planned.append((source, file_id))

        workers = max(1, min(max_workers or self._max_workers, len(planned) or 1))
        reports: List[IngestReport] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
            futures = [
                (source, file_id, pool.submit(self._ingest_planned, source, file_id, resume))
                for source, file_id in planned
            ]
            for source, file_id, future in futures:
                try:
                    reports.append(future.result())
                except (SourceIOError, StorageIOError, IngestStateError) as e:
                    reports.append(
                        IngestReport(
                            file_id=file_id,
                            source=source,
                            state=IngestState.ERROR,
                            watermark=self._tracker.watermark(file_id) if file_id else None,
                            error=str(e),
                        )
                    )
        return reports

    def _ingest_planned(self, source: str, file_id: Optional[str], resume: bool) -> IngestReport:
        if file_id is None:
            logger.info("No access entries in %s; nothing to ingest", source)
            return IngestReport(file_id=None, source=source)
        return self.ingest_file(source, file_id=file_id, resume=resume)

    # -----------------------
    # Core loop
    # -----------------------
    def _read_lines(self, source: str, file_id: str) -> Iterator[SourceLine]:
        try:
            fh = open(source, "rb")
        except OSError as e:
            raise SourceIOError(f"cannot open {source}: {e}", file_id=file_id) from e
        with fh:
            for line_no, raw in enumerate(fh, start=self._tracker.start_line_no):
                yield SourceLine(file_id, raw, line_no)

    def _advance_if_ahead(self, file_id: str, line_no: int) -> None:
        mark = self._tracker.watermark(file_id)
        if mark is None or line_no > mark:
            self._tracker.advance(file_id, line_no)

    def _fail(self, report: IngestReport, exc: Exception) -> None:
        self._set(report.file_id, IngestState.ERROR)
        report.state = IngestState.ERROR
        report.error = str(exc)
        logger.error("Ingestion of %s failed: %s", report.file_id, exc)

    def _run(
        self,
        file_id: str,
        lines: Iterable[SourceLine],
        *,
        resume: bool,
        source: Optional[str],
    ) -> IngestReport:
        self._begin(file_id)
        try:
            self._tracker.reconcile(file_id)
        except StorageIOError as e:
            self._fail(IngestReport(file_id=file_id, source=source), e)
            raise

        start = self._tracker.next_expected(file_id) if resume else self._tracker.start_line_no
        report = IngestReport(file_id=file_id, source=source, first_line=start)
        logger.info("Ingesting %s from line %d", source or file_id, start)

        it = iter(lines)
        try:
            while True:
                self._set(file_id, IngestState.READING)
                try:
                    line = next(it)
                except StopIteration:
                    break
                except SourceIOError as e:
                    self._fail(report, e)
                    raise
                except OSError as e:
                    err = SourceIOError(f"read failed: {e}", file_id=file_id)
                    self._fail(report, err)
                    raise err from e

                if line.file_id != file_id:
                    raise ValueError(
                        f"line {line.line_no} belongs to {line.file_id}, not {file_id}"
                    )
                if line.line_no < start:
                    continue
                report.processed += 1

                self._set(file_id, IngestState.PARSING)
                try:
                    record = parse_line(
                        file_id,
                        line.line_no,
                        line.raw_line,
                        request_message=self._request_message,
                    )
                except ParseError as e:
                    report.parse_errors += 1
                    logger.error("Cannot decode log: %s", e)
                    if self.policy is ParseErrorPolicy.HALT:
                        report.halted_at = line.line_no
                        report.error = str(e)
                        break
                    report.skipped_lines.append(line.line_no)
                    self._advance_if_ahead(file_id, line.line_no)
                    continue

                if record is None:
                    report.ignored += 1
                    continue

                self._set(file_id, IngestState.WRITING)
                try:
                    self._store.put(record)
                except DuplicateKey:
                    report.duplicates += 1
                    logger.debug("Did not insert log entry %s:%d (already stored)", file_id, line.line_no)
                    self._advance_if_ahead(file_id, line.line_no)
                    continue
                except StorageIOError as e:
                    self._fail(report, e)
                    raise

                report.inserted += 1
                logger.debug("Inserted log entry %s:%d", file_id, line.line_no)
                if resume:
                    self._tracker.advance(file_id, line.line_no)
                else:
                    self._advance_if_ahead(file_id, line.line_no)
        except OutOfOrderAdvance as e:
            self._fail(report, e)
            raise
        finally:
            close = getattr(it, "close", None)
            if close is not None:
                close()
            if report.state != IngestState.ERROR:
                self._set(file_id, IngestState.IDLE)

        report.watermark = self._tracker.watermark(file_id)
        report.state = self.state(file_id)
        logger.info(
            "Ingested %s: %d processed, %d inserted, %d duplicate, %d ignored, %d malformed, watermark=%s",
            file_id,
            report.processed,
            report.inserted,
            report.duplicates,
            report.ignored,
            report.parse_errors,
            report.watermark,
        )
        if report.halted_at is not None:
            logger.error("Ingestion of %s halted at line %d", file_id, report.halted_at)
        return report
