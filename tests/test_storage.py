import contextlib
import threading

import pytest
from sqlalchemy import inspect

from logstore.core.errors import DuplicateKey, RecordNotFound, StorageIOError
from logstore.services.storage import LogStore, TimeRange
from logstore.utils.headers import HeaderMap
from logstore.utils.parsers import LogRecord


def rec(file_id="a.log", line_no=1, ts=100.0, user_id="", status_code=200, **overrides):
    fields = dict(
        file_id=file_id,
        line_no=line_no,
        ts=ts,
        user_id=user_id,
        duration=0.25,
        size=10,
        status_code=status_code,
        resp_headers=HeaderMap.from_pairs([("Set-Cookie", "a=1"), ("Server", "Caddy"), ("Set-Cookie", "b=2")]),
        remote_addr="127.0.0.1:1",
        proto="HTTP/1.1",
        method="GET",
        host="example.com",
        uri="/",
        req_headers=HeaderMap(),
    )
    fields.update(overrides)
    return LogRecord(**fields)


class TestSchema:
    def test_logs_table_columns(self, store):
        insp = inspect(store.engine)
        cols = {c["name"]: c for c in insp.get_columns("logs")}
        assert list(cols) == [
            "file_id", "line_no", "ts", "user_id", "duration", "size", "status_code",
            "resp_headers", "remote_addr", "proto", "method", "host", "uri", "req_headers",
        ]
        assert all(not c["nullable"] for c in cols.values())
        assert insp.get_pk_constraint("logs")["constrained_columns"] == ["file_id", "line_no"]

    def test_open_creates_parent_directory(self, tmp_path):
        s = LogStore.open(f"sqlite:///{tmp_path / 'nested' / 'dir' / 'logs.db'}")
        try:
            assert (tmp_path / "nested" / "dir" / "logs.db").exists()
        finally:
            s.close()


class TestPutGet:
    def test_put_then_get(self, store):
        r = rec(uri="/" + "u" * 3000)
        store.put(r)
        got = store.get("a.log", 1)
        assert got == r
        assert got.resp_headers.get_all("Set-Cookie") == ["a=1", "b=2"]
        assert list(got.resp_headers) == ["Set-Cookie", "Server"]

    def test_fractional_ts_preserved(self, store):
        store.put(rec(ts=1635318521.123456789))
        assert store.get("a.log", 1).ts == 1635318521.123456789

    def test_duplicate_key_rejected(self, store):
        store.put(rec())
        with pytest.raises(DuplicateKey) as exc:
            store.put(rec(ts=999.0))
        assert exc.value.file_id == "a.log"
        assert exc.value.line_no == 1
        # first write wins, nothing mutated
        assert store.get("a.log", 1).ts == 100.0
        assert store.count() == 1

    def test_same_line_in_other_file_is_fine(self, store):
        store.put(rec(file_id="a.log"))
        store.put(rec(file_id="b.log"))
        assert store.count() == 2

    def test_get_missing(self, store):
        with pytest.raises(RecordNotFound) as exc:
            store.get("a.log", 42)
        assert exc.value.line_no == 42
        assert isinstance(exc.value, KeyError)

    def test_write_failure_is_storage_io_error(self, store):
        store.close()
        with store.engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE logs")
        with pytest.raises(StorageIOError):
            store.put(rec())

    def test_unbindable_integer_is_storage_io_error(self, store):
        with pytest.raises(StorageIOError) as exc:
            store.put(rec(line_no=4, size=2**63))
        assert exc.value.line_no == 4
        assert store.count("a.log") == 0

    def test_max_line_no_and_counts(self, store):
        assert store.max_line_no("a.log") is None
        for n in (1, 2, 5):
            store.put(rec(line_no=n))
        store.put(rec(file_id="b.log", line_no=9))
        assert store.max_line_no("a.log") == 5
        assert store.count("a.log") == 3
        assert store.file_ids() == ["a.log", "b.log"]

    def test_file_summaries(self, store):
        store.put(rec(line_no=1, ts=10.0))
        store.put(rec(line_no=2, ts=5.0))
        (stats,) = store.file_summaries()
        assert stats.file_id == "a.log"
        assert stats.records == 2
        assert stats.max_line_no == 2
        assert (stats.first_ts, stats.last_ts) == (5.0, 10.0)


class TestScanFile:
    def _fill(self, store, n=7):
        for i in range(1, n + 1):
            store.put(rec(line_no=i, ts=1000.0 - i))
        store.put(rec(file_id="other", line_no=3))

    def test_range_inclusive_ascending(self, store):
        self._fill(store)
        lines = [r.line_no for r in store.scan_file("a.log", 2, 5)]
        assert lines == [2, 3, 4, 5]

    def test_full_range(self, store):
        self._fill(store)
        assert [r.line_no for r in store.scan_file("a.log", 1, 7)] == list(range(1, 8))
        assert [r.line_no for r in store.scan_file("a.log")] == list(range(1, 8))

    def test_restart_from_offset(self, store):
        self._fill(store)
        it = store.scan_file("a.log", 1)
        first = [next(it).line_no for _ in range(3)]
        it.close()
        rest = [r.line_no for r in store.scan_file("a.log", first[-1] + 1)]
        assert first + rest == list(range(1, 8))

    def test_empty_and_inverted_ranges(self, store):
        self._fill(store)
        assert list(store.scan_file("missing", 1, 10)) == []
        assert list(store.scan_file("a.log", 5, 2)) == []

    def test_closing_releases_connection(self, store):
        self._fill(store)
        pool = store.engine.pool
        with contextlib.closing(store.scan_file("a.log")) as it:
            next(it)
            assert pool.checkedout() == 1
        assert pool.checkedout() == 0

    def test_scan_is_lazy(self, store):
        self._fill(store)
        it = store.scan_file("a.log")
        assert store.engine.pool.checkedout() == 0
        assert next(it).line_no == 1
        it.close()


class TestScanFiltered:
    def _fill(self, store):
        store.put(rec(file_id="b", line_no=1, ts=10.0, user_id="alice", status_code=200))
        store.put(rec(file_id="a", line_no=2, ts=10.0, user_id="bob", status_code=404))
        store.put(rec(file_id="a", line_no=1, ts=10.0, user_id="alice", status_code=500))
        store.put(rec(file_id="a", line_no=3, ts=5.0, user_id="", status_code=200))
        store.put(rec(file_id="b", line_no=2, ts=20.0, user_id="alice", status_code=200))

    def test_closed_interval_and_order(self, store):
        self._fill(store)
        got = [(r.ts, r.file_id, r.line_no) for r in store.scan_filtered(TimeRange(5.0, 10.0))]
        assert got == [(5.0, "a", 3), (10.0, "a", 1), (10.0, "a", 2), (10.0, "b", 1)]

    def test_open_bounds(self, store):
        self._fill(store)
        assert len(list(store.scan_filtered(TimeRange(None, None)))) == 5
        assert [r.ts for r in store.scan_filtered(TimeRange(start=11.0))] == [20.0]
        assert [r.ts for r in store.scan_filtered(TimeRange(end=5.0))] == [5.0]
        assert len(list(store.scan_filtered())) == 5

    def test_conjunction_of_filters(self, store):
        self._fill(store)
        got = list(store.scan_filtered(TimeRange(0, 100), user_id="alice", status_code=200))
        assert [(r.file_id, r.line_no) for r in got] == [("b", 1), ("b", 2)]

    def test_empty_user_selects_anonymous(self, store):
        self._fill(store)
        got = list(store.scan_filtered(TimeRange(), user_id=""))
        assert [(r.file_id, r.line_no) for r in got] == [("a", 3)]

    def test_file_restriction(self, store):
        self._fill(store)
        got = list(store.scan_filtered(TimeRange(), file_id="b"))
        assert [r.line_no for r in got] == [1, 2]

    def test_time_range_contains(self):
        assert TimeRange(1.0, 2.0).contains(1.0)
        assert TimeRange(1.0, 2.0).contains(2.0)
        assert not TimeRange(1.0, 2.0).contains(2.5)
        assert TimeRange().contains(-1e9)


class TestConcurrency:
    def test_concurrent_writers_on_distinct_files(self, store):
        errors = []

        def write(file_id):
            try:
                for n in range(1, 26):
                    store.put(rec(file_id=file_id, line_no=n, ts=float(n)))
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=write, args=(f"f{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.count() == 100
        for i in range(4):
            assert store.max_line_no(f"f{i}") == 25

    def test_reader_during_writes_sees_only_whole_records(self, store):
        for n in range(1, 4):
            store.put(rec(line_no=n))
        it = store.scan_file("a.log")
        first = next(it)
        store.put(rec(line_no=4))
        rest = list(it)
        seen = [first] + rest
        assert all(r == store.get("a.log", r.line_no) for r in seen)
        assert store.count("a.log") == 4
