import json

import pytest

from logstore.core.errors import ParseError
from logstore.utils.headers import HeaderMap
from logstore.utils.parsers import (
    LogRecord,
    decode,
    derive_file_id,
    derive_file_id_from_lines,
    encode,
    file_id_for_line,
    parse_line,
)

from conftest import make_entry, make_line, write_log


def _parse(raw, line_no=1):
    return parse_line("f1", line_no, raw, request_message="handled request")


class TestParseLine:
    def test_access_entry(self):
        record = _parse(make_line(user_id="alice", status=404), line_no=7)
        assert record.file_id == "f1"
        assert record.line_no == 7
        assert record.ts == 1635318521.123456
        assert record.user_id == "alice"
        assert record.duration == 0.001234
        assert record.size == 512
        assert record.status_code == 404
        assert record.remote_addr == "10.0.0.1:51234"
        assert record.proto == "HTTP/2.0"
        assert record.method == "GET"
        assert record.host == "example.com"
        assert record.uri == "/index.html?q=1"
        assert record.resp_headers.get_all("Set-Cookie") == ["a=1", "b=2"]
        assert list(record.req_headers) == ["User-Agent", "Accept"]

    def test_bytes_with_newline(self):
        record = _parse((make_line() + "\r\n").encode("utf-8"))
        assert record.status_code == 200

    def test_missing_or_null_user_becomes_empty(self):
        entry = make_entry()
        del entry["user_id"]
        assert _parse(json.dumps(entry)).user_id == ""
        assert _parse(make_line(user_id=None)).user_id == ""

    def test_integer_ts_accepted(self):
        assert _parse(make_line(ts=1635318521)).ts == 1635318521.0

    def test_remote_ip_and_port(self):
        entry = make_entry()
        del entry["request"]["remote_addr"]
        entry["request"]["remote_ip"] = "2001:db8::1"
        entry["request"]["remote_port"] = "443"
        assert _parse(json.dumps(entry)).remote_addr == "[2001:db8::1]:443"

    @pytest.mark.parametrize("raw", ["", "   ", "\n", b"\n"])
    def test_empty_lines_ignored(self, raw):
        assert _parse(raw) is None

    def test_non_access_entries_ignored(self):
        line = json.dumps({"level": "info", "ts": 1.0, "msg": "serving initial configuration"})
        assert _parse(line) is None

    def test_custom_request_message(self):
        line = make_line(msg="access")
        assert parse_line("f1", 1, line, request_message="access") is not None
        assert parse_line("f1", 1, line, request_message="handled request") is None

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[1, 2, 3]",
            b"\xff\xfe{}",
            make_line(status="200"),
            make_line(status=True),
            make_line(size=1.5),
            make_line(size=-1),
            make_line(duration="fast"),
            make_line(duration=-0.1),
            make_line(ts="yesterday"),
            make_line(resp_headers={"Server": "Caddy"}),
            make_line(user_id=5),
        ],
    )
    def test_malformed_lines_raise(self, raw):
        with pytest.raises(ParseError) as exc:
            parse_line("f1", 3, raw, request_message="handled request")
        assert exc.value.file_id == "f1"
        assert exc.value.line_no == 3

    def test_missing_field_raises(self):
        entry = make_entry()
        del entry["resp_headers"]
        with pytest.raises(ParseError, match="resp_headers"):
            _parse(json.dumps(entry))

    def test_missing_remote_raises(self):
        entry = make_entry()
        del entry["request"]["remote_addr"]
        with pytest.raises(ParseError):
            _parse(json.dumps(entry))

    def test_malformed_request_headers_raise(self):
        entry = make_entry()
        entry["request"]["headers"] = {"Accept": [1]}
        with pytest.raises(ParseError):
            _parse(json.dumps(entry))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"size": 2**63},
            {"status": 65536},
            {"status": -1},
        ],
    )
    def test_integers_outside_column_range_raise(self, overrides):
        with pytest.raises(ParseError) as exc:
            parse_line("f1", 9, make_line(**overrides), request_message="handled request")
        assert exc.value.line_no == 9

    def test_integer_limits_accepted(self):
        record = _parse(make_line(size=2**63 - 1, status=0))
        assert record.size == 2**63 - 1
        assert record.status_code == 0


def _record(**overrides):
    fields = dict(
        file_id="abc",
        line_no=12,
        ts=1635318521.987654321,
        user_id="",
        duration=0.0,
        size=0,
        status_code=599,
        resp_headers=HeaderMap(),
        remote_addr="[::1]:80",
        proto="HTTP/1.1",
        method="POST",
        host="h",
        uri="/" + "x" * 5000,
        req_headers=HeaderMap.from_pairs([("B", "1"), ("A", "2"), ("B", "3")]),
    )
    fields.update(overrides)
    return LogRecord(**fields)


class TestRecordCodec:
    @pytest.mark.parametrize(
        "record",
        [
            _record(),
            _record(user_id="bob", uri="/ünïcode?x=\"quoted\"", ts=0.1 + 0.2),
            _record(ts=1e-9, duration=12345.000001, size=2**40),
        ],
    )
    def test_round_trip(self, record):
        assert decode(encode(record)) == record

    def test_parsed_record_round_trips(self):
        record = _parse(make_line())
        assert decode(encode(record)) == record

    def test_encoded_field_order_matches_columns(self):
        data = json.loads(encode(_record()))
        assert list(data)[:3] == ["file_id", "line_no", "ts"]
        assert list(data)[-1] == "req_headers"
        assert data["req_headers"] == {"B": ["1", "3"], "A": ["2"]}

    def test_decode_accepts_str(self):
        record = _record()
        assert decode(encode(record).decode("utf-8")) == record

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda d: d.pop("req_headers"),
            lambda d: d.update(line_no="12"),
            lambda d: d.update(size=-5),
            lambda d: d.update(size=2**63),
            lambda d: d.update(status_code=70000),
            lambda d: d.update(extra=1),
            lambda d: d.update(resp_headers=None),
        ],
    )
    def test_decode_rejects_malformed(self, mutate):
        data = json.loads(encode(_record()))
        mutate(data)
        with pytest.raises(ParseError):
            decode(json.dumps(data))

    def test_decode_error_carries_position(self):
        data = json.loads(encode(_record()))
        data["status_code"] = "oops"
        with pytest.raises(ParseError) as exc:
            decode(json.dumps(data))
        assert exc.value.file_id == "abc"
        assert exc.value.line_no == 12


class TestFileId:
    def test_hash_of_first_access_entry(self):
        first = make_line(ts=1.0)
        lines = [
            json.dumps({"msg": "serving initial configuration"}),
            "",
            "garbage",
            first,
            make_line(ts=2.0),
        ]
        fid = derive_file_id_from_lines(lines, request_message="handled request")
        assert fid == file_id_for_line(first)
        assert len(fid) == 64

    def test_stable_when_file_grows(self, tmp_path):
        path = write_log(tmp_path / "a.log", [make_line(ts=1.0)])
        before = derive_file_id(path, request_message="handled request")
        write_log(tmp_path / "a.log", [make_line(ts=1.0), make_line(ts=2.0)])
        assert derive_file_id(path, request_message="handled request") == before

    def test_newline_does_not_change_id(self):
        line = make_line()
        assert file_id_for_line(line) == file_id_for_line(line + "\n")
        assert file_id_for_line(line) == file_id_for_line(line.encode() + b"\r\n")

    def test_none_without_access_entries(self):
        assert derive_file_id_from_lines(["", "{}", "nope"], request_message="handled request") is None
