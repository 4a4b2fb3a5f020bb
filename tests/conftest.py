import json

import pytest

from logstore.services.ingest_service import IngestionPipeline
from logstore.services.positions import PositionTracker
from logstore.services.query_service import QueryService
from logstore.services.storage import LogStore


def make_entry(**overrides):
    """A Caddy `handled request` entry as a dict; top-level keys can be overridden."""
    entry = {
        "level": "info",
        "ts": 1635318521.123456,
        "logger": "http.log.access.log0",
        "msg": "handled request",
        "request": {
            "remote_addr": "10.0.0.1:51234",
            "proto": "HTTP/2.0",
            "method": "GET",
            "host": "example.com",
            "uri": "/index.html?q=1",
            "headers": {
                "User-Agent": ["curl/7.79.1"],
                "Accept": ["*/*"],
            },
        },
        "user_id": "",
        "duration": 0.001234,
        "size": 512,
        "status": 200,
        "resp_headers": {
            "Server": ["Caddy"],
            "Set-Cookie": ["a=1", "b=2"],
        },
    }
    entry.update(overrides)
    return entry


def make_line(**overrides):
    return json.dumps(make_entry(**overrides))


def write_log(path, lines):
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return str(path)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'logs.db'}"


@pytest.fixture
def store(db_url):
    s = LogStore.open(db_url, batch_size=2)
    yield s
    s.close()


@pytest.fixture
def tracker(store):
    return PositionTracker(store, start_line_no=1)


@pytest.fixture
def pipeline(store, tracker):
    return IngestionPipeline(store, tracker, policy="skip", request_message="handled request")


@pytest.fixture
def halting_pipeline(store, tracker):
    return IngestionPipeline(store, tracker, policy="halt", request_message="handled request")


@pytest.fixture
def queries(store):
    return QueryService(store)
