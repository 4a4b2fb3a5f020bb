# logstore/api/deps.py
"""
FastAPI dependencies handing the core components to route handlers.

The components are built once at startup and kept on `app.state`.
"""

from __future__ import annotations

from fastapi import Request

from logstore.services.ingest_service import IngestionPipeline
from logstore.services.positions import PositionTracker
from logstore.services.query_service import QueryService
from logstore.services.storage import LogStore


def get_store(request: Request) -> LogStore:
    return request.app.state.store


def get_tracker(request: Request) -> PositionTracker:
    return request.app.state.tracker


def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


def get_query_service(request: Request) -> QueryService:
    return request.app.state.queries
