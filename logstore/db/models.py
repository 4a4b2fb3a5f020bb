# logstore/db/models.py
"""
SQLAlchemy ORM models for the log store.

The `logs` table mirrors the access-log schema column for column:
- composite primary key (file_id, line_no)
- every column NOT NULL (headers may be an empty object, never absent)
- header blocks stored as JSON `{name: [values]}`

Secondary indexes cover the filtered scans (time window, user, status).
"""

from __future__ import annotations

from sqlalchemy import JSON, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class LogRow(Base):
    """One stored access-log record."""

    __tablename__ = "logs"

    file_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    line_no: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    # Seconds since epoch; REAL keeps the fractional part exactly as parsed
    ts: Mapped[float] = mapped_column(Float, nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    duration: Mapped[float] = mapped_column(Float, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    resp_headers: Mapped[dict] = mapped_column(JSON, nullable=False)

    # `.request`
    remote_addr: Mapped[str] = mapped_column(String(255), nullable=False)
    proto: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(255), nullable=False)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    uri: Mapped[str] = mapped_column(Text, nullable=False)
    req_headers: Mapped[dict] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_logs_ts", "ts"),
        Index("ix_logs_user_ts", "user_id", "ts"),
        Index("ix_logs_status_ts", "status_code", "ts"),
    )
