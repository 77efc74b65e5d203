"""SQLModel table for persisted attempt records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class AttemptRecordRow(SQLModel, table=True):
    """One attempt; vectors, analyses and metadata are stored as JSON text."""

    __tablename__ = "attempt_records"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_attempt_records_recorded_at", "recorded_at", "seq"),)

    seq: int | None = Field(default=None, primary_key=True)
    record_id: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    task: str = Field(sa_column=Column(Text, nullable=False))
    feature_vector_json: str = Field(sa_column=Column(Text, nullable=False))
    embedding_version: int = 1
    task_analysis_json: str = Field(sa_column=Column(Text, nullable=False))
    executor_id: str = Field(index=True)
    success: bool = False
    quality_score: float = 0.0
    duration_seconds: float = 0.0
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    metadata_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
