"""Size-bounded attempt history backed by SQLite, mirrored in memory."""

from __future__ import annotations

import json
import logging
import sqlite3
import statistics
import threading
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from alembic.util.exc import CommandError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, delete, select

from adaptive_dispatch.dispatch.embedder import EMBEDDING_SCHEMA_VERSION, is_valid_vector
from adaptive_dispatch.dispatch.errors import HistoryStoreCorruption, InvalidAttemptRecord
from adaptive_dispatch.dispatch.models import (
    MAX_QUALITY_SCORE,
    AttemptRecord,
    ExecutorHistoryPerformance,
    FeatureVector,
    HistoryStats,
    TaskAnalysis,
)
from adaptive_dispatch.dispatch.similarity import (
    DEFAULT_CANDIDATE_CEILING,
    DEFAULT_HALF_LIFE_DAYS,
    Candidate,
    Neighbor,
    SimilarityMetric,
    find_nearest,
)
from adaptive_dispatch.storage.alembic_runner import upgrade_head
from adaptive_dispatch.storage.common import build_sqlite_engine, ensure_utc, utc_now
from adaptive_dispatch.storage.sqlmodel_models import AttemptRecordRow

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_SIZE = 10_000
ADAPTIVE_THRESHOLD_MIN = 5.0
ADAPTIVE_THRESHOLD_MAX = 9.5
_DELETE_CHUNK = 500

_STORAGE_ERRORS = (SQLAlchemyError, CommandError, sqlite3.DatabaseError, OSError)


@dataclass(slots=True)
class _Entry:
    seq: int
    record: AttemptRecord


class HistoryStore:
    """Append-only log of attempts with similarity queries and aggregates.

    All mutations run under one lock. Queries copy the entry list under the
    lock and then work on that snapshot, so a concurrent reader may miss a
    write that is still in flight.

    With ``db_path=None`` the store never touches disk.
    """

    def __init__(  # noqa: PLR0913
        self,
        db_path: Path | None = None,
        *,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        half_life_days: float | None = DEFAULT_HALF_LIFE_DAYS,
        candidate_ceiling: int = DEFAULT_CANDIDATE_CEILING,
        busy_timeout_ms: int = 5000,
    ) -> None:
        if max_history_size <= 0:
            raise ValueError(f"max_history_size must be > 0, got {max_history_size!r}")
        self.db_path = db_path
        self.max_history_size = max_history_size
        self.half_life_days = half_life_days
        self.candidate_ceiling = candidate_ceiling
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = threading.Lock()
        self._entries: list[_Entry] = []
        self._next_seq = 0
        self._engine: Engine | None = None

    # -- lifecycle ---------------------------------------------------------

    def load(self) -> None:
        """Migrate the database file and reload every persisted record.

        An unreadable file is moved aside and replaced by a fresh database.
        If that fails as well the store keeps running in memory only.
        """

        with self._lock:
            self._entries = []
            self._next_seq = 0
            self._dispose_engine()
            if self.db_path is None:
                return

            try:
                rows = self._open_and_read(self.db_path)
            except _STORAGE_ERRORS as exc:
                corruption = HistoryStoreCorruption(f"History file {self.db_path} is unreadable: {exc}")
                logger.warning("%s; starting with empty history", corruption)
                self._dispose_engine()
                self._recover_fresh(self.db_path)
                return

            for row in rows:
                try:
                    record = _record_from_row(row)
                except (ValueError, KeyError, TypeError) as exc:
                    logger.warning("Skipping undecodable history row %s: %s", row.record_id, exc)
                    continue
                self._entries.append(_Entry(seq=self._next_seq, record=record))
                self._next_seq += 1

            dropped = self._select_prunable(self._entries)
            if dropped:
                try:
                    self._persist(add=None, delete_ids=[entry.record.id for entry in dropped])
                except _STORAGE_ERRORS as exc:
                    logger.warning("Could not prune reloaded history: %s", exc)
                else:
                    self._entries = _without(self._entries, dropped)
            logger.info("Loaded %d history record(s) from %s", len(self._entries), self.db_path)

    def close(self) -> None:
        """Release database connections."""

        with self._lock:
            self._dispose_engine()

    def clear(self) -> int:
        """Delete every record in memory and on disk; return how many were removed."""

        with self._lock:
            removed = len(self._entries)
            if self._engine is not None:
                with Session(self._engine) as session:
                    session.exec(delete(AttemptRecordRow))  # type: ignore[call-overload]
                    session.commit()
            self._entries = []
            return removed

    # -- writes ------------------------------------------------------------

    def record(self, record: AttemptRecord) -> None:
        """Validate, append, persist and prune as one atomic step.

        A persistence failure propagates and leaves the in-memory log unchanged.
        """

        record = _validated(record)
        with self._lock:
            if any(entry.record.id == record.id for entry in self._entries):
                raise InvalidAttemptRecord(f"Duplicate attempt record id: {record.id}")
            candidate = [*self._entries, _Entry(seq=self._next_seq, record=record)]
            dropped = self._select_prunable(candidate)
            if self._engine is not None:
                self._persist(add=record, delete_ids=[entry.record.id for entry in dropped])
            self._entries = _without(candidate, dropped)
            self._next_seq += 1
        if dropped:
            logger.debug("Pruned %d oldest history record(s)", len(dropped))

    # -- reads -------------------------------------------------------------

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def records(self) -> list[AttemptRecord]:
        """Snapshot of stored records in insertion order."""

        return [entry.record for entry in self._snapshot()]

    def find_similar(
        self,
        vector: FeatureVector,
        k: int = 10,
        *,
        success: bool | None = None,
        executor_id: str | None = None,
        now: datetime | None = None,
    ) -> list[Neighbor[AttemptRecord]]:
        """Cosine k-NN with temporal decay over the stored vectors."""

        candidates = [
            Candidate(vector=entry.record.feature_vector, payload=entry.record, timestamp=entry.record.timestamp)
            for entry in self._snapshot()
            if (success is None or entry.record.success is success)
            and (executor_id is None or entry.record.executor_id == executor_id)
        ]
        return find_nearest(
            vector,
            candidates,
            k=k,
            metric=SimilarityMetric.COSINE,
            half_life_days=self.half_life_days,
            candidate_ceiling=self.candidate_ceiling,
            now=now,
        )

    def performance_by_executor(self, executor_id: str) -> ExecutorHistoryPerformance:
        records = [entry.record for entry in self._snapshot() if entry.record.executor_id == executor_id]
        return _aggregate(executor_id, records)

    def performance_on_similar(
        self,
        vector: FeatureVector,
        executor_id: str,
        k: int = 20,
    ) -> ExecutorHistoryPerformance:
        """Aggregates for one executor restricted to its nearest past attempts."""

        neighbors = self.find_similar(vector, k, executor_id=executor_id)
        performance = _aggregate(executor_id, [neighbor.payload for neighbor in neighbors])
        if neighbors:
            performance.avg_similarity = statistics.fmean(neighbor.similarity for neighbor in neighbors)
        return performance

    def stats(self) -> HistoryStats:
        records = [entry.record for entry in self._snapshot()]
        if not records:
            return HistoryStats(
                total_records=0,
                unique_executors=0,
                success_rate=0.0,
                avg_quality=0.0,
                oldest_timestamp=None,
                newest_timestamp=None,
            )
        timestamps = [record.timestamp for record in records]
        return HistoryStats(
            total_records=len(records),
            unique_executors=len({record.executor_id for record in records}),
            success_rate=sum(1 for record in records if record.success) / len(records),
            avg_quality=statistics.fmean(record.quality_score for record in records),
            oldest_timestamp=min(timestamps),
            newest_timestamp=max(timestamps),
        )

    @staticmethod
    def adaptive_threshold(records: Sequence[AttemptRecord]) -> float:
        """Acceptance bar learned from similar attempts: ``mean - 0.5 * stddev``, clamped."""

        if not records:
            raise ValueError("adaptive_threshold requires at least one record")
        scores = [record.quality_score for record in records]
        threshold = statistics.fmean(scores) - 0.5 * statistics.pstdev(scores)
        return max(ADAPTIVE_THRESHOLD_MIN, min(ADAPTIVE_THRESHOLD_MAX, threshold))

    # -- internals ---------------------------------------------------------

    def _snapshot(self) -> list[_Entry]:
        with self._lock:
            return list(self._entries)

    def _select_prunable(self, entries: list[_Entry]) -> list[_Entry]:
        excess = len(entries) - self.max_history_size
        if excess <= 0:
            return []
        return sorted(entries, key=lambda entry: (entry.record.timestamp, entry.seq))[:excess]

    def _open_and_read(self, db_path: Path) -> list[AttemptRecordRow]:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(db_path)
        self._engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=self.busy_timeout_ms)
        with Session(self._engine) as session:
            return list(
                session.exec(
                    select(AttemptRecordRow).order_by(col(AttemptRecordRow.seq)),
                ).all(),
            )

    def _recover_fresh(self, db_path: Path) -> None:
        try:
            quarantined = _quarantine(db_path)
            if quarantined is not None:
                logger.warning("Moved unreadable history file to %s", quarantined)
            self._open_and_read(db_path)
        except _STORAGE_ERRORS as exc:
            logger.warning("Cannot create a fresh history database at %s (%s); history is in-memory only", db_path, exc)
            self._dispose_engine()

    def _persist(self, *, add: AttemptRecord | None, delete_ids: list[str]) -> None:
        if self._engine is None:
            return
        with Session(self._engine) as session:
            if add is not None:
                session.add(_row_from_record(add))
            for start in range(0, len(delete_ids), _DELETE_CHUNK):
                chunk = delete_ids[start : start + _DELETE_CHUNK]
                session.exec(
                    delete(AttemptRecordRow).where(col(AttemptRecordRow.record_id).in_(chunk)),  # type: ignore[call-overload]
                )
            session.commit()

    def _dispose_engine(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


def _validated(record: AttemptRecord) -> AttemptRecord:
    if not record.id:
        raise InvalidAttemptRecord("Attempt record id must be non-empty")
    if not record.task:
        raise InvalidAttemptRecord("Attempt record task must be non-empty")
    if not record.executor_id:
        raise InvalidAttemptRecord("Attempt record executor_id must be non-empty")
    if not is_valid_vector(record.feature_vector):
        raise InvalidAttemptRecord(
            f"Attempt record {record.id} has an invalid feature vector: {record.feature_vector!r}",
        )
    if not 0.0 <= record.quality_score <= MAX_QUALITY_SCORE:
        raise InvalidAttemptRecord(f"quality_score must be within [0, 10], got {record.quality_score!r}")
    if record.duration < 0:
        raise InvalidAttemptRecord(f"duration must be >= 0, got {record.duration!r}")
    return replace(
        record,
        feature_vector=tuple(float(value) for value in record.feature_vector),
        timestamp=ensure_utc(record.timestamp),
    )


def _without(entries: list[_Entry], dropped: list[_Entry]) -> list[_Entry]:
    dropped_seqs = {entry.seq for entry in dropped}
    return [entry for entry in entries if entry.seq not in dropped_seqs]


def _aggregate(executor_id: str, records: list[AttemptRecord]) -> ExecutorHistoryPerformance:
    if not records:
        return ExecutorHistoryPerformance(
            executor_id=executor_id,
            attempts=0,
            successes=0,
            success_rate=0.0,
            avg_quality=0.0,
            avg_duration=0.0,
        )
    successes = sum(1 for record in records if record.success)
    return ExecutorHistoryPerformance(
        executor_id=executor_id,
        attempts=len(records),
        successes=successes,
        success_rate=successes / len(records),
        avg_quality=statistics.fmean(record.quality_score for record in records),
        avg_duration=statistics.fmean(record.duration for record in records),
    )


def _quarantine(db_path: Path) -> Path | None:
    if not db_path.exists():
        return None
    stamp = utc_now().strftime("%Y%m%dT%H%M%S")
    target = db_path.with_name(f"{db_path.name}.corrupt-{stamp}")
    db_path.replace(target)
    for suffix in ("-wal", "-shm"):
        sidecar = db_path.with_name(db_path.name + suffix)
        if sidecar.exists():
            sidecar.replace(target.with_name(target.name + suffix))
    return target


def _row_from_record(record: AttemptRecord) -> AttemptRecordRow:
    return AttemptRecordRow(
        record_id=record.id,
        task=record.task,
        feature_vector_json=json.dumps(list(record.feature_vector)),
        embedding_version=EMBEDDING_SCHEMA_VERSION,
        task_analysis_json=json.dumps(record.task_analysis.to_dict(), ensure_ascii=False),
        executor_id=record.executor_id,
        success=record.success,
        quality_score=record.quality_score,
        duration_seconds=record.duration,
        recorded_at=record.timestamp,
        metadata_json=json.dumps(record.metadata, ensure_ascii=False, default=str),
    )


def _record_from_row(row: AttemptRecordRow) -> AttemptRecord:
    if row.embedding_version != EMBEDDING_SCHEMA_VERSION:
        raise ValueError(f"embedding version {row.embedding_version} is not {EMBEDDING_SCHEMA_VERSION}")
    vector = tuple(float(value) for value in json.loads(row.feature_vector_json))
    if not is_valid_vector(vector):
        raise ValueError("feature vector does not match the embedding layout")
    metadata: Any = json.loads(row.metadata_json or "{}")
    if not isinstance(metadata, dict):
        raise ValueError("metadata is not a JSON object")
    return AttemptRecord(
        id=row.record_id,
        task=row.task,
        feature_vector=vector,
        task_analysis=TaskAnalysis.from_dict(json.loads(row.task_analysis_json)),
        executor_id=row.executor_id,
        success=bool(row.success),
        quality_score=float(row.quality_score),
        duration=float(row.duration_seconds),
        timestamp=ensure_utc(row.recorded_at),
        metadata=metadata,
    )
