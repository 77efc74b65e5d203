from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from conftest import NOW, make_analysis, make_record, minutes_ago

from adaptive_dispatch.dispatch.embedder import embed_task
from adaptive_dispatch.dispatch.errors import InvalidAttemptRecord
from adaptive_dispatch.dispatch.history import HistoryStore
from adaptive_dispatch.dispatch.models import Domain

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Attempt History"),
]


def _store(tmp_path: Path, **kwargs: object) -> HistoryStore:
    store = HistoryStore(tmp_path / "history.db", **kwargs)  # type: ignore[arg-type]
    store.load()
    return store


def test_record_persists_and_reloads(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = make_record(executor_id="rag", quality_score=7.5, timestamp=minutes_ago(5))
    store.record(record)
    store.close()

    reloaded = _store(tmp_path)

    assert reloaded.size == 1
    restored = reloaded.records()[0]
    assert restored.id == record.id
    assert restored.feature_vector == record.feature_vector
    assert restored.task_analysis == record.task_analysis
    assert restored.timestamp == record.timestamp
    assert restored.metadata == {"source": "test"}
    reloaded.close()


def test_pruning_keeps_newest_records(tmp_path: Path) -> None:
    store = _store(tmp_path, max_history_size=100)
    records = [make_record(timestamp=NOW + timedelta(seconds=index)) for index in range(105)]

    for record in records:
        store.record(record)

    assert store.size == 100
    kept_ids = {record.id for record in store.records()}
    assert kept_ids == {record.id for record in records[5:]}
    store.close()

    reloaded = _store(tmp_path, max_history_size=100)
    assert {record.id for record in reloaded.records()} == kept_ids
    reloaded.close()


def test_pruning_uses_timestamp_not_insertion_order() -> None:
    store = HistoryStore(max_history_size=2)
    newest = make_record(timestamp=minutes_ago(1))
    oldest = make_record(timestamp=minutes_ago(30))
    middle = make_record(timestamp=minutes_ago(10))

    for record in (newest, oldest, middle):
        store.record(record)

    assert {record.id for record in store.records()} == {newest.id, middle.id}


@pytest.mark.parametrize(
    "change",
    [
        {"id": ""},
        {"task": ""},
        {"executor_id": ""},
        {"quality_score": 10.5},
        {"quality_score": -0.1},
        {"duration": -1.0},
        {"feature_vector": (0.5,) * 13},
    ],
)
def test_record_rejects_invalid_records(change: dict[str, object]) -> None:
    store = HistoryStore()

    with pytest.raises(InvalidAttemptRecord):
        store.record(replace(make_record(), **change))  # type: ignore[arg-type]
    assert store.size == 0


def test_record_rejects_duplicate_ids() -> None:
    store = HistoryStore()
    record = make_record()
    store.record(record)

    with pytest.raises(InvalidAttemptRecord, match="Duplicate"):
        store.record(record)


def test_corrupt_file_is_quarantined(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    db_path = tmp_path / "history.db"
    db_path.write_bytes(b"this is not a sqlite database" * 100)

    with caplog.at_level(logging.WARNING):
        store = _store(tmp_path)

    assert store.size == 0
    assert list(tmp_path.glob("history.db.corrupt-*"))
    assert "unreadable" in caplog.text

    store.record(make_record())
    store.close()
    assert _store(tmp_path).size == 1


def test_undecodable_rows_are_skipped(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    store = _store(tmp_path)
    good = make_record()
    bad = make_record()
    store.record(good)
    store.record(bad)
    store.close()

    with sqlite3.connect(tmp_path / "history.db") as connection:
        connection.execute(
            "UPDATE attempt_records SET feature_vector_json = ? WHERE record_id = ?",
            ("[0.5, 0.5]", bad.id),
        )

    with caplog.at_level(logging.WARNING):
        reloaded = _store(tmp_path)

    assert [record.id for record in reloaded.records()] == [good.id]
    assert "Skipping undecodable history row" in caplog.text
    reloaded.close()


def test_in_memory_store_does_not_touch_disk(tmp_path: Path) -> None:
    store = HistoryStore(None)
    store.load()
    store.record(make_record())

    assert store.size == 1
    assert list(tmp_path.iterdir()) == []


def test_find_similar_returns_closest_records_with_filters() -> None:
    store = HistoryStore()
    analytical = make_analysis(domain=Domain.ANALYTICAL)
    creative = make_analysis(domain=Domain.CREATIVE, requires_iteration=True)
    near = make_record(analysis=analytical, executor_id="react", timestamp=NOW)
    far = make_record(analysis=creative, executor_id="reflection", timestamp=NOW)
    failed = make_record(analysis=analytical, executor_id="rag", success=False, timestamp=NOW)
    for record in (near, far, failed):
        store.record(record)

    result = store.find_similar(embed_task(analytical), k=2, now=NOW)
    assert {neighbor.payload.id for neighbor in result} == {near.id, failed.id}
    assert result[0].score >= result[1].score

    only_success = store.find_similar(embed_task(analytical), k=5, success=True, now=NOW)
    assert failed.id not in {neighbor.payload.id for neighbor in only_success}

    only_reflection = store.find_similar(embed_task(analytical), k=5, executor_id="reflection", now=NOW)
    assert [neighbor.payload.id for neighbor in only_reflection] == [far.id]


def test_performance_by_executor_and_stats() -> None:
    store = HistoryStore()
    store.record(make_record(executor_id="react", quality_score=8.0, duration=2.0, timestamp=minutes_ago(3)))
    store.record(
        make_record(executor_id="react", quality_score=4.0, success=False, duration=4.0, timestamp=minutes_ago(2)),
    )
    store.record(make_record(executor_id="rag", quality_score=9.0, duration=1.0, timestamp=minutes_ago(1)))

    react = store.performance_by_executor("react")
    assert react.attempts == 2
    assert react.successes == 1
    assert react.success_rate == pytest.approx(0.5)
    assert react.avg_quality == pytest.approx(6.0)
    assert react.avg_duration == pytest.approx(3.0)
    assert store.performance_by_executor("missing").attempts == 0

    stats = store.stats()
    assert stats.total_records == 3
    assert stats.unique_executors == 2
    assert stats.success_rate == pytest.approx(2 / 3)
    assert stats.avg_quality == pytest.approx(7.0)
    assert stats.oldest_timestamp == minutes_ago(3)
    assert stats.newest_timestamp == minutes_ago(1)


def test_performance_on_similar_reports_similarity() -> None:
    store = HistoryStore()
    record = make_record(executor_id="react", quality_score=6.0)
    store.record(record)

    performance = store.performance_on_similar(record.feature_vector, "react")

    assert performance.attempts == 1
    assert performance.avg_similarity == pytest.approx(1.0)


def test_empty_stats() -> None:
    stats = HistoryStore().stats()

    assert stats.total_records == 0
    assert stats.oldest_timestamp is None


def test_adaptive_threshold_is_clamped() -> None:
    assert HistoryStore.adaptive_threshold([make_record(quality_score=8.0)] * 4) == pytest.approx(8.0)
    spread = [make_record(quality_score=6.0), make_record(quality_score=10.0)]
    assert HistoryStore.adaptive_threshold(spread) == pytest.approx(7.0)
    assert HistoryStore.adaptive_threshold([make_record(quality_score=2.0)]) == 5.0
    assert HistoryStore.adaptive_threshold([make_record(quality_score=10.0)]) == 9.5
    with pytest.raises(ValueError):
        HistoryStore.adaptive_threshold([])


def test_clear_removes_everything(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record(make_record())
    store.record(make_record())

    assert store.clear() == 2
    assert store.size == 0
    store.close()
    assert _store(tmp_path).size == 0


def test_concurrent_writers_respect_capacity() -> None:
    store = HistoryStore(max_history_size=50)

    def write_batch(offset: int) -> None:
        for index in range(40):
            store.record(make_record(timestamp=NOW + timedelta(seconds=offset * 100 + index)))

    threads = [threading.Thread(target=write_batch, args=(offset,)) for offset in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.size == 50
    timestamps = sorted(record.timestamp for record in store.records())
    assert timestamps[0] == NOW + timedelta(seconds=230)
