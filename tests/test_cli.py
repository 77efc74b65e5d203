from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from conftest import ECHO_AGENT_COMMAND_TEMPLATE, make_record

from adaptive_dispatch.dispatch.history import HistoryStore
from adaptive_dispatch.main import adaptive_dispatch

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Run, Recommend, History, Performance"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ADAPTIVE_DISPATCH_BACKEND_COMMAND", "ADAPTIVE_DISPATCH_EXECUTORS_FILE", "ADAPTIVE_DISPATCH_DB_PATH"):
        monkeypatch.delenv(name, raising=False)


def _seed(db_path: Path, *records: tuple[str, float, bool]) -> None:
    store = HistoryStore(db_path)
    store.load()
    for executor_id, quality, success in records:
        store.record(make_record(executor_id=executor_id, quality_score=quality, success=success))
    store.close()


def _executors_file(tmp_path: Path) -> Path:
    path = tmp_path / "executors.json"
    path.write_text(
        json.dumps([{"id": "echo", "type": "react", "command_template": ECHO_AGENT_COMMAND_TEMPLATE}]),
        "utf-8",
    )
    return path


def test_history_stats_and_clear(tmp_path: Path) -> None:
    db_path = tmp_path / "history.db"
    _seed(db_path, ("react", 8.0, True), ("rag", 4.0, False))
    runner = CliRunner()

    stats = runner.invoke(adaptive_dispatch, ["history", "stats", "--db-path", str(db_path)])
    assert stats.exit_code == 0, stats.output
    assert "Records: 2" in stats.output
    assert "Executors: 2" in stats.output
    assert "Success rate: 50.0%" in stats.output

    cleared = runner.invoke(adaptive_dispatch, ["history", "clear", "--db-path", str(db_path), "--yes"])
    assert cleared.exit_code == 0, cleared.output
    assert "History cleared: removed=2" in cleared.output

    empty = runner.invoke(adaptive_dispatch, ["history", "stats", "--db-path", str(db_path)])
    assert "Records: 0" in empty.output


def test_performance_lists_executors(tmp_path: Path) -> None:
    db_path = tmp_path / "history.db"
    runner = CliRunner()

    empty = runner.invoke(adaptive_dispatch, ["performance", "--db-path", str(db_path)])
    assert empty.exit_code == 0, empty.output
    assert "No attempts recorded." in empty.output

    _seed(db_path, ("react", 8.0, True), ("react", 6.0, False), ("rag", 9.0, True))
    result = runner.invoke(adaptive_dispatch, ["performance", "--db-path", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "rag 1 1 1.00 9.00" in result.output
    assert "react 2 1 0.50 7.00" in result.output

    single = runner.invoke(adaptive_dispatch, ["performance", "--db-path", str(db_path), "--executor", "rag"])
    assert "react" not in single.output


def test_run_requires_backend_configuration(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        adaptive_dispatch,
        ["run", "summarize", "--db-path", str(tmp_path / "history.db")],
    )

    assert result.exit_code == 1
    assert "ADAPTIVE_DISPATCH_BACKEND_COMMAND" in result.output


def test_run_and_recommend_with_echo_agents(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADAPTIVE_DISPATCH_BACKEND_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)
    db_path = tmp_path / "history.db"
    executors_file = _executors_file(tmp_path)
    runner = CliRunner()

    recommend = runner.invoke(
        adaptive_dispatch,
        ["recommend", "say hello", "--db-path", str(db_path), "--executors-file", str(executors_file), "--show-features"],
    )
    assert recommend.exit_code == 0, recommend.output
    assert "Recommended: echo method=rule-based confidence=1.00" in recommend.output
    assert "Similar past attempts by echo: none" in recommend.output
    assert "complexity=" in recommend.output

    run = runner.invoke(
        adaptive_dispatch,
        ["run", "say hello", "--db-path", str(db_path), "--executors-file", str(executors_file)],
    )
    assert run.exit_code == 0, run.output
    assert "Result: accepted executor=echo quality=8.00 attempts=1" in run.output
    assert "say hello" in run.output

    stats = runner.invoke(adaptive_dispatch, ["history", "stats", "--db-path", str(db_path)])
    assert "Records: 1" in stats.output


def test_recommend_uses_recorded_performance(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADAPTIVE_DISPATCH_BACKEND_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)
    db_path = tmp_path / "history.db"
    executors_file = tmp_path / "executors.json"
    executors_file.write_text(
        json.dumps(
            [
                {"id": "first", "type": "react", "command_template": ECHO_AGENT_COMMAND_TEMPLATE},
                {"id": "second", "type": "react", "command_template": ECHO_AGENT_COMMAND_TEMPLATE},
            ],
        ),
        "utf-8",
    )
    _seed(db_path, ("first", 2.0, False), ("second", 9.0, True))

    result = CliRunner().invoke(
        adaptive_dispatch,
        ["recommend", "say hello", "--db-path", str(db_path), "--executors-file", str(executors_file)],
    )

    assert result.exit_code == 0, result.output
    assert "Recommended: second method=rule-based confidence=0.50" in result.output
    assert "Alternative: first score=20.60 (rule-based)" in result.output
    assert "Similar past attempts by second: 1 success_rate=1.00 avg_quality=9.00" in result.output
