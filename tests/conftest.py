"""Shared test fixtures."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from adaptive_dispatch.dispatch.embedder import embed_task
from adaptive_dispatch.dispatch.models import (
    AttemptRecord,
    Complexity,
    Domain,
    ExecutionResult,
    ExecutorProfile,
    QualityLevel,
    TaskAnalysis,
)
from adaptive_dispatch.dispatch.registry import ExecutorRegistry
from adaptive_dispatch.storage.common import utc_now

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m adaptive_dispatch.dispatch.backend.echo_agent --prompt-file {{prompt_file}}"
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class FakeExecutor:
    """Executor returning canned answers; records every task it receives."""

    def __init__(
        self,
        answer: str = "answer",
        *,
        success: bool = True,
        error: Exception | None = None,
        delay: Callable[[], None] | None = None,
    ) -> None:
        self.answer = answer
        self.success = success
        self.error = error
        self.delay = delay
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def execute(self, task: str) -> ExecutionResult:
        with self._lock:
            self.calls.append(task)
        if self.delay is not None:
            self.delay()
        if self.error is not None:
            raise self.error
        return ExecutionResult(
            answer=self.answer,
            success=self.success,
            error=None if self.success else "boom",
        )


class FakeBackend:
    """Generation backend scoring answers from a lookup table."""

    def __init__(
        self,
        scores: Mapping[str, float] | None = None,
        *,
        default_score: float = 8.0,
        reframed: str | None = "clearer task",
    ) -> None:
        self.scores = dict(scores or {})
        self.default_score = default_score
        self.reframed = reframed
        self.evaluations: list[tuple[str, str]] = []
        self.reframes: list[tuple[str, list[str]]] = []

    def evaluate(self, task: str, answer: str) -> Mapping[str, object]:
        self.evaluations.append((task, answer))
        score = self.scores.get(answer, self.default_score)
        return {
            "correctness": score,
            "completeness": score,
            "clarity": score,
            "relevance": score,
            "issues": [] if score >= 7 else ["too vague"],
            "strengths": ["on topic"],
        }

    def reframe(self, task: str, issues: Sequence[str]) -> str:
        self.reframes.append((task, list(issues)))
        if self.reframed is None:
            return ""
        return f"{self.reframed} #{len(self.reframes)}"


class FakeAnalyzer:
    """Analyzer returning a fixed analysis and counting calls."""

    def __init__(self, analysis: TaskAnalysis | None = None) -> None:
        self.analysis = analysis or TaskAnalysis(complexity=Complexity.MEDIUM, domain=Domain.ANALYTICAL)
        self.calls: list[str] = []

    def analyze(self, task: str) -> TaskAnalysis:
        self.calls.append(task)
        return self.analysis


def make_analysis(**overrides: object) -> TaskAnalysis:
    values: dict[str, object] = {
        "complexity": Complexity.MEDIUM,
        "domain": Domain.ANALYTICAL,
    }
    values.update(overrides)
    return TaskAnalysis(**values)  # type: ignore[arg-type]


def make_record(  # noqa: PLR0913
    *,
    executor_id: str = "react",
    analysis: TaskAnalysis | None = None,
    quality_score: float = 8.0,
    success: bool = True,
    timestamp: datetime | None = None,
    task: str = "calculate 2 + 2",
    duration: float = 1.0,
    record_id: str | None = None,
) -> AttemptRecord:
    analysis = analysis or make_analysis()
    return AttemptRecord(
        id=record_id or uuid4().hex,
        task=task,
        feature_vector=embed_task(analysis),
        task_analysis=analysis,
        executor_id=executor_id,
        success=success,
        quality_score=quality_score,
        duration=duration,
        timestamp=timestamp or utc_now(),
        metadata={"source": "test"},
    )


def minutes_ago(minutes: int) -> datetime:
    return NOW - timedelta(minutes=minutes)


@pytest.fixture()
def scenario_profiles() -> list[ExecutorProfile]:
    return [
        ExecutorProfile(
            id="react",
            type="react",
            complexity_level=Complexity.MEDIUM,
            quality_level=QualityLevel.STANDARD,
        ),
        ExecutorProfile(
            id="reflection",
            type="reflection",
            complexity_level=Complexity.MEDIUM,
            quality_level=QualityLevel.HIGH,
        ),
        ExecutorProfile(
            id="rag",
            type="rag",
            complexity_level=Complexity.SIMPLE,
            quality_level=QualityLevel.HIGH,
        ),
    ]


def make_registry(
    profiles: Sequence[ExecutorProfile],
    executors: Mapping[str, FakeExecutor] | None = None,
) -> ExecutorRegistry:
    registry = ExecutorRegistry()
    for profile in profiles:
        executor = (executors or {}).get(profile.id) or FakeExecutor(answer=f"{profile.id} answer")
        registry.register(profile.id, executor, profile)
    return registry
