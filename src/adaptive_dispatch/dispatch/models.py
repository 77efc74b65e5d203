"""Domain models for task analysis, executor profiles and attempt history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from adaptive_dispatch.dispatch.errors import RecoverableValidationError

FeatureVector = tuple[float, ...]

CORRECTNESS_PASS_SCORE = 6.0
COMPLETENESS_PASS_SCORE = 6.0
MAX_QUALITY_SCORE = 10.0


class Complexity(str, Enum):
    """Task complexity, also used as the executor's preferred complexity."""

    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    EXTREME = "extreme"


class Domain(str, Enum):
    """Task domain; order defines the one-hot layout of the embedding."""

    GENERAL = "general"
    TECHNICAL = "technical"
    CREATIVE = "creative"
    ANALYTICAL = "analytical"
    CONVERSATIONAL = "conversational"
    MONITORING = "monitoring"


class QualityLevel(str, Enum):
    """Declared output quality tier of an executor."""

    STANDARD = "standard"
    HIGH = "high"
    EXTREME = "extreme"


class Speed(str, Enum):
    """Declared executor speed."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class SelectionMethod(str, Enum):
    """How an executor was chosen."""

    RULE_BASED = "rule-based"
    KNN = "knn"


class RunState(str, Enum):
    """Orchestrator state machine states."""

    SELECT = "select"
    EXECUTE = "execute"
    VALIDATE = "validate"
    ACCEPT = "accept"
    REFRAME_AND_RETRY = "reframe_and_retry"
    RETRY_DIFFERENT_EXECUTOR = "retry_different_executor"
    GIVE_UP = "give_up"


@dataclass(slots=True, frozen=True)
class TaskAnalysis:
    """Structured description of a task produced by an analyzer.

    ``complexity`` and ``domain`` may be ``None`` only to represent an
    incomplete analysis; such analyses are rejected at embedding time.
    """

    complexity: Complexity | None
    domain: Domain | None
    requires_tools: bool = False
    requires_knowledge: bool = False
    requires_reasoning: bool = False
    requires_iteration: bool = False
    required_quality: float = 0.33
    estimated_steps: int = 10
    key_requirement_count: int = 0

    def to_dict(self) -> dict[str, object]:
        """Serialize for persistence and run metadata."""

        return {
            "complexity": self.complexity.value if self.complexity is not None else None,
            "domain": self.domain.value if self.domain is not None else None,
            "requires_tools": self.requires_tools,
            "requires_knowledge": self.requires_knowledge,
            "requires_reasoning": self.requires_reasoning,
            "requires_iteration": self.requires_iteration,
            "required_quality": self.required_quality,
            "estimated_steps": self.estimated_steps,
            "key_requirement_count": self.key_requirement_count,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskAnalysis:
        """Rebuild an analysis serialized by `to_dict`."""

        complexity = raw.get("complexity")
        domain = raw.get("domain")
        return cls(
            complexity=Complexity(complexity) if complexity is not None else None,
            domain=Domain(domain) if domain is not None else None,
            requires_tools=bool(raw.get("requires_tools", False)),
            requires_knowledge=bool(raw.get("requires_knowledge", False)),
            requires_reasoning=bool(raw.get("requires_reasoning", False)),
            requires_iteration=bool(raw.get("requires_iteration", False)),
            required_quality=float(raw.get("required_quality", 0.33)),
            estimated_steps=int(raw.get("estimated_steps", 10)),
            key_requirement_count=int(raw.get("key_requirement_count", 0)),
        )


@dataclass(slots=True)
class PerformanceStats:
    """Mutable per-executor counters owned by the executor registry."""

    attempts: int = 0
    successes: int = 0
    failures: int = 0
    average_quality: float = 0.0
    total_duration: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.successes / self.attempts

    @property
    def average_duration(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.total_duration / self.attempts

    def record(self, *, quality_score: float, duration: float, success: bool) -> None:
        """Fold one attempt into the counters (caller holds the registry lock)."""

        self.attempts += 1
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.average_quality += (quality_score - self.average_quality) / self.attempts
        self.total_duration += max(0.0, duration)

    @classmethod
    def from_history(cls, performance: ExecutorHistoryPerformance) -> PerformanceStats:
        """Counters rebuilt from the persisted attempts of one executor."""

        return cls(
            attempts=performance.attempts,
            successes=performance.successes,
            failures=performance.attempts - performance.successes,
            average_quality=performance.avg_quality,
            total_duration=performance.avg_duration * performance.attempts,
        )

    def copy(self) -> PerformanceStats:
        return PerformanceStats(
            attempts=self.attempts,
            successes=self.successes,
            failures=self.failures,
            average_quality=self.average_quality,
            total_duration=self.total_duration,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "average_quality": round(self.average_quality, 3),
            "total_duration": round(self.total_duration, 3),
            "success_rate": round(self.success_rate, 3),
            "average_duration": round(self.average_duration, 3),
        }


@dataclass(slots=True)
class ExecutorProfile:
    """Declared characteristics of a registered executor."""

    id: str
    type: str = "unknown"
    complexity_level: Complexity = Complexity.MEDIUM
    speed: Speed = Speed.MEDIUM
    quality_level: QualityLevel = QualityLevel.STANDARD
    strengths: tuple[str, ...] = ()
    best_for: tuple[str, ...] = ()
    stats: PerformanceStats = field(default_factory=PerformanceStats)

    def tags(self) -> tuple[str, ...]:
        """Lower-cased free-text capability tags."""

        return tuple(tag.lower() for tag in (*self.strengths, *self.best_for))


@dataclass(slots=True, frozen=True)
class AttemptRecord:
    """Append-only history entry for one attempt."""

    id: str
    task: str
    feature_vector: FeatureVector
    task_analysis: TaskAnalysis
    executor_id: str
    success: bool
    quality_score: float
    duration: float
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExecutionResult:
    """What an executor produced for one task text."""

    answer: str
    success: bool
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ValidationResult:
    """Per-criterion quality judgment of one result."""

    correctness: float
    completeness: float
    clarity: float
    relevance: float
    issues: list[str] = field(default_factory=list)
    strengths: list[str] = field(default_factory=list)
    parse_error: RecoverableValidationError | None = None

    @property
    def quality_score(self) -> float:
        return (self.correctness + self.completeness + self.clarity + self.relevance) / 4.0

    @property
    def is_correct(self) -> bool:
        return self.correctness >= CORRECTNESS_PASS_SCORE

    @property
    def is_complete(self) -> bool:
        return self.completeness >= COMPLETENESS_PASS_SCORE

    @classmethod
    def failed(
        cls,
        *,
        issues: list[str],
        parse_error: RecoverableValidationError | None = None,
    ) -> ValidationResult:
        """Zero-score result used for failed executions and unusable replies."""

        return cls(
            correctness=0.0,
            completeness=0.0,
            clarity=0.0,
            relevance=0.0,
            issues=issues,
            strengths=[],
            parse_error=parse_error,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "correctness": self.correctness,
            "completeness": self.completeness,
            "clarity": self.clarity,
            "relevance": self.relevance,
            "quality_score": round(self.quality_score, 3),
            "is_correct": self.is_correct,
            "is_complete": self.is_complete,
            "issues": list(self.issues),
            "strengths": list(self.strengths),
            "parse_error": str(self.parse_error) if self.parse_error is not None else None,
        }


@dataclass(slots=True)
class SelectionAlternative:
    """Runner-up executor reported for transparency."""

    executor_id: str
    score: float
    method: SelectionMethod


@dataclass(slots=True)
class SelectionRecommendation:
    """Selector output."""

    executor_id: str
    confidence: float
    method: SelectionMethod
    reasoning: str
    alternatives: list[SelectionAlternative] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "executor_id": self.executor_id,
            "confidence": round(self.confidence, 3),
            "method": self.method.value,
            "reasoning": self.reasoning,
            "alternatives": [
                {
                    "executor_id": item.executor_id,
                    "score": round(item.score, 3),
                    "method": item.method.value,
                }
                for item in self.alternatives
            ],
        }


@dataclass(slots=True)
class AttemptOutcome:
    """Summary of one attempt within a run."""

    attempt_no: int
    record_id: str
    executor_id: str
    task_text: str
    answer: str
    execution_success: bool
    quality_score: float
    threshold: float
    threshold_source: str
    decision: RunState
    duration: float
    validation: ValidationResult
    selection: SelectionRecommendation
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "attempt_no": self.attempt_no,
            "record_id": self.record_id,
            "executor_id": self.executor_id,
            "task_text": self.task_text,
            "execution_success": self.execution_success,
            "quality_score": round(self.quality_score, 3),
            "threshold": round(self.threshold, 3),
            "threshold_source": self.threshold_source,
            "decision": self.decision.value,
            "duration": round(self.duration, 3),
            "validation": self.validation.to_dict(),
            "selection": self.selection.to_dict(),
            "error": self.error,
        }


@dataclass(slots=True)
class RunOutcome:
    """Result returned by `Orchestrator.run`."""

    success: bool
    answer: str
    quality_score: float
    executor_used: str
    attempts: list[AttemptOutcome]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HistoryStats:
    """Aggregate view over the attempt history."""

    total_records: int
    unique_executors: int
    success_rate: float
    avg_quality: float
    oldest_timestamp: datetime | None
    newest_timestamp: datetime | None


@dataclass(slots=True)
class ExecutorHistoryPerformance:
    """Historical aggregates for one executor."""

    executor_id: str
    attempts: int
    successes: int
    success_rate: float
    avg_quality: float
    avg_duration: float
    avg_similarity: float | None = None
