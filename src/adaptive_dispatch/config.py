"""Runtime configuration for selection, validation and attempt history."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from adaptive_dispatch.dispatch.errors import ConfigurationError
from adaptive_dispatch.dispatch.models import Complexity, ExecutorProfile, QualityLevel, Speed

IN_MEMORY_DB = ":memory:"


@dataclass(slots=True)
class HistorySettings:
    """Attempt history persistence and recall settings."""

    max_history_size: int = 10_000
    half_life_days: float = 30.0
    candidate_ceiling: int = 50_000
    busy_timeout_ms: int = 5000


@dataclass(slots=True)
class SelectionSettings:
    """Executor selection tunables."""

    min_history_for_knn: int = 5
    min_similarity_threshold: float = 0.15
    knn_k: int = 10
    confidence_cap: float = 0.95
    confidence_base: float = 0.5
    confidence_span: float = 0.45


@dataclass(slots=True)
class OrchestratorSettings:
    """Retry loop and acceptance settings."""

    max_attempts: int = 3
    quality_threshold: float = 7.0
    adaptive_threshold: bool = True
    enable_reframing: bool = True
    reframe_gap: float = 2.0
    max_execution_time: float = 300.0
    max_concurrent_executions: int = 4


@dataclass(slots=True)
class BackendSettings:
    """CLI agent used for analysis, evaluation and reframing."""

    command_template: str = ""
    model: str = ""
    agent: str = "cli"
    timeout_seconds: float = 120.0
    retry_delay_seconds: float = 1.0
    transient_exit_codes: tuple[int, ...] = (75,)
    executors_file: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path | None = Path(".adaptive_dispatch.db")
    history: HistorySettings = field(default_factory=HistorySettings)
    selection: SelectionSettings = field(default_factory=SelectionSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``ADAPTIVE_DISPATCH_*`` variables with local defaults.

        ``ADAPTIVE_DISPATCH_DB_PATH=:memory:`` keeps history in memory only.
        """

        raw_db_path = os.getenv("ADAPTIVE_DISPATCH_DB_PATH", ".adaptive_dispatch.db").strip()
        executors_file = os.getenv("ADAPTIVE_DISPATCH_EXECUTORS_FILE", "").strip()
        return cls(
            db_path=db_path or (None if raw_db_path in ("", IN_MEMORY_DB) else Path(raw_db_path)),
            history=HistorySettings(
                max_history_size=_env_int("ADAPTIVE_DISPATCH_MAX_HISTORY_SIZE", 10_000),
                half_life_days=_env_float("ADAPTIVE_DISPATCH_HALF_LIFE_DAYS", 30.0),
                candidate_ceiling=_env_int("ADAPTIVE_DISPATCH_KNN_CANDIDATE_CEILING", 50_000),
                busy_timeout_ms=_env_int("ADAPTIVE_DISPATCH_SQLITE_BUSY_TIMEOUT_MS", 5000),
            ),
            selection=SelectionSettings(
                min_history_for_knn=_env_int("ADAPTIVE_DISPATCH_MIN_HISTORY_FOR_KNN", 5),
                min_similarity_threshold=_env_float("ADAPTIVE_DISPATCH_MIN_SIMILARITY", 0.15),
                knn_k=_env_int("ADAPTIVE_DISPATCH_KNN_K", 10),
                confidence_cap=_env_float("ADAPTIVE_DISPATCH_KNN_CONFIDENCE_CAP", 0.95),
                confidence_base=_env_float("ADAPTIVE_DISPATCH_KNN_CONFIDENCE_BASE", 0.5),
                confidence_span=_env_float("ADAPTIVE_DISPATCH_KNN_CONFIDENCE_SPAN", 0.45),
            ),
            orchestrator=OrchestratorSettings(
                max_attempts=_env_int("ADAPTIVE_DISPATCH_MAX_ATTEMPTS", 3),
                quality_threshold=_env_float("ADAPTIVE_DISPATCH_QUALITY_THRESHOLD", 7.0),
                adaptive_threshold=_env_bool("ADAPTIVE_DISPATCH_ADAPTIVE_THRESHOLD", default=True),
                enable_reframing=_env_bool("ADAPTIVE_DISPATCH_ENABLE_REFRAMING", default=True),
                reframe_gap=_env_float("ADAPTIVE_DISPATCH_REFRAME_GAP", 2.0),
                max_execution_time=_env_float("ADAPTIVE_DISPATCH_MAX_EXECUTION_TIME", 300.0),
                max_concurrent_executions=_env_int("ADAPTIVE_DISPATCH_MAX_CONCURRENT_EXECUTIONS", 4),
            ),
            backend=BackendSettings(
                command_template=os.getenv("ADAPTIVE_DISPATCH_BACKEND_COMMAND", ""),
                model=os.getenv("ADAPTIVE_DISPATCH_BACKEND_MODEL", ""),
                agent=os.getenv("ADAPTIVE_DISPATCH_BACKEND_AGENT", "cli"),
                timeout_seconds=_env_float("ADAPTIVE_DISPATCH_BACKEND_TIMEOUT_SECONDS", 120.0),
                retry_delay_seconds=_env_float("ADAPTIVE_DISPATCH_BACKEND_RETRY_DELAY_SECONDS", 1.0),
                transient_exit_codes=_env_int_tuple("ADAPTIVE_DISPATCH_BACKEND_TRANSIENT_EXIT_CODES", (75,)),
                executors_file=Path(executors_file) if executors_file else None,
            ),
        )

    def validate(self) -> None:
        """Raise `ConfigurationError` on weights or thresholds out of range."""

        history, selection, orchestrator = self.history, self.selection, self.orchestrator
        checks: tuple[tuple[bool, str], ...] = (
            (history.max_history_size > 0, "ADAPTIVE_DISPATCH_MAX_HISTORY_SIZE must be > 0."),
            (history.half_life_days > 0, "ADAPTIVE_DISPATCH_HALF_LIFE_DAYS must be > 0."),
            (history.candidate_ceiling > 0, "ADAPTIVE_DISPATCH_KNN_CANDIDATE_CEILING must be > 0."),
            (selection.min_history_for_knn >= 1, "ADAPTIVE_DISPATCH_MIN_HISTORY_FOR_KNN must be >= 1."),
            (
                0.0 <= selection.min_similarity_threshold < 1.0,
                "ADAPTIVE_DISPATCH_MIN_SIMILARITY must be within [0, 1).",
            ),
            (selection.knn_k >= 1, "ADAPTIVE_DISPATCH_KNN_K must be >= 1."),
            (
                0.0 <= selection.confidence_base <= selection.confidence_cap <= 1.0,
                "k-NN confidence must satisfy 0 <= base <= cap <= 1.",
            ),
            (selection.confidence_span >= 0.0, "ADAPTIVE_DISPATCH_KNN_CONFIDENCE_SPAN must be >= 0."),
            (orchestrator.max_attempts >= 1, "ADAPTIVE_DISPATCH_MAX_ATTEMPTS must be >= 1."),
            (
                0.0 <= orchestrator.quality_threshold <= 10.0,
                "ADAPTIVE_DISPATCH_QUALITY_THRESHOLD must be within [0, 10].",
            ),
            (orchestrator.reframe_gap >= 0.0, "ADAPTIVE_DISPATCH_REFRAME_GAP must be >= 0."),
            (orchestrator.max_execution_time > 0, "ADAPTIVE_DISPATCH_MAX_EXECUTION_TIME must be > 0."),
            (
                orchestrator.max_concurrent_executions >= 1,
                "ADAPTIVE_DISPATCH_MAX_CONCURRENT_EXECUTIONS must be >= 1.",
            ),
            (self.backend.timeout_seconds > 0, "ADAPTIVE_DISPATCH_BACKEND_TIMEOUT_SECONDS must be > 0."),
        )
        for ok, message in checks:
            if not ok:
                raise ConfigurationError(message)


@dataclass(slots=True)
class ExecutorSpec:
    """Executor declared in the executors JSON file."""

    profile: ExecutorProfile
    command_template: str
    model: str = ""
    timeout_seconds: float = 300.0


def load_executor_specs(path: Path) -> list[ExecutorSpec]:
    """Read executor declarations from a JSON file.

    Accepts either a list of executor objects or ``{"executors": [...]}``.
    """

    try:
        raw = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise ConfigurationError(f"Cannot read executors file {path}: {error}") from error

    items = raw.get("executors") if isinstance(raw, dict) else raw
    if not isinstance(items, list) or not items:
        raise ConfigurationError(f"Executors file {path} declares no executors.")

    specs: list[ExecutorSpec] = []
    seen: set[str] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ConfigurationError(f"Executor #{index} in {path} is not an object.")
        spec = _executor_spec(item, index=index)
        if spec.profile.id in seen:
            raise ConfigurationError(f"Duplicate executor id in {path}: {spec.profile.id}")
        seen.add(spec.profile.id)
        specs.append(spec)
    return specs


def _executor_spec(item: dict[str, object], *, index: int) -> ExecutorSpec:
    executor_id = str(item.get("id", "")).strip()
    command_template = str(item.get("command_template", "")).strip()
    if not executor_id:
        raise ConfigurationError(f"Executor #{index} has no id.")
    if not command_template:
        raise ConfigurationError(f"Executor {executor_id!r} has no command_template.")
    try:
        profile = ExecutorProfile(
            id=executor_id,
            type=str(item.get("type", "unknown")),
            complexity_level=Complexity(str(item.get("complexity_level", Complexity.MEDIUM.value))),
            speed=Speed(str(item.get("speed", Speed.MEDIUM.value))),
            quality_level=QualityLevel(str(item.get("quality_level", QualityLevel.STANDARD.value))),
            strengths=_str_tuple(item.get("strengths")),
            best_for=_str_tuple(item.get("best_for")),
        )
        timeout_seconds = float(item.get("timeout_seconds", 300.0))  # type: ignore[arg-type]
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"Executor {executor_id!r} is invalid: {error}") from error
    return ExecutorSpec(
        profile=profile,
        command_template=command_template,
        model=str(item.get("model", "")),
        timeout_seconds=timeout_seconds,
    )


def _str_tuple(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(item) for item in value)
    raise TypeError(f"expected a list of strings, got {type(value).__name__}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from error


def _env_int_tuple(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return tuple(int(part.strip()) for part in raw.split(",") if part.strip())
    except ValueError as error:
        raise ConfigurationError(f"{name} must be a comma-separated list of integers") from error


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
