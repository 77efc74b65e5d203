"""Controllers for dispatch CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from adaptive_dispatch.config import Settings, load_executor_specs
from adaptive_dispatch.dispatch.analyzer import LlmTaskAnalyzer
from adaptive_dispatch.dispatch.backend import CliAgentExecutor, CliCompletionClient, LlmGenerationBackend
from adaptive_dispatch.dispatch.embedder import FEATURE_NAMES, embed_task
from adaptive_dispatch.dispatch.errors import ConfigurationError
from adaptive_dispatch.dispatch.history import HistoryStore
from adaptive_dispatch.dispatch.models import PerformanceStats, RunOutcome, SelectionRecommendation
from adaptive_dispatch.dispatch.orchestrator import Orchestrator
from adaptive_dispatch.dispatch.registry import ExecutorRegistry


@dataclass(slots=True)
class RunCommand:
    """CLI input for one dispatched task."""

    db_path: Path | None
    task: str
    executors_file: Path | None
    output_format: str = "text"


@dataclass(slots=True)
class RecommendCommand:
    """CLI input for a dry-run selection."""

    db_path: Path | None
    task: str
    executors_file: Path | None
    show_features: bool = False


@dataclass(slots=True)
class HistoryCommand:
    """CLI input for history inspection and maintenance."""

    db_path: Path | None


@dataclass(slots=True)
class PerformanceCommand:
    """CLI input for per-executor history aggregates."""

    db_path: Path | None
    executor_id: str | None = None


class DispatchCliController:
    """Wires settings, history, registry and backend for each CLI command."""

    def run(self, command: RunCommand) -> list[str]:
        settings = _settings(command.db_path, command.executors_file)
        with _history(settings) as history:
            orchestrator = _build_orchestrator(settings, history)
            outcome = orchestrator.run(command.task)

        if command.output_format == "json":
            return [json.dumps(_outcome_payload(outcome), ensure_ascii=False, indent=2, default=str)]
        return _render_outcome(outcome)

    def recommend(self, command: RecommendCommand) -> list[str]:
        settings = _settings(command.db_path, command.executors_file)
        with _history(settings) as history:
            orchestrator = _build_orchestrator(settings, history)
            analysis = orchestrator.analyzer.analyze(command.task)
            vector = embed_task(analysis)
            recommendation = orchestrator.selector.select(
                analysis,
                vector,
                orchestrator.history,
                orchestrator.registry,
            )
            similar = history.performance_on_similar(vector, recommendation.executor_id)

        lines = _render_recommendation(recommendation)
        lines.append(
            f"Similar past attempts by {similar.executor_id}: none"
            if similar.attempts == 0
            else f"Similar past attempts by {similar.executor_id}: {similar.attempts} "
            f"success_rate={similar.success_rate:.2f} avg_quality={similar.avg_quality:.2f} "
            f"avg_similarity={similar.avg_similarity or 0.0:.2f}",
        )
        if command.show_features:
            lines.append("Features:")
            lines.extend(f"  {name}={value:.2f}" for name, value in zip(FEATURE_NAMES, vector, strict=True))
        return lines

    def history_stats(self, command: HistoryCommand) -> list[str]:
        settings = _settings(command.db_path, None)
        with _history(settings) as history:
            stats = history.stats()
        return [
            f"Records: {stats.total_records} (max {settings.history.max_history_size})",
            f"Executors: {stats.unique_executors}",
            f"Success rate: {stats.success_rate:.1%}",
            f"Average quality: {stats.avg_quality:.2f}",
            f"Oldest: {_format_ts(stats.oldest_timestamp)}",
            f"Newest: {_format_ts(stats.newest_timestamp)}",
        ]

    def history_clear(self, command: HistoryCommand) -> list[str]:
        settings = _settings(command.db_path, None)
        with _history(settings) as history:
            removed = history.clear()
        return [f"History cleared: removed={removed}"]

    def performance(self, command: PerformanceCommand) -> list[str]:
        settings = _settings(command.db_path, None)
        with _history(settings) as history:
            executor_ids = (
                [command.executor_id]
                if command.executor_id
                else sorted({record.executor_id for record in history.records()})
            )
            rows = [history.performance_by_executor(executor_id) for executor_id in executor_ids]

        if not rows:
            return ["No attempts recorded."]
        lines = ["executor attempts successes success_rate avg_quality avg_duration"]
        lines.extend(
            f"{row.executor_id} {row.attempts} {row.successes} {row.success_rate:.2f} "
            f"{row.avg_quality:.2f} {row.avg_duration:.2f}s"
            for row in rows
        )
        return lines


def _settings(db_path: Path | None, executors_file: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if executors_file is not None:
        settings.backend.executors_file = executors_file
    settings.validate()
    return settings


@contextmanager
def _history(settings: Settings) -> Iterator[HistoryStore]:
    history = HistoryStore(
        settings.db_path,
        max_history_size=settings.history.max_history_size,
        half_life_days=settings.history.half_life_days,
        candidate_ceiling=settings.history.candidate_ceiling,
        busy_timeout_ms=settings.history.busy_timeout_ms,
    )
    history.load()
    try:
        yield history
    finally:
        history.close()


def _build_orchestrator(settings: Settings, history: HistoryStore) -> Orchestrator:
    backend_settings = settings.backend
    if not backend_settings.command_template:
        raise ConfigurationError("ADAPTIVE_DISPATCH_BACKEND_COMMAND is required for analysis and validation.")
    if backend_settings.executors_file is None:
        raise ConfigurationError("Set ADAPTIVE_DISPATCH_EXECUTORS_FILE or pass --executors-file.")

    registry = ExecutorRegistry()
    for spec in load_executor_specs(backend_settings.executors_file):
        spec.profile.stats = PerformanceStats.from_history(history.performance_by_executor(spec.profile.id))
        registry.register(
            spec.profile.id,
            CliAgentExecutor(
                command_template=spec.command_template,
                model=spec.model,
                agent=spec.profile.id,
                timeout_seconds=min(spec.timeout_seconds, settings.orchestrator.max_execution_time),
            ),
            spec.profile,
        )

    client = CliCompletionClient(
        command_template=backend_settings.command_template,
        model=backend_settings.model,
        agent=backend_settings.agent,
        timeout_seconds=backend_settings.timeout_seconds,
        transient_exit_codes=backend_settings.transient_exit_codes,
    )
    return Orchestrator(
        registry=registry,
        history=history,
        backend=LlmGenerationBackend(client, retry_delay_seconds=backend_settings.retry_delay_seconds),
        analyzer=LlmTaskAnalyzer(client, retry_delay_seconds=backend_settings.retry_delay_seconds),
        settings=settings,
    )


def _render_outcome(outcome: RunOutcome) -> list[str]:
    lines = [
        f"Result: {'accepted' if outcome.success else 'gave up'} "
        f"executor={outcome.executor_used} quality={outcome.quality_score:.2f} "
        f"attempts={len(outcome.attempts)}",
    ]
    lines.extend(
        f"  #{attempt.attempt_no} {attempt.executor_id} quality={attempt.quality_score:.2f} "
        f"threshold={attempt.threshold:.2f} ({attempt.threshold_source}) -> {attempt.decision.value}"
        + (f" error={attempt.error}" if attempt.error else "")
        for attempt in outcome.attempts
    )
    lines.append("")
    lines.append(outcome.answer)
    return lines


def _outcome_payload(outcome: RunOutcome) -> dict[str, object]:
    return {
        "success": outcome.success,
        "answer": outcome.answer,
        "quality_score": round(outcome.quality_score, 3),
        "executor_used": outcome.executor_used,
        "attempts": [attempt.to_dict() for attempt in outcome.attempts],
        "metadata": outcome.metadata,
    }


def _render_recommendation(recommendation: SelectionRecommendation) -> list[str]:
    lines = [
        f"Recommended: {recommendation.executor_id} "
        f"method={recommendation.method.value} confidence={recommendation.confidence:.2f}",
        f"Reasoning: {recommendation.reasoning}",
    ]
    lines.extend(
        f"Alternative: {item.executor_id} score={item.score:.2f} ({item.method.value})"
        for item in recommendation.alternatives
    )
    return lines


def _format_ts(value: object) -> str:
    return "-" if value is None else str(value)
