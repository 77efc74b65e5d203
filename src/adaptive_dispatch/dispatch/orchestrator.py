"""Select, execute, validate and retry loop around the executor pool."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from adaptive_dispatch.config import Settings
from adaptive_dispatch.dispatch.backend.base import Executor, GenerationBackend, TaskAnalyzer
from adaptive_dispatch.dispatch.embedder import embed_task
from adaptive_dispatch.dispatch.errors import ExecutionError, ExecutionTimeout
from adaptive_dispatch.dispatch.history import HistoryStore
from adaptive_dispatch.dispatch.models import (
    AttemptOutcome,
    AttemptRecord,
    ExecutionResult,
    FeatureVector,
    HistoryStats,
    PerformanceStats,
    RunOutcome,
    RunState,
    SelectionRecommendation,
    TaskAnalysis,
    ValidationResult,
)
from adaptive_dispatch.dispatch.registry import ExecutorRegistry
from adaptive_dispatch.dispatch.selector import ExecutorSelector
from adaptive_dispatch.dispatch.validator import ResultValidator
from adaptive_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

THRESHOLD_STATIC = "static"
THRESHOLD_ADAPTIVE = "adaptive"


class Orchestrator:
    """Drives one task through SELECT, EXECUTE and VALIDATE until it is accepted or given up.

    Many `run` calls may execute concurrently; they share the history store
    and the registry, each of which serializes its own writes. Each executor
    call runs on its own thread so that a hung executor can be abandoned at
    ``max_execution_time``. At most ``max_concurrent_executions`` calls run at
    once; waiting for a slot does not count against the deadline, and an
    abandoned call gives its slot back.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: ExecutorRegistry,
        history: HistoryStore,
        backend: GenerationBackend,
        analyzer: TaskAnalyzer,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or Settings(db_path=None)
        self.settings.validate()
        self.registry = registry
        self.history = history
        self.backend = backend
        self.analyzer = analyzer
        self.validator = ResultValidator(backend)
        selection = self.settings.selection
        self.selector = ExecutorSelector(
            min_history_for_knn=selection.min_history_for_knn,
            min_similarity_threshold=selection.min_similarity_threshold,
            knn_k=selection.knn_k,
            confidence_cap=selection.confidence_cap,
            confidence_base=selection.confidence_base,
            confidence_span=selection.confidence_span,
        )
        self._clock = clock
        self._slots = threading.BoundedSemaphore(self.settings.orchestrator.max_concurrent_executions)

    # -- exposed surface ---------------------------------------------------

    def run(self, task: str) -> RunOutcome:  # noqa: C901
        """Run the retry loop for one task.

        Performs at most ``max_attempts`` executions. `BackendUnavailable` from
        analysis, evaluation or reframing ends the call; every attempt made
        before that is already recorded.
        """

        if not task.strip():
            raise ValueError("task must be non-empty")

        config = self.settings.orchestrator
        run_id = uuid4().hex
        current_task = task
        excluded: list[str] = []
        attempts: list[AttemptOutcome] = []
        analyses: dict[str, tuple[TaskAnalysis, FeatureVector]] = {}
        state = RunState.SELECT

        while state not in (RunState.ACCEPT, RunState.GIVE_UP):
            attempt_no = len(attempts) + 1
            if current_task not in analyses:
                analysis = self.analyzer.analyze(current_task)
                analyses[current_task] = (analysis, embed_task(analysis))
            analysis, vector = analyses[current_task]

            selection = self.selector.select(analysis, vector, self.history, self.registry, excluded)
            executor, _ = self.registry.lookup(selection.executor_id)

            result, duration = self._execute(executor, current_task, selection.executor_id)

            validation = self.validator.validate(current_task, result, analysis)
            quality = validation.quality_score
            threshold, threshold_source = self.effective_threshold(vector)
            met_threshold = result.success and quality >= threshold

            if met_threshold:
                state = RunState.ACCEPT
            elif attempt_no >= config.max_attempts:
                state = RunState.GIVE_UP
            elif config.enable_reframing and threshold - quality > config.reframe_gap:
                state = RunState.REFRAME_AND_RETRY
            else:
                state = RunState.RETRY_DIFFERENT_EXECUTOR

            outcome = self._record_attempt(
                run_id=run_id,
                attempt_no=attempt_no,
                original_task=task,
                task_text=current_task,
                analysis=analysis,
                vector=vector,
                selection=selection,
                result=result,
                validation=validation,
                duration=duration,
                threshold=threshold,
                threshold_source=threshold_source,
                met_threshold=met_threshold,
                decision=state,
            )
            attempts.append(outcome)
            logger.info(
                "Run %s attempt %d: executor=%s quality=%.2f threshold=%.2f (%s) -> %s",
                run_id,
                attempt_no,
                selection.executor_id,
                quality,
                threshold,
                threshold_source,
                state.value,
            )

            if state is RunState.REFRAME_AND_RETRY:
                current_task = self._reframe(current_task, validation)
                state = RunState.SELECT
            elif state is RunState.RETRY_DIFFERENT_EXECUTOR:
                if selection.executor_id not in excluded:
                    excluded.append(selection.executor_id)
                state = RunState.SELECT

        final = attempts[-1] if state is RunState.ACCEPT else _best_attempt(attempts)
        return RunOutcome(
            success=state is RunState.ACCEPT,
            answer=final.answer,
            quality_score=final.quality_score,
            executor_used=final.executor_id,
            attempts=attempts,
            metadata={
                "run_id": run_id,
                "final_state": state.value,
                "original_task": task,
                "final_task": current_task,
                "reframed": current_task != task,
                "attempts_used": len(attempts),
                "selected_attempt": final.attempt_no,
                "threshold": final.threshold,
                "threshold_source": final.threshold_source,
                "excluded_executors": list(excluded),
            },
        )

    def recommend(self, task: str) -> SelectionRecommendation:
        """Dry-run selection; nothing is executed or recorded."""

        analysis = self.analyzer.analyze(task)
        return self.selector.select(analysis, embed_task(analysis), self.history, self.registry)

    def performance(self) -> dict[str, PerformanceStats]:
        return self.registry.performance()

    def history_stats(self) -> HistoryStats:
        return self.history.stats()

    def effective_threshold(self, vector: FeatureVector) -> tuple[float, str]:
        """Acceptance bar for a task: learned from similar attempts when enough exist."""

        config = self.settings.orchestrator
        if not config.adaptive_threshold:
            return config.quality_threshold, THRESHOLD_STATIC
        selection = self.settings.selection
        similar = [
            neighbor.payload
            for neighbor in self.history.find_similar(vector, selection.knn_k)
            if neighbor.score > selection.min_similarity_threshold
        ]
        if len(similar) < selection.min_history_for_knn:
            return config.quality_threshold, THRESHOLD_STATIC
        return HistoryStore.adaptive_threshold(similar), THRESHOLD_ADAPTIVE

    # -- states ------------------------------------------------------------

    def _execute(self, executor: Executor, task: str, executor_id: str) -> tuple[ExecutionResult, float]:
        limit = self.settings.orchestrator.max_execution_time
        call = _ExecutorCall(executor=executor, task=task)
        worker = threading.Thread(target=call.run, name=f"executor-{executor_id}", daemon=True)
        with self._slots:
            started = time.monotonic()
            worker.start()
            worker.join(limit)
            duration = time.monotonic() - started

        if worker.is_alive():
            error: ExecutionError = ExecutionTimeout(f"{executor_id} exceeded {limit:.1f}s")
            logger.warning("Executor %s timed out after %.1fs", executor_id, limit)
            return _failed_execution(error), duration
        if isinstance(call.error, ExecutionError):
            logger.warning("Executor %s failed: %s", executor_id, call.error)
            return _failed_execution(call.error), duration
        if call.error is not None:
            error = ExecutionError(f"{type(call.error).__name__}: {call.error}")
            logger.warning("Executor %s raised: %s", executor_id, error)
            return _failed_execution(error), duration
        if not isinstance(call.result, ExecutionResult):
            error = ExecutionError(f"{executor_id} returned {type(call.result).__name__}, not ExecutionResult")
            return _failed_execution(error), duration
        return call.result, duration

    def _reframe(self, task: str, validation: ValidationResult) -> str:
        reframed = self.backend.reframe(task, validation.issues).strip()
        if not reframed:
            logger.warning("Reframe returned empty text; keeping the current task")
            return task
        logger.info("Task reframed")
        return reframed

    def _record_attempt(  # noqa: PLR0913
        self,
        *,
        run_id: str,
        attempt_no: int,
        original_task: str,
        task_text: str,
        analysis: TaskAnalysis,
        vector: FeatureVector,
        selection: SelectionRecommendation,
        result: ExecutionResult,
        validation: ValidationResult,
        duration: float,
        threshold: float,
        threshold_source: str,
        met_threshold: bool,
        decision: RunState,
    ) -> AttemptOutcome:
        record = AttemptRecord(
            id=uuid4().hex,
            task=original_task,
            feature_vector=vector,
            task_analysis=analysis,
            executor_id=selection.executor_id,
            success=met_threshold,
            quality_score=validation.quality_score,
            duration=duration,
            timestamp=self._clock(),
            metadata={
                "run_id": run_id,
                "attempt_no": attempt_no,
                "task_text": task_text,
                "reframed": task_text != original_task,
                "selection_method": selection.method.value,
                "confidence": round(selection.confidence, 3),
                "threshold": threshold,
                "threshold_source": threshold_source,
                "execution_success": result.success,
                "error": result.error,
                "error_class": result.metadata.get("error_class"),
                "failure": result.metadata.get("failure"),
                "validation_parse_error": (
                    str(validation.parse_error) if validation.parse_error is not None else None
                ),
                "decision": decision.value,
            },
        )
        self.history.record(record)
        self.registry.record_attempt(
            selection.executor_id,
            quality_score=validation.quality_score,
            duration=duration,
            success=met_threshold,
        )
        return AttemptOutcome(
            attempt_no=attempt_no,
            record_id=record.id,
            executor_id=selection.executor_id,
            task_text=task_text,
            answer=result.answer,
            execution_success=result.success,
            quality_score=validation.quality_score,
            threshold=threshold,
            threshold_source=threshold_source,
            decision=decision,
            duration=duration,
            validation=validation,
            selection=selection,
            error=result.error,
        )


def _failed_execution(error: ExecutionError) -> ExecutionResult:
    return ExecutionResult(
        answer="",
        success=False,
        error=str(error),
        metadata={"error_class": type(error).__name__},
    )


def _best_attempt(attempts: list[AttemptOutcome]) -> AttemptOutcome:
    # max() keeps the first maximum, so ties go to the earliest attempt.
    return max(attempts, key=lambda attempt: attempt.quality_score)


@dataclass(slots=True)
class _ExecutorCall:
    """One executor invocation, run on its own thread."""

    executor: Executor
    task: str
    result: object = None
    error: Exception | None = None

    def run(self) -> None:
        try:
            self.result = self.executor.execute(self.task)
        except Exception as exc:  # noqa: BLE001
            self.error = exc
