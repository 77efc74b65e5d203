"""Result validation: criterion scoring over backend evaluation replies."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping

from adaptive_dispatch.dispatch.backend.base import GenerationBackend
from adaptive_dispatch.dispatch.errors import ValidationParseError
from adaptive_dispatch.dispatch.models import (
    MAX_QUALITY_SCORE,
    ExecutionResult,
    TaskAnalysis,
    ValidationResult,
)

logger = logging.getLogger(__name__)

CRITERIA: tuple[str, ...] = ("correctness", "completeness", "clarity", "relevance")


class ResultValidator:
    """Scores an execution result; never lets a bad evaluation crash a run.

    A failed execution scores 0 without asking the backend. A malformed or
    partial evaluation reply yields a zero score with ``parse_error`` set.
    `BackendUnavailable` from the backend propagates.
    """

    def __init__(self, backend: GenerationBackend) -> None:
        self.backend = backend

    def validate(
        self,
        task: str,
        result: ExecutionResult,
        analysis: TaskAnalysis | None = None,  # noqa: ARG002
    ) -> ValidationResult:
        if not result.success:
            return ValidationResult.failed(
                issues=[f"Execution failed: {result.error or 'unknown error'}"],
            )
        if not result.answer.strip():
            return ValidationResult.failed(issues=["Execution produced an empty answer"])

        try:
            reply = self.backend.evaluate(task, result.answer)
            return parse_evaluation(reply)
        except ValidationParseError as error:
            logger.warning("Evaluation reply unusable, scoring attempt as 0: %s", error)
            return ValidationResult.failed(
                issues=["Validation reply could not be parsed"],
                parse_error=error,
            )


def parse_evaluation(reply: Mapping[str, object]) -> ValidationResult:
    """Build a `ValidationResult` from an evaluation mapping.

    Raises `ValidationParseError` when any criterion is missing or not a number.
    Scores are clamped to ``[0, 10]``.
    """

    if not isinstance(reply, Mapping):
        raise ValidationParseError(f"Evaluation reply is not a mapping: {type(reply).__name__}")

    scores: dict[str, float] = {}
    missing: list[str] = []
    for criterion in CRITERIA:
        score = _as_score(reply.get(criterion))
        if score is None:
            missing.append(criterion)
            continue
        scores[criterion] = score
    if missing:
        raise ValidationParseError(f"Evaluation reply lacks numeric criteria: {', '.join(missing)}")

    return ValidationResult(
        correctness=scores["correctness"],
        completeness=scores["completeness"],
        clarity=scores["clarity"],
        relevance=scores["relevance"],
        issues=_as_strings(reply.get("issues")),
        strengths=_as_strings(reply.get("strengths")),
    )


def _as_score(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(0.0, min(MAX_QUALITY_SCORE, number))


def _as_strings(value: object) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]
