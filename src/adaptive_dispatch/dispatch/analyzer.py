"""Task analysis through the generation backend, with a safe default."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping

from adaptive_dispatch.dispatch.backend.base import CompletionClient
from adaptive_dispatch.dispatch.backend.llm_backend import complete_with_retry
from adaptive_dispatch.dispatch.embedder import QUALITY_LEVEL_SCALARS
from adaptive_dispatch.dispatch.models import Complexity, Domain, QualityLevel, TaskAnalysis
from adaptive_dispatch.dispatch.payloads import parse_json_object
from adaptive_dispatch.dispatch.prompts import ANALYSIS_SYSTEM, build_analysis_prompt

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS = TaskAnalysis(complexity=Complexity.MEDIUM, domain=Domain.GENERAL)


class LlmTaskAnalyzer:
    """`TaskAnalyzer` that asks the model for a JSON description of the task.

    Unparseable replies fall back to `DEFAULT_ANALYSIS`; a backend outage
    propagates as `BackendUnavailable`.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        retry_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def analyze(self, task: str) -> TaskAnalysis:
        reply = complete_with_retry(
            self.client,
            build_analysis_prompt(task),
            system=ANALYSIS_SYSTEM,
            retry_delay_seconds=self.retry_delay_seconds,
            sleep=self._sleep,
        )
        payload = parse_json_object(reply)
        if payload is None:
            logger.warning("Task analysis reply is not JSON; using default analysis")
            return DEFAULT_ANALYSIS
        try:
            return analysis_from_payload(payload)
        except (ValueError, TypeError, OverflowError) as exc:
            logger.warning("Task analysis reply is invalid (%s); using default analysis", exc)
            return DEFAULT_ANALYSIS


def analysis_from_payload(payload: Mapping[str, object]) -> TaskAnalysis:
    """Build an analysis from a loosely-typed reply; missing fields take defaults."""

    return TaskAnalysis(
        complexity=Complexity(str(payload.get("complexity", Complexity.MEDIUM.value)).strip().lower()),
        domain=Domain(str(payload.get("domain", Domain.GENERAL.value)).strip().lower()),
        requires_tools=_as_bool(payload.get("requires_tools")),
        requires_knowledge=_as_bool(payload.get("requires_knowledge")),
        requires_reasoning=_as_bool(payload.get("requires_reasoning")),
        requires_iteration=_as_bool(payload.get("requires_iteration")),
        required_quality=_required_quality(
            payload.get("required_quality", payload.get("requires_quality")),
        ),
        estimated_steps=max(0, int(payload.get("estimated_steps", 10))),  # type: ignore[arg-type]
        key_requirement_count=_requirement_count(payload.get("key_requirements")),
    )


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _required_quality(value: object) -> float:
    if value is None:
        return QUALITY_LEVEL_SCALARS[QualityLevel.STANDARD]
    if isinstance(value, str):
        label = value.strip().lower()
        try:
            return QUALITY_LEVEL_SCALARS[QualityLevel(label)]
        except ValueError:
            value = label
    number = float(value)  # type: ignore[arg-type]
    return max(0.0, min(1.0, number))


def _requirement_count(value: object) -> int:
    if value is None:
        return 0
    if isinstance(value, list):
        return len(value)
    return max(0, int(value))  # type: ignore[call-overload]
