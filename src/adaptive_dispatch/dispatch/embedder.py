"""Fixed-length feature embedding of task analyses for k-NN selection."""

from __future__ import annotations

import math

from adaptive_dispatch.dispatch.errors import InvalidAnalysis
from adaptive_dispatch.dispatch.models import (
    Complexity,
    Domain,
    FeatureVector,
    QualityLevel,
    TaskAnalysis,
)

EMBEDDING_SCHEMA_VERSION = 1
FEATURE_DIMENSIONS = 14
MAX_ESTIMATED_STEPS = 50.0
MAX_KEY_REQUIREMENTS = 10.0

COMPLEXITY_SCALARS: dict[Complexity, float] = {
    Complexity.SIMPLE: 0.0,
    Complexity.MEDIUM: 0.33,
    Complexity.COMPLEX: 0.66,
    Complexity.EXTREME: 1.0,
}
DOMAIN_ORDER: tuple[Domain, ...] = tuple(Domain)
QUALITY_LEVEL_SCALARS: dict[QualityLevel, float] = {
    QualityLevel.STANDARD: 0.33,
    QualityLevel.HIGH: 0.66,
    QualityLevel.EXTREME: 1.0,
}
HIGH_QUALITY_MIN = 0.6
EXTREME_QUALITY_MIN = 0.95

FEATURE_NAMES: tuple[str, ...] = (
    "complexity",
    *(f"domain_{domain.value}" for domain in DOMAIN_ORDER),
    "requires_tools",
    "requires_knowledge",
    "requires_reasoning",
    "requires_iteration",
    "required_quality",
    "estimated_steps_norm",
    "key_requirements_norm",
)


def embed_task(analysis: TaskAnalysis) -> FeatureVector:
    """Map an analysis to the 14-dimension feature vector.

    Layout: complexity, domain one-hot (6), flags (4), required quality,
    normalized steps, normalized requirement count.
    """

    complexity, task_domain = _validate_analysis(analysis)

    features: list[float] = [COMPLEXITY_SCALARS[complexity]]
    features.extend(1.0 if domain is task_domain else 0.0 for domain in DOMAIN_ORDER)
    features.extend(
        1.0 if flag else 0.0
        for flag in (
            analysis.requires_tools,
            analysis.requires_knowledge,
            analysis.requires_reasoning,
            analysis.requires_iteration,
        )
    )
    features.append(float(analysis.required_quality))
    features.append(min(analysis.estimated_steps / MAX_ESTIMATED_STEPS, 1.0))
    features.append(min(analysis.key_requirement_count / MAX_KEY_REQUIREMENTS, 1.0))
    return tuple(features)


def quality_level_for(required_quality: float) -> QualityLevel:
    """Bucket a required-quality scalar into the executor quality tiers."""

    if required_quality >= EXTREME_QUALITY_MIN:
        return QualityLevel.EXTREME
    if required_quality >= HIGH_QUALITY_MIN:
        return QualityLevel.HIGH
    return QualityLevel.STANDARD


def is_valid_vector(vector: FeatureVector | list[float]) -> bool:
    """Whether a vector matches the current embedding layout."""

    if len(vector) != FEATURE_DIMENSIONS:
        return False
    return all(
        isinstance(value, (int, float)) and math.isfinite(value) and 0.0 <= value <= 1.0
        for value in vector
    )


def _validate_analysis(analysis: TaskAnalysis) -> tuple[Complexity, Domain]:
    if not isinstance(analysis.complexity, Complexity):
        raise InvalidAnalysis(f"Task analysis complexity is unset: {analysis.complexity!r}")
    if not isinstance(analysis.domain, Domain):
        raise InvalidAnalysis(f"Task analysis domain is unset: {analysis.domain!r}")
    if not 0.0 <= analysis.required_quality <= 1.0:
        raise InvalidAnalysis(
            f"required_quality must be within [0, 1], got {analysis.required_quality!r}",
        )
    if analysis.estimated_steps < 0:
        raise InvalidAnalysis(f"estimated_steps must be >= 0, got {analysis.estimated_steps!r}")
    if analysis.key_requirement_count < 0:
        raise InvalidAnalysis(
            f"key_requirement_count must be >= 0, got {analysis.key_requirement_count!r}",
        )
    return analysis.complexity, analysis.domain
