"""Executor selection: k-NN over past attempts with a rule-based fallback."""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import TypeVar

from adaptive_dispatch.dispatch.embedder import quality_level_for
from adaptive_dispatch.dispatch.errors import NoExecutorsRegistered
from adaptive_dispatch.dispatch.history import HistoryStore
from adaptive_dispatch.dispatch.models import (
    MAX_QUALITY_SCORE,
    Complexity,
    Domain,
    ExecutorProfile,
    FeatureVector,
    QualityLevel,
    SelectionAlternative,
    SelectionMethod,
    SelectionRecommendation,
    TaskAnalysis,
)
from adaptive_dispatch.dispatch.registry import ExecutorRegistry

logger = logging.getLogger(__name__)

LevelT = TypeVar("LevelT", Complexity, QualityLevel)

MAX_ALTERNATIVES = 2
FAILED_ATTEMPT_FACTOR = 0.3
EXCLUSION_PENALTY = -10.0
CAPABILITY_BONUS = 5.0
EXACT_MATCH_SCORE = 10.0

# (task level, executor level) -> score; anything missing scores 0.
COMPLEXITY_MATCH: dict[tuple[Complexity, Complexity], float] = {
    (Complexity.SIMPLE, Complexity.MEDIUM): 5.0,
    (Complexity.MEDIUM, Complexity.SIMPLE): 5.0,
    (Complexity.MEDIUM, Complexity.COMPLEX): 7.0,
    (Complexity.COMPLEX, Complexity.MEDIUM): 5.0,
    (Complexity.COMPLEX, Complexity.EXTREME): 8.0,
    (Complexity.EXTREME, Complexity.COMPLEX): 5.0,
}
QUALITY_MATCH: dict[tuple[QualityLevel, QualityLevel], float] = {
    (QualityLevel.STANDARD, QualityLevel.HIGH): 5.0,
    (QualityLevel.HIGH, QualityLevel.STANDARD): 5.0,
    (QualityLevel.HIGH, QualityLevel.EXTREME): 7.0,
    (QualityLevel.EXTREME, QualityLevel.HIGH): 5.0,
}
EXTREME_QUALITY_TYPE_BONUS: dict[str, float] = {"reflection": 5.0, "maker": 7.0}


@dataclass(slots=True)
class _KnnGroup:
    executor_id: str
    order: int
    weight_sum: float = 0.0
    weighted_quality: float = 0.0
    best_match: float = 0.0
    similarities: list[float] = field(default_factory=list)

    @property
    def neighbor_count(self) -> int:
        return len(self.similarities)

    @property
    def weighted_score(self) -> float:
        if self.weight_sum <= 0.0:
            return 0.0
        return self.weighted_quality / self.weight_sum

    @property
    def avg_similarity(self) -> float:
        return sum(self.similarities) / len(self.similarities)


@dataclass(slots=True)
class RuleScore:
    """Rule-based score of one executor, kept for tie-breaks and reporting."""

    executor_id: str
    order: int
    total: float
    average_duration: float


class ExecutorSelector:
    """Picks the executor most likely to succeed on a task.

    With at least `min_history_for_knn` stored attempts, executors are ranked
    by the quality they achieved on the nearest past tasks. Otherwise, or when
    no neighbour group is similar enough, a deterministic rule-based scorer
    over the declared profiles decides.

    The k-NN confidence is ``min(cap, base + span * min(1, n / k) * avg_sim)``
    for the winning group; its constants are tunables, not a derived quantity.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        min_history_for_knn: int = 5,
        min_similarity_threshold: float = 0.15,
        knn_k: int = 10,
        confidence_cap: float = 0.95,
        confidence_base: float = 0.5,
        confidence_span: float = 0.45,
    ) -> None:
        self.min_history_for_knn = min_history_for_knn
        self.min_similarity_threshold = min_similarity_threshold
        self.knn_k = knn_k
        self.confidence_cap = confidence_cap
        self.confidence_base = confidence_base
        self.confidence_span = confidence_span

    def select(
        self,
        analysis: TaskAnalysis,
        vector: FeatureVector,
        history: HistoryStore,
        registry: ExecutorRegistry,
        excluded: Collection[str] = (),
    ) -> SelectionRecommendation:
        profiles = registry.profiles()
        if not profiles:
            raise NoExecutorsRegistered("No executors are registered")

        order = {profile.id: index for index, profile in enumerate(profiles)}
        excluded_set = set(excluded) & set(order)
        exclusion_active = excluded_set != set(order)
        if not exclusion_active:
            logger.debug("Every executor is excluded; exclusion penalty lifted")

        rule_scores = self.rank_rule_based(
            analysis,
            profiles,
            excluded_set if exclusion_active else set(),
        )

        if history.size >= self.min_history_for_knn:
            groups = self._knn_groups(
                vector,
                history,
                order,
                excluded_set if exclusion_active else set(),
            )
            if groups:
                return self._knn_recommendation(groups, rule_scores)
            logger.debug("No k-NN group above similarity %.2f; using rules", self.min_similarity_threshold)

        return _rule_recommendation(rule_scores, single=len(profiles) == 1)

    def rank_rule_based(
        self,
        analysis: TaskAnalysis,
        profiles: list[ExecutorProfile],
        excluded: Collection[str] = (),
    ) -> list[RuleScore]:
        """Score every profile and sort best first (ties: faster, then earlier registered)."""

        scores = [
            RuleScore(
                executor_id=profile.id,
                order=index,
                total=score_profile(analysis, profile, excluded=profile.id in excluded),
                average_duration=profile.stats.average_duration,
            )
            for index, profile in enumerate(profiles)
        ]
        scores.sort(key=lambda item: (-item.total, item.average_duration, item.order))
        return scores

    def _knn_groups(
        self,
        vector: FeatureVector,
        history: HistoryStore,
        order: dict[str, int],
        excluded: set[str],
    ) -> list[_KnnGroup]:
        groups: dict[str, _KnnGroup] = {}
        for neighbor in history.find_similar(vector, self.knn_k):
            executor_id = neighbor.payload.executor_id
            if executor_id not in order or executor_id in excluded:
                continue
            group = groups.setdefault(executor_id, _KnnGroup(executor_id=executor_id, order=order[executor_id]))
            outcome_factor = 1.0 if neighbor.payload.success else FAILED_ATTEMPT_FACTOR
            group.weight_sum += neighbor.score
            group.weighted_quality += (
                neighbor.score * (neighbor.payload.quality_score / MAX_QUALITY_SCORE) * outcome_factor
            )
            group.best_match = max(group.best_match, neighbor.score)
            group.similarities.append(neighbor.similarity)

        qualifying = [
            group
            for group in groups.values()
            if group.best_match > self.min_similarity_threshold and group.weight_sum > 0.0
        ]
        qualifying.sort(
            key=lambda group: (-group.weighted_score, -group.neighbor_count, -group.best_match, group.order),
        )
        return qualifying

    def _knn_recommendation(
        self,
        groups: list[_KnnGroup],
        rule_scores: list[RuleScore],
    ) -> SelectionRecommendation:
        winner = groups[0]
        coverage = min(1.0, winner.neighbor_count / self.knn_k)
        confidence = min(
            self.confidence_cap,
            self.confidence_base + self.confidence_span * coverage * winner.avg_similarity,
        )
        alternatives = [
            SelectionAlternative(executor_id=group.executor_id, score=group.weighted_score, method=SelectionMethod.KNN)
            for group in groups[1 : 1 + MAX_ALTERNATIVES]
        ]
        _pad_alternatives(alternatives, winner.executor_id, rule_scores)
        reasoning = (
            f"k-NN: {winner.neighbor_count} similar past attempt(s) by {winner.executor_id}, "
            f"weighted quality {winner.weighted_score:.2f}, best match {winner.best_match:.2f}"
        )
        logger.debug("Selected %s by k-NN (confidence %.2f)", winner.executor_id, confidence)
        return SelectionRecommendation(
            executor_id=winner.executor_id,
            confidence=max(0.0, min(1.0, confidence)),
            method=SelectionMethod.KNN,
            reasoning=reasoning,
            alternatives=alternatives,
        )


def score_profile(analysis: TaskAnalysis, profile: ExecutorProfile, *, excluded: bool = False) -> float:
    """Rule-based suitability of one executor for a task."""

    task_quality = quality_level_for(analysis.required_quality)
    score = _level_match(analysis.complexity, profile.complexity_level, COMPLEXITY_MATCH)
    score += _level_match(task_quality, profile.quality_level, QUALITY_MATCH)

    stats = profile.stats
    if stats.attempts > 0:
        score += stats.success_rate * 5.0 + (stats.average_quality / MAX_QUALITY_SCORE) * 3.0

    score += capability_bonus(analysis, profile)
    if task_quality is QualityLevel.EXTREME:
        score += EXTREME_QUALITY_TYPE_BONUS.get(profile.type.lower(), 0.0)
    if excluded:
        score += EXCLUSION_PENALTY
    return score


def capability_bonus(analysis: TaskAnalysis, profile: ExecutorProfile) -> float:
    """+5 for each task need the executor's type or tags advertise."""

    executor_type = profile.type.lower()
    tags = profile.tags()

    def advertises(types: tuple[str, ...], fragments: tuple[str, ...]) -> bool:
        return executor_type in types or any(fragment in tag for tag in tags for fragment in fragments)

    bonus = 0.0
    if analysis.requires_tools and advertises(("react",), ("tool",)):
        bonus += CAPABILITY_BONUS
    if analysis.requires_knowledge and advertises(("rag",), ("knowledge", "retrieval")):
        bonus += CAPABILITY_BONUS
    if analysis.requires_reasoning and advertises(("cot", "tot"), ("reasoning",)):
        bonus += CAPABILITY_BONUS
    if analysis.requires_iteration and advertises(("reflection",), ("iterat",)):
        bonus += CAPABILITY_BONUS
    if analysis.domain is Domain.CONVERSATIONAL and advertises(("dialog",), ("dialog",)):
        bonus += CAPABILITY_BONUS
    return bonus


def _level_match(
    task_level: LevelT | None,
    executor_level: LevelT,
    table: Mapping[tuple[LevelT, LevelT], float],
) -> float:
    if task_level is None:
        return 0.0
    if task_level == executor_level:
        return EXACT_MATCH_SCORE
    return table.get((task_level, executor_level), 0.0)


def _rule_recommendation(rule_scores: list[RuleScore], *, single: bool) -> SelectionRecommendation:
    winner = rule_scores[0]
    alternatives = [
        SelectionAlternative(executor_id=item.executor_id, score=item.total, method=SelectionMethod.RULE_BASED)
        for item in rule_scores[1 : 1 + MAX_ALTERNATIVES]
    ]
    reasoning = (
        "Only one executor is registered"
        if single
        else f"Rule-based: {winner.executor_id} scored {winner.total:.1f} on profile match"
    )
    return SelectionRecommendation(
        executor_id=winner.executor_id,
        confidence=1.0 if single else 0.5,
        method=SelectionMethod.RULE_BASED,
        reasoning=reasoning,
        alternatives=alternatives,
    )


def _pad_alternatives(
    alternatives: list[SelectionAlternative],
    winner_id: str,
    rule_scores: list[RuleScore],
) -> None:
    taken = {winner_id, *(item.executor_id for item in alternatives)}
    for item in rule_scores:
        if len(alternatives) >= MAX_ALTERNATIVES:
            return
        if item.executor_id in taken:
            continue
        alternatives.append(
            SelectionAlternative(executor_id=item.executor_id, score=item.total, method=SelectionMethod.RULE_BASED),
        )
        taken.add(item.executor_id)
