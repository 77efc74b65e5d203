"""Executor registry: executors, their profiles and performance counters."""

from __future__ import annotations

import logging
import threading

from adaptive_dispatch.dispatch.backend.base import Executor
from adaptive_dispatch.dispatch.errors import UnknownExecutor
from adaptive_dispatch.dispatch.models import ExecutorProfile, PerformanceStats

logger = logging.getLogger(__name__)


class ExecutorRegistry:
    """Registration-ordered executor pool shared by concurrent runs.

    Stats are mutated only through `record_attempt`, under the registry lock.
    Readers get copies.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._executors: dict[str, tuple[Executor, ExecutorProfile]] = {}

    def register(self, executor_id: str, executor: Executor, profile: ExecutorProfile) -> None:
        if not executor_id:
            raise ValueError("executor_id must be non-empty")
        if profile.id != executor_id:
            raise ValueError(f"Profile id {profile.id!r} does not match executor id {executor_id!r}")
        with self._lock:
            if executor_id in self._executors:
                raise ValueError(f"Executor already registered: {executor_id}")
            self._executors[executor_id] = (executor, profile)
        logger.info("Registered executor %s (%s)", executor_id, profile.type)

    def lookup(self, executor_id: str) -> tuple[Executor, ExecutorProfile]:
        with self._lock:
            try:
                executor, profile = self._executors[executor_id]
            except KeyError as error:
                raise UnknownExecutor(executor_id) from error
            return executor, _profile_copy(profile)

    def __contains__(self, executor_id: object) -> bool:
        with self._lock:
            return executor_id in self._executors

    def __len__(self) -> int:
        with self._lock:
            return len(self._executors)

    def ids(self) -> list[str]:
        """Executor ids in registration order."""

        with self._lock:
            return list(self._executors)

    def profiles(self) -> list[ExecutorProfile]:
        """Profile snapshots in registration order."""

        with self._lock:
            return [_profile_copy(profile) for _, profile in self._executors.values()]

    def record_attempt(
        self,
        executor_id: str,
        *,
        quality_score: float,
        duration: float,
        success: bool,
    ) -> PerformanceStats:
        """Fold one attempt into the executor's counters; return the new snapshot."""

        with self._lock:
            try:
                _, profile = self._executors[executor_id]
            except KeyError as error:
                raise UnknownExecutor(executor_id) from error
            profile.stats.record(quality_score=quality_score, duration=duration, success=success)
            return profile.stats.copy()

    def performance(self) -> dict[str, PerformanceStats]:
        with self._lock:
            return {executor_id: profile.stats.copy() for executor_id, (_, profile) in self._executors.items()}


def _profile_copy(profile: ExecutorProfile) -> ExecutorProfile:
    return ExecutorProfile(
        id=profile.id,
        type=profile.type,
        complexity_level=profile.complexity_level,
        speed=profile.speed,
        quality_level=profile.quality_level,
        strengths=profile.strengths,
        best_for=profile.best_for,
        stats=profile.stats.copy(),
    )
