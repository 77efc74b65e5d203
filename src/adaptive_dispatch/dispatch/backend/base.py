"""Capability interfaces for executors and the generation backend.

All calls block their caller. Implementations may run them synchronously or
hand them to a thread pool; the orchestrator does not care which.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol

from adaptive_dispatch.dispatch.models import ExecutionResult, TaskAnalysis


class Executor(Protocol):
    """Something that can attempt a task."""

    def execute(self, task: str) -> ExecutionResult:
        """Attempt the task and report the answer."""


class GenerationBackend(Protocol):
    """Judgment calls used by validation and retry."""

    def evaluate(self, task: str, answer: str) -> Mapping[str, object]:
        """Return per-criterion scores for an answer."""

    def reframe(self, task: str, issues: Sequence[str]) -> str:
        """Return a clearer restatement of the task."""


class TaskAnalyzer(Protocol):
    """Produces the structured description a task is embedded from."""

    def analyze(self, task: str) -> TaskAnalysis:
        """Describe the task."""


class CompletionClient(Protocol):
    """Raw text completion transport."""

    def complete(self, prompt: str, *, system: str | None = None) -> str:
        """Return the model's reply text."""
