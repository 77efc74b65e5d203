"""Executor and generation backend implementations."""

from adaptive_dispatch.dispatch.backend.base import (
    CompletionClient,
    Executor,
    GenerationBackend,
    TaskAnalyzer,
)
from adaptive_dispatch.dispatch.backend.cli_backend import (
    BackendRunError,
    CliAgentExecutor,
    CliCompletionClient,
)
from adaptive_dispatch.dispatch.backend.llm_backend import LlmGenerationBackend

__all__ = [
    "BackendRunError",
    "CliAgentExecutor",
    "CliCompletionClient",
    "CompletionClient",
    "Executor",
    "GenerationBackend",
    "LlmGenerationBackend",
    "TaskAnalyzer",
]
