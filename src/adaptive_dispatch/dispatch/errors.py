"""Error taxonomy for selection, execution, validation and history storage."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for engine errors."""


class ConfigurationError(DispatchError, ValueError):
    """Invalid weights or thresholds detected before any task is accepted."""


class InvalidAnalysis(DispatchError, ValueError):
    """Task analysis cannot be embedded (unset enum field or out-of-range value)."""


class NoExecutorsRegistered(DispatchError):
    """Selection requested while the executor registry is empty."""


class UnknownExecutor(DispatchError, KeyError):
    """Executor id has no registered profile."""


class InvalidAttemptRecord(DispatchError, ValueError):
    """Attempt record rejected by the history store."""


class RecoverableValidationError(DispatchError):
    """Validation could not be completed; defaults were applied instead."""


class ValidationParseError(RecoverableValidationError):
    """Backend evaluation reply is malformed or incomplete."""


class ExecutionError(DispatchError):
    """Executor raised or reported an unusable result."""


class ExecutionTimeout(ExecutionError):
    """Executor exceeded the per-attempt time budget."""


class BackendUnavailable(DispatchError):
    """Generation backend failed after its local transient retry."""


class HistoryStoreCorruption(DispatchError):
    """Persisted history could not be read at startup."""
