"""Deterministic classification of generation backend failures."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    """Why a backend call failed, and whether retrying can help."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"


_RETRYABLE = frozenset({FailureClass.TIMEOUT, FailureClass.BACKEND_TRANSIENT})

# Checked in order; the first matching rule wins.
_RULES: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
    (
        "billing_or_quota",
        FailureClass.BILLING_OR_QUOTA,
        ("quota", "resource_exhausted", "insufficient", "billing", "payment", "credits", "usage limit"),
    ),
    (
        "access_or_auth",
        FailureClass.ACCESS_OR_AUTH,
        ("unauthorized", "forbidden", "permission denied", "invalid api key", "authentication"),
    ),
    (
        "model_not_available",
        FailureClass.MODEL_NOT_AVAILABLE,
        ("model not found", "unknown model", "unsupported model", "invalid model", "model is not available"),
    ),
    (
        "rate_limit_transient",
        FailureClass.BACKEND_TRANSIENT,
        ("too many requests", "rate limit", "429", "overloaded", "please retry", "try again later"),
    ),
    (
        "generic_transient",
        FailureClass.BACKEND_TRANSIENT,
        (
            "temporarily unavailable",
            "temporary failure",
            "connection reset",
            "connection refused",
            "network error",
            "could not resolve host",
        ),
    ),
)


@dataclass(slots=True)
class BackendFailureClassification:
    """Classifier verdict with the rule that produced it."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class in _RETRYABLE

    def to_details(self, *, agent: str) -> dict[str, object]:
        """Serialize for log lines and attempt metadata."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "agent": agent,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_backend_failure(
    *,
    agent: str,
    exit_code: int,
    stdout: str,
    stderr: str,
    timed_out: bool = False,
    transient_exit_codes: tuple[int, ...] = (),
) -> BackendFailureClassification:
    """Map a failed CLI call onto a failure class by output patterns and exit code."""

    if timed_out:
        return BackendFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{agent}_timeout",
            matched_rule="timeout",
            matched_pattern=None,
        )

    haystack = f"{stderr}\n{stdout}".lower()
    for rule, failure_class, patterns in _RULES:
        pattern = next((item for item in patterns if item in haystack), None)
        if pattern is not None:
            return BackendFailureClassification(
                failure_class=failure_class,
                reason_code=f"{agent}_{rule}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    if exit_code in transient_exit_codes:
        return BackendFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{agent}_backend_transient",
            matched_rule="transient_exit_code",
            matched_pattern=None,
        )

    return BackendFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{agent}_backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )
