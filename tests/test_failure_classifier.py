from __future__ import annotations

import allure

from adaptive_dispatch.dispatch.failure_classifier import (
    FAILURE_CLASSIFIER_VERSION,
    FailureClass,
    classify_backend_failure,
)

pytestmark = [
    allure.epic("Generation Backend"),
    allure.feature("Failure Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert FAILURE_CLASSIFIER_VERSION == 1


def test_classifier_prefers_billing_over_transient_exit_code() -> None:
    classified = classify_backend_failure(
        agent="gemini",
        exit_code=75,
        stdout="",
        stderr="Quota exceeded for this project",
        transient_exit_codes=(75,),
    )

    assert classified.failure_class is FailureClass.BILLING_OR_QUOTA
    assert classified.matched_pattern == "quota"
    assert not classified.retryable


def test_classifier_maps_rate_limit_to_transient() -> None:
    classified = classify_backend_failure(
        agent="codex",
        exit_code=1,
        stdout="",
        stderr="HTTP 429 too many requests, please retry",
    )

    assert classified.failure_class is FailureClass.BACKEND_TRANSIENT
    assert classified.matched_rule == "rate_limit_transient"
    assert classified.retryable


def test_classifier_maps_model_unavailable() -> None:
    classified = classify_backend_failure(
        agent="claude",
        exit_code=2,
        stdout="",
        stderr="fatal: invalid model requested",
    )

    assert classified.failure_class is FailureClass.MODEL_NOT_AVAILABLE
    assert classified.reason_code == "claude_model_not_available"


def test_classifier_uses_transient_exit_codes() -> None:
    classified = classify_backend_failure(
        agent="cli",
        exit_code=75,
        stdout="",
        stderr="something odd",
        transient_exit_codes=(75,),
    )

    assert classified.matched_rule == "transient_exit_code"
    assert classified.retryable


def test_classifier_timeout_and_fallback() -> None:
    timed_out = classify_backend_failure(agent="cli", exit_code=124, stdout="", stderr="", timed_out=True)
    fallback = classify_backend_failure(agent="cli", exit_code=3, stdout="", stderr="segfault")

    assert timed_out.failure_class is FailureClass.TIMEOUT
    assert timed_out.retryable
    assert fallback.failure_class is FailureClass.BACKEND_NON_RETRYABLE
    assert fallback.to_details(agent="cli")["matched_rule"] == "fallback_non_retryable"
