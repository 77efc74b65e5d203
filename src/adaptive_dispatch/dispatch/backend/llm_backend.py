"""Generation backend that evaluates and reframes through a completion client."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence

from adaptive_dispatch.dispatch.backend.base import CompletionClient
from adaptive_dispatch.dispatch.backend.cli_backend import BackendRunError
from adaptive_dispatch.dispatch.errors import BackendUnavailable, ValidationParseError
from adaptive_dispatch.dispatch.payloads import parse_json_object, strip_code_fence
from adaptive_dispatch.dispatch.prompts import (
    EVALUATION_SYSTEM,
    REFRAME_SYSTEM,
    build_evaluation_prompt,
    build_reframe_prompt,
)

logger = logging.getLogger(__name__)


def complete_with_retry(
    client: CompletionClient,
    prompt: str,
    *,
    system: str | None,
    retry_delay_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Call the client, retrying once on a transient failure.

    Raises `BackendUnavailable` on a non-transient failure or when the retry
    also fails.
    """

    try:
        return client.complete(prompt, system=system)
    except BackendRunError as error:
        if not error.transient:
            raise BackendUnavailable(str(error)) from error
        logger.warning("Transient backend failure, retrying once: %s", error)

    sleep(retry_delay_seconds)
    try:
        return client.complete(prompt, system=system)
    except BackendRunError as error:
        raise BackendUnavailable(f"Backend failed after retry: {error}") from error


class LlmGenerationBackend:
    """`GenerationBackend` over any `CompletionClient`."""

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

    def evaluate(self, task: str, answer: str) -> Mapping[str, object]:
        reply = complete_with_retry(
            self.client,
            build_evaluation_prompt(task, answer),
            system=EVALUATION_SYSTEM,
            retry_delay_seconds=self.retry_delay_seconds,
            sleep=self._sleep,
        )
        payload = parse_json_object(reply)
        if payload is None:
            raise ValidationParseError(f"Evaluation reply is not a JSON object: {reply[:200]!r}")
        return payload

    def reframe(self, task: str, issues: Sequence[str]) -> str:
        reply = complete_with_retry(
            self.client,
            build_reframe_prompt(task, issues),
            system=REFRAME_SYSTEM,
            retry_delay_seconds=self.retry_delay_seconds,
            sleep=self._sleep,
        )
        return strip_code_fence(reply).strip().strip('"').strip()
