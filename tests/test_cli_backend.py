from __future__ import annotations

from pathlib import Path

import allure
import pytest
from conftest import ECHO_AGENT_COMMAND_TEMPLATE

from adaptive_dispatch.dispatch.backend.cli_backend import (
    BackendRunError,
    CliAgentExecutor,
    CliCompletionClient,
    _build_run_args,
    run_cli_command,
)
from adaptive_dispatch.dispatch.errors import ExecutionTimeout
from adaptive_dispatch.dispatch.failure_classifier import FailureClass

pytestmark = [
    allure.epic("Generation Backend"),
    allure.feature("CLI Agents"),
]


def test_build_run_args_quotes_placeholders() -> None:
    argv = _build_run_args(
        command_template="agent --model {model} --file {prompt_file} -- {prompt}",
        model="big model",
        prompt="hello 'world'",
        prompt_file=Path("/tmp/p q.txt"),
    )

    assert argv == ["agent", "--model", "big model", "--file", "/tmp/p q.txt", "--", "hello 'world'"]


@pytest.mark.parametrize(
    ("template", "message"),
    [
        ("", "empty"),
        ("agent --model {model}", "must include"),
        ("agent {prompt} {unknown}", "Unsupported"),
    ],
)
def test_build_run_args_rejects_bad_templates(template: str, message: str) -> None:
    with pytest.raises(BackendRunError, match=message) as error:
        _build_run_args(command_template=template, model="m", prompt="p", prompt_file=Path("p.txt"))
    assert not error.value.transient


def test_run_cli_command_missing_binary_is_not_transient() -> None:
    with pytest.raises(BackendRunError, match="not found") as error:
        run_cli_command(
            command_template="definitely-not-an-installed-agent-binary {prompt}",
            prompt="hi",
            model="",
            timeout_seconds=5,
        )
    assert not error.value.transient


def test_executor_echoes_prompt() -> None:
    executor = CliAgentExecutor(command_template=ECHO_AGENT_COMMAND_TEMPLATE, timeout_seconds=30)

    result = executor.execute("summarize the report")

    assert result.success
    assert result.answer == "summarize the report"
    assert result.metadata["exit_code"] == 0


def test_executor_reports_nonzero_exit_as_failed_result() -> None:
    executor = CliAgentExecutor(command_template=f"{ECHO_AGENT_COMMAND_TEMPLATE} --mode fail", agent="coder")

    result = executor.execute("task")

    assert not result.success
    assert "invalid model" in (result.error or "")
    failure = result.metadata["failure"]
    assert failure["failure_class"] == "model_not_available"
    assert failure["reason_code"] == "coder_model_not_available"
    assert failure["agent"] == "coder"


def test_executor_timeout_raises() -> None:
    executor = CliAgentExecutor(
        command_template=f"{ECHO_AGENT_COMMAND_TEMPLATE} --mode sleep --sleep-seconds 10",
        timeout_seconds=0.5,
    )

    with pytest.raises(ExecutionTimeout):
        executor.execute("task")


def test_completion_client_returns_stdout() -> None:
    client = CliCompletionClient(command_template=ECHO_AGENT_COMMAND_TEMPLATE, timeout_seconds=30)

    assert client.complete("hello", system="be brief") == "be brief\n\nhello"


def test_completion_client_classifies_failures() -> None:
    rate_limited = CliCompletionClient(command_template=f"{ECHO_AGENT_COMMAND_TEMPLATE} --mode rate-limit")
    broken = CliCompletionClient(command_template=f"{ECHO_AGENT_COMMAND_TEMPLATE} --mode fail")

    with pytest.raises(BackendRunError) as transient:
        rate_limited.complete("hello")
    with pytest.raises(BackendRunError) as fatal:
        broken.complete("hello")

    assert transient.value.transient
    assert transient.value.classification is not None
    assert transient.value.classification.failure_class is FailureClass.BACKEND_TRANSIENT
    assert not fatal.value.transient


def test_echo_agent_answers_evaluation_prompts() -> None:
    client = CliCompletionClient(command_template=f"{ECHO_AGENT_COMMAND_TEMPLATE} --score 6.5")

    reply = client.complete('Score it. {"correctness": <0-10>}')

    assert '"correctness": 6.5' in reply
