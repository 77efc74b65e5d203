"""Subprocess-based completion client and executor for CLI agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from adaptive_dispatch.dispatch.errors import ExecutionTimeout
from adaptive_dispatch.dispatch.failure_classifier import (
    BackendFailureClassification,
    classify_backend_failure,
)
from adaptive_dispatch.dispatch.models import ExecutionResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class BackendRunError(RuntimeError):
    """CLI call failed; `transient` says whether a retry can help."""

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        classification: BackendFailureClassification | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.classification = classification


@dataclass(slots=True)
class CliRunOutput:
    """Captured result of one CLI command."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str
    duration: float


def run_cli_command(
    *,
    command_template: str,
    prompt: str,
    model: str,
    timeout_seconds: float,
    env: dict[str, str] | None = None,
) -> CliRunOutput:
    """Render the template and run it, killing the process at the deadline.

    The prompt is also written to a temporary file exposed as ``{prompt_file}``.
    """

    with tempfile.TemporaryDirectory(prefix="adaptive-dispatch-") as workdir:
        prompt_file = Path(workdir) / "prompt.txt"
        prompt_file.write_text(prompt, "utf-8")
        run_args = _build_run_args(
            command_template=command_template,
            model=model,
            prompt=prompt,
            prompt_file=prompt_file,
        )

        started = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                env={**os.environ, **(env or {})},
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as error:
            raise BackendRunError(
                f"CLI command not found: {run_args[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise BackendRunError(f"CLI command failed to start: {error}", transient=True) from error

        try:
            stdout, stderr = process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            stdout, stderr = _terminate_process(process)
            return CliRunOutput(
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                stdout=stdout,
                stderr=stderr,
                duration=time.monotonic() - started,
            )
        return CliRunOutput(
            exit_code=process.returncode,
            timed_out=False,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - started,
        )


class CliCompletionClient:
    """`CompletionClient` that shells out to a CLI agent per request."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        command_template: str,
        model: str = "",
        agent: str = "cli",
        timeout_seconds: float = 120.0,
        transient_exit_codes: tuple[int, ...] = (75,),
    ) -> None:
        self.command_template = command_template
        self.model = model
        self.agent = agent
        self.timeout_seconds = timeout_seconds
        self.transient_exit_codes = transient_exit_codes

    def complete(self, prompt: str, *, system: str | None = None) -> str:
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        output = run_cli_command(
            command_template=self.command_template,
            prompt=full_prompt,
            model=self.model,
            timeout_seconds=self.timeout_seconds,
        )
        if output.timed_out or output.exit_code != 0:
            classification = classify_backend_failure(
                agent=self.agent,
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
                timed_out=output.timed_out,
                transient_exit_codes=self.transient_exit_codes,
            )
            logger.warning(
                "Completion command failed: exit=%d class=%s rule=%s",
                output.exit_code,
                classification.failure_class.value,
                classification.matched_rule,
            )
            raise BackendRunError(
                f"{self.agent} completion failed ({classification.reason_code})",
                transient=classification.retryable,
                classification=classification,
            )
        reply = output.stdout.strip()
        if not reply:
            raise BackendRunError(f"{self.agent} completion returned empty output", transient=True)
        return reply


class CliAgentExecutor:
    """`Executor` that runs a CLI agent with the task text as its prompt."""

    def __init__(
        self,
        *,
        command_template: str,
        model: str = "",
        agent: str = "executor",
        timeout_seconds: float = 300.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.model = model
        self.agent = agent
        self.timeout_seconds = timeout_seconds
        self.env = env or {}

    def execute(self, task: str) -> ExecutionResult:
        output = run_cli_command(
            command_template=self.command_template,
            prompt=task,
            model=self.model,
            timeout_seconds=self.timeout_seconds,
            env=self.env,
        )
        if output.timed_out:
            raise ExecutionTimeout(f"CLI executor exceeded {self.timeout_seconds:.1f}s")
        metadata: dict[str, object] = {
            "exit_code": output.exit_code,
            "duration_seconds": round(output.duration, 3),
        }
        answer = output.stdout.strip()
        if output.exit_code != 0:
            classification = classify_backend_failure(
                agent=self.agent,
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )
            metadata["failure"] = classification.to_details(agent=self.agent)
            return ExecutionResult(
                answer=answer,
                success=False,
                error=_tail(output.stderr) or f"exit code {output.exit_code}",
                metadata=metadata,
            )
        if not answer:
            return ExecutionResult(answer="", success=False, error="empty output", metadata=metadata)
        return ExecutionResult(answer=answer, success=True, metadata=metadata)


def _build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("CLI command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise BackendRunError(
            "CLI command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise BackendRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError("CLI command template rendered empty command.", transient=False)
    return argv


def _terminate_process(process: subprocess.Popen[str]) -> tuple[str, str]:
    process.terminate()
    try:
        return process.communicate(timeout=2)
    except subprocess.TimeoutExpired:
        process.kill()
        return process.communicate()


def _tail(text: str, limit: int = 500) -> str:
    stripped = text.strip()
    return stripped[-limit:]
