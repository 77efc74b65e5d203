"""CLI entrypoint for adaptive-dispatch."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from adaptive_dispatch import __version__
from adaptive_dispatch.dispatch.controllers import (
    DispatchCliController,
    HistoryCommand,
    PerformanceCommand,
    RecommendCommand,
    RunCommand,
)
from adaptive_dispatch.dispatch.errors import DispatchError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DispatchCliController()
CommandT = TypeVar("CommandT")

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite history path (default: ADAPTIVE_DISPATCH_DB_PATH).",
)
_EXECUTORS_OPTION = click.option(
    "--executors-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON file declaring executors (default: ADAPTIVE_DISPATCH_EXECUTORS_FILE).",
)


@click.group()
@click.version_option(version=__version__, prog_name="adaptive-dispatch")
@click.option("--verbose", "-v", is_flag=True, help="Log selection and retry decisions.")
def adaptive_dispatch(verbose: bool) -> None:
    """Learned task dispatch across interchangeable executors."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@adaptive_dispatch.command("run")
@click.argument("task")
@_DB_PATH_OPTION
@_EXECUTORS_OPTION
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
)
def run(task: str, db_path: Path | None, executors_file: Path | None, output_format: str) -> None:
    """Dispatch TASK, validate the answer and retry until accepted or out of attempts."""

    _emit_lines(
        _call(
            CONTROLLER.run,
            RunCommand(
                db_path=db_path,
                task=task,
                executors_file=executors_file,
                output_format=output_format,
            ),
        ),
    )


@adaptive_dispatch.command("recommend")
@click.argument("task")
@_DB_PATH_OPTION
@_EXECUTORS_OPTION
@click.option("--show-features", is_flag=True, help="Print the task feature vector.")
def recommend(task: str, db_path: Path | None, executors_file: Path | None, show_features: bool) -> None:
    """Show which executor would be chosen for TASK without running it."""

    _emit_lines(
        _call(
            CONTROLLER.recommend,
            RecommendCommand(
                db_path=db_path,
                task=task,
                executors_file=executors_file,
                show_features=show_features,
            ),
        ),
    )


@adaptive_dispatch.group()
def history() -> None:
    """Attempt history commands."""


@history.command("stats")
@_DB_PATH_OPTION
def history_stats(db_path: Path | None) -> None:
    """Show aggregate statistics over recorded attempts."""

    _emit_lines(_call(CONTROLLER.history_stats, HistoryCommand(db_path=db_path)))


@history.command("clear")
@_DB_PATH_OPTION
@click.confirmation_option(prompt="Delete all recorded attempts?")
def history_clear(db_path: Path | None) -> None:
    """Delete every recorded attempt."""

    _emit_lines(_call(CONTROLLER.history_clear, HistoryCommand(db_path=db_path)))


@adaptive_dispatch.command("performance")
@_DB_PATH_OPTION
@click.option("--executor", "executor_id", default=None, help="Limit to one executor id.")
def performance(db_path: Path | None, executor_id: str | None) -> None:
    """Show per-executor performance from the attempt history."""

    _emit_lines(
        _call(
            CONTROLLER.performance,
            PerformanceCommand(db_path=db_path, executor_id=executor_id),
        ),
    )


def _call(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except DispatchError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    adaptive_dispatch()
