from __future__ import annotations

import logging
from pathlib import Path

from pydantic_core import to_jsonable_python
import typer
import yaml

from stepwise.config import Settings
from stepwise.logging_config import configure_logging
from stepwise.services.engine import ExecutionEngine
from stepwise.services.errors import StepFailed, StepwiseException
from stepwise.services.loader import load_plan_file
from stepwise.services.recipe import parse_recipe

logger = logging.getLogger(__name__)
app = typer.Typer(help="Stepwise provisioning executor", pretty_exceptions_show_locals=False)


def _echo_yaml_entity(entity: object) -> None:
    typer.echo(yaml.safe_dump(to_jsonable_python(entity, exclude_none=True), sort_keys=False), nl=False)


def _exit_for_domain_error(exc: StepwiseException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _exit_code_for(exc: StepFailed) -> int:
    # Signals surface as negative return codes.
    if 0 < exc.exit_code < 256:
        return exc.exit_code
    return 1


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


@app.callback()
def main(
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level (defaults to STEPWISE_LOG_LEVEL or INFO)."
    ),
) -> None:
    configure_logging(level=log_level)


@app.command("run")
def run(
    plan_path: Path = typer.Argument(..., help="YAML/JSON plan or Dockerfile-style recipe."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve and log steps without running them."),
    deadline: float | None = typer.Option(
        None, "--deadline", min=0.001, help="Overall deadline in seconds (defaults to STEPWISE_DEADLINE)."
    ),
) -> None:
    settings = _load_settings()
    try:
        plan = load_plan_file(plan_path)
    except StepwiseException as e:
        _exit_for_domain_error(e)

    engine = ExecutionEngine(dry_run=dry_run, default_shell=settings.shell)
    try:
        result = engine.run(plan, deadline=deadline if deadline is not None else settings.deadline)
    except StepFailed as e:
        logger.warning("Provisioning run failed at step %d", e.step_index)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=_exit_code_for(e))
    except StepwiseException as e:
        _exit_for_domain_error(e)

    _echo_yaml_entity(result)


@app.command("validate")
def validate(plan_path: Path = typer.Argument(..., help="YAML/JSON plan or Dockerfile-style recipe.")) -> None:
    try:
        plan = load_plan_file(plan_path)
    except StepwiseException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(plan)


@app.command("convert")
def convert(recipe_path: Path = typer.Argument(..., help="Dockerfile-style recipe.")) -> None:
    try:
        text = recipe_path.read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"Error: Unable to read recipe {recipe_path}: {e}", err=True)
        raise typer.Exit(code=1)
    try:
        document = parse_recipe(text)
    except StepwiseException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(document)


if __name__ == "__main__":
    app()
