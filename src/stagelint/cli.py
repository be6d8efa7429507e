from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import click

from stagelint import __version__
from stagelint.config import (
    CONFIG_FILENAMES,
    ConfigError,
    StagelintConfig,
    discover_config,
    load_config,
    save_config,
)
from stagelint.errors import StagelintError
from stagelint.runner import RunOptions, RunOutcome, run
from stagelint.scheduler import ConcurrencyPolicy

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def _resolve_config_path(root: Path, config_value: str | None) -> Path:
    if config_value is None:
        discovered = discover_config(root)
        if discovered is None:
            raise ConfigError(
                f"No configuration found. Create {CONFIG_FILENAMES[0]} with 'stagelint init'."
            )
        return discovered
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _render_event(event: dict[str, Any]) -> None:
    kind = event.get("event")
    if kind == "snapshot" and event.get("partial_staging"):
        click.echo("Hiding unstaged changes to partially staged files...")
    elif kind == "chain_start":
        click.echo(f"Running tasks for {event['pattern']} ({event['files']} file(s))...")
    elif kind == "step_result":
        mark = "ok" if event["exit_code"] == 0 else "failed"
        click.echo(f"  [{mark}] {event['command']}")
    elif kind == "chain_done" and event.get("error"):
        click.echo(f"  {event['pattern']}: {event['error']}")
    elif kind == "reconcile":
        click.echo("Applied task modifications.")
    elif kind == "rollback":
        click.echo("Restoring original state due to errors...")


def _report_failure(outcome: RunOutcome) -> None:
    failure = outcome.failure.value if outcome.failure else "unknown"
    click.echo(f"stagelint failed ({failure}): {outcome.message}", err=True)
    for pattern, result in outcome.chain_results.items():
        for step in result.steps:
            if step.succeeded:
                continue
            click.echo(f"\n{pattern} > {step.command}", err=True)
            output = (step.error or "") + step.stderr + step.stdout
            if output.strip():
                click.echo(output.rstrip(), err=True)


@click.group()
@click.version_option(__version__, prog_name="stagelint")
def cli() -> None:
    """Run linters and formatters against staged git changes."""


@cli.command("run")
@click.option("--config", "config_value", default=None, help="Path to the configuration file.")
@click.option(
    "--concurrency",
    "concurrency_value",
    default=None,
    help="'sequential', 'unbounded' or the maximum number of concurrent task chains.",
)
@click.option("--quiet", is_flag=True, default=False, help="Only report failures.")
@click.option("--shell", "use_shell", is_flag=True, default=False)
@click.option("--relative", is_flag=True, default=False, help="Pass repository-relative paths.")
@click.option("--debug", is_flag=True, default=False)
def run_command(
    config_value: str | None,
    concurrency_value: str | None,
    quiet: bool,
    use_shell: bool,
    relative: bool,
    debug: bool,
) -> None:
    configure_logging(logging.DEBUG if debug else logging.WARNING)
    cwd = Path.cwd().resolve()
    try:
        config = load_config(_resolve_config_path(cwd, config_value))
        concurrency = (
            ConcurrencyPolicy.parse(concurrency_value)
            if concurrency_value is not None
            else config.concurrency_policy()
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--concurrency") from exc
    except StagelintError as exc:
        raise click.ClickException(str(exc)) from exc

    settings = config.settings
    options = RunOptions(
        cwd=cwd,
        tasks=config.tasks,
        concurrency=concurrency,
        quiet=quiet,
        relative=relative or settings.relative,
        shell=use_shell or settings.shell,
        max_arg_length=settings.max_arg_length,
        step_timeout_seconds=settings.step_timeout_seconds or None,
        event_hook=_render_event,
    )
    try:
        outcome = run(options)
    except StagelintError as exc:
        raise click.ClickException(str(exc)) from exc

    if outcome.success:
        if outcome.skipped and not quiet:
            click.echo(outcome.message)
        return
    _report_failure(outcome)
    raise click.exceptions.Exit(1)


@cli.command("init")
@click.option("--config", "config_value", default=CONFIG_FILENAMES[0], show_default=True)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file.")
def init_command(config_value: str, force: bool) -> None:
    config_path = _resolve_config_path(Path.cwd().resolve(), config_value)
    if config_path.exists() and not force:
        raise click.ClickException(f"{config_path} already exists. Use --force to overwrite it.")
    save_config(config_path, StagelintConfig.sample())
    click.echo(f"Wrote {config_path}")


def main() -> None:
    cli()
