# src/tracesmith/cli.py
"""tracesmith Command Line Interface.

Entry point for the tracesmith CLI tool.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError

from tracesmith import __version__
from tracesmith.core.config import TracesmithSettings, load_settings
from tracesmith.core.fingerprint import query_pattern
from tracesmith.core.logging import configure_logging
from tracesmith.core.retry import RetryConfig, RetryManager
from tracesmith.engine.service import MiningService
from tracesmith.routing.router import BanditRouter
from tracesmith.store.database import StoreDB
from tracesmith.store.sql import sql_stores

__all__ = ["app"]

app = typer.Typer(
    name="tracesmith",
    help="tracesmith: mine execution traces into verified deterministic workflows.",
    no_args_is_help=True,
)

_state: dict[str, bool] = {"verbose": False, "json_logs": False}

SettingsOption = typer.Option(
    None,
    "--settings",
    "-s",
    help="Path to settings YAML file (defaults apply when omitted).",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"tracesmith version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """tracesmith: mine execution traces into verified deterministic workflows."""
    _state["verbose"] = verbose
    _state["json_logs"] = json_logs


def _load(settings_path: Path | None) -> TracesmithSettings:
    """Load settings and configure logging, exiting with a message on bad config."""
    try:
        settings = load_settings(settings_path) if settings_path is not None else TracesmithSettings()
    except FileNotFoundError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.secho(f"  - {loc}: {error['msg']}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    configure_logging(
        json_output=_state["json_logs"] or settings.logging.json_output,
        level="DEBUG" if _state["verbose"] else settings.logging.level,
    )
    return settings


@app.command()
def mine(
    fingerprint: list[str] | None = typer.Option(
        None,
        "--fingerprint",
        "-f",
        help="Mine only these fingerprints (repeatable). Default: every fingerprint with traces.",
    ),
    settings_path: Path | None = SettingsOption,
) -> None:
    """Run one mining cycle and report the outcome per fingerprint."""
    settings = _load(settings_path)
    with StoreDB.from_settings(settings.store) as db:
        traces, _patterns, workflows, deployments, router_stats = sql_stores(db)
        retry_manager = RetryManager(RetryConfig.from_settings(settings.retry))
        service = MiningService(
            traces=traces,
            workflows=workflows,
            deployments=deployments,
            router=BanditRouter(router_stats, settings.router, retry_manager=retry_manager),
            settings=settings,
            retry_manager=retry_manager,
        )
        report = service.run_cycle(fingerprint or None)

    if not report.outcomes:
        typer.echo("No fingerprints to mine.")
        return
    for outcome in report.outcomes:
        color = typer.colors.GREEN if outcome.deployed else None
        line = f"{outcome.fingerprint}  {outcome.status.value}"
        if outcome.detail:
            line += f"  {outcome.detail}"
        typer.secho(line, fg=color)
    summary = ", ".join(f"{status.value}={count}" for status, count in sorted(report.counts.items()))
    typer.echo(f"Cycle complete: {summary}")


@app.command()
def stats(
    query: str = typer.Argument(..., help="Request text; normalized to its query pattern."),
    settings_path: Path | None = SettingsOption,
) -> None:
    """Show the arm posteriors recorded for a query."""
    settings = _load(settings_path)
    routing_key = query_pattern(query)
    with StoreDB.from_settings(settings.store) as db:
        current = sql_stores(db)[4].get(routing_key)

    if current is None:
        typer.echo(f"No routing statistics for {routing_key!r}.")
        return
    typer.echo(f"Query pattern: {routing_key} (version {current.version})")
    for arm, posterior in current.arms:
        typer.echo(f"  {arm:<40} alpha={posterior.alpha:<8g} beta={posterior.beta:<8g} mean={posterior.mean:.3f}")


@app.command("show-workflow")
def show_workflow(
    fingerprint: str = typer.Argument(..., help="Request fingerprint."),
    output_format: str = typer.Option("yaml", "--format", help="Output format: yaml or json."),
    settings_path: Path | None = SettingsOption,
) -> None:
    """Print the deployed workflow for a fingerprint."""
    if output_format not in ("yaml", "json"):
        typer.secho(f"Error: unknown format {output_format!r} (use yaml or json)", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)

    settings = _load(settings_path)
    with StoreDB.from_settings(settings.store) as db:
        workflow = sql_stores(db)[2].get(fingerprint)

    if workflow is None:
        typer.secho(f"No workflow deployed for {fingerprint}.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(1)

    data = workflow.to_dict()
    if output_format == "json":
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(yaml.safe_dump(data, sort_keys=False), nl=False)


if __name__ == "__main__":
    app()
