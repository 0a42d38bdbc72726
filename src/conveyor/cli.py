"""Conveyor Command Line Interface.

Entry point for the conveyor CLI tool.
"""

from __future__ import annotations

from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from conveyor import __version__
from conveyor.contracts import ConfigurationError, PipelineStep, RunSummary, WorkItem
from conveyor.core.config import ConveyorSettings, load_settings, resolve_config
from conveyor.core.logging import get_logger
from conveyor.engine import CredentialManager, RetryConfig, RetryManager, RollingScheduler, anonymous_provider
from conveyor.plugins.clients.brightcove import BrightcoveClient
from conveyor.plugins.manager import PluginManager
from conveyor.plugins.sinks.csv_ledger import CSVLedgerWriter
from conveyor.plugins.sources.csv_source import CSVRecordSource

__all__ = [
    "app",
    "load_settings",
]

logger = get_logger(__name__)

app = typer.Typer(
    name="conveyor",
    help="Conveyor: resumable rolling migration of remote media assets.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"conveyor version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


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
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
    log_file: Path | None = typer.Option(
        None,
        "--log-file",
        help="Also append every log event to this file as JSON lines.",
    ),
) -> None:
    """Conveyor: resumable rolling migration of remote media assets."""
    from conveyor.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO", log_file=log_file)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")
    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")
    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", padding=(0, 1)))


def _load_settings_or_exit(settings: Path) -> ConveyorSettings:
    """Load settings, rendering every failure as a panel and exiting 1."""
    settings_path = settings.expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must precede ValueError: ValidationError is a ValueError
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None
    except ValueError as e:
        _format_validation_error(title="Configuration Error", message=str(e))
        raise typer.Exit(1) from None


def _load_items(source: CSVRecordSource) -> list[WorkItem]:
    try:
        return list(source.load())
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _print_summary(step: PipelineStep, summary: RunSummary) -> None:
    typer.echo(f"\n=== {step.value} summary ===")
    typer.echo(f"Total:     {summary.total}")
    typer.echo(f"Succeeded: {summary.succeeded}")
    typer.echo(f"Skipped:   {summary.skipped}")
    typer.echo(f"Failed:    {summary.failed}")
    typer.echo(f"Timed out: {summary.timed_out}")


@app.command()
def run(
    settings: Path = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    step: PipelineStep = typer.Option(
        PipelineStep.ALL,
        "--step",
        help="Pipeline step to run. 'all' (the default) runs video, then poster.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Load settings and input, then show what would run without executing.",
    ),
) -> None:
    """Run one or more migration steps over the input file.

    Per-item failures are reported in the summary and do not change the
    exit code; only configuration errors exit non-zero.
    """
    config = _load_settings_or_exit(settings)
    items = _load_items(CSVRecordSource.from_settings(config.source))
    steps = step.expand()

    manager = PluginManager()
    manager.register_builtin_plugins()

    if dry_run:
        typer.echo("Dry run mode - would execute:")
        typer.echo(f"  Input: {config.source.path} ({len(items)} items)")
        for s in steps:
            limits = config.steps.for_step(s)
            typer.echo(f"  Step {s.value}: concurrency={limits.concurrency}, deadline={limits.deadline_seconds:g}s")
        return

    concurrency = max(config.steps.for_step(s).concurrency for s in steps)
    client = BrightcoveClient(
        config.brightcove,
        RetryManager(RetryConfig.from_settings(config.retry)),
        max_connections=concurrency,
    )
    try:
        for s in steps:
            _run_step(s, config, manager, client, items)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        client.close()


def _run_step(
    step: PipelineStep,
    config: ConveyorSettings,
    manager: PluginManager,
    client: BrightcoveClient,
    items: list[WorkItem],
) -> None:
    processor_cls = manager.get_processor_by_name(step.value)
    processor = processor_cls(client, config.output)
    credentials = CredentialManager(client.fetch_token if processor_cls.requires_credential else anonymous_provider)

    ledger: CSVLedgerWriter | None = None
    if processor_cls.writes_ledger:
        ledger = CSVLedgerWriter(config.ledger.path, encoding=config.source.encoding)
        ledger.initialize(config.ledger.columns)

    try:
        scheduler = RollingScheduler(
            processor,
            credentials,
            config.steps.for_step(step),
            ledger=ledger,
            ledger_columns=config.ledger.columns if ledger is not None else None,
        )
        outcomes = scheduler.run(items)
    finally:
        if ledger is not None:
            ledger.close()

    logger.info("step_completed", step=step.value, **scheduler.get_stats())
    _print_summary(step, RunSummary.from_outcomes(outcomes))


@app.command()
def validate(
    settings: Path = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate configuration and print it resolved, with secrets masked."""
    config = _load_settings_or_exit(settings)
    typer.echo("Configuration valid.")
    typer.echo(resolve_config(config))


@app.command()
def webroots(
    input_path: Path = typer.Option(
        ...,
        "--input",
        "-i",
        help="Input CSV file.",
    ),
    prefix: str = typer.Option(
        "webroot_",
        "--prefix",
        help="Only list routing keys starting with this prefix.",
    ),
    target_field: str = typer.Option(
        "webroot",
        "--target-field",
        help="Column holding the routing key.",
    ),
    id_field: str = typer.Option(
        "bc_id",
        "--id-field",
        help="Column holding the remote identifier.",
    ),
) -> None:
    """List the distinct routing keys in an input file."""
    source = CSVRecordSource(input_path, id_field=id_field, target_field=target_field)
    keys = sorted({item.target_key for item in _load_items(source) if item.target_key.startswith(prefix)})
    for key in keys:
        typer.echo(key)
    typer.echo(f"\nTotal unique routing keys: {len(keys)}")


if __name__ == "__main__":
    app()
