# src/rebatch/cli.py
"""rebatch Command Line Interface.

Entry point for the rebatch CLI tool.

Exit codes of `launch`:
    0   job COMPLETED
    1   job FAILED (or STOPPED)
    2   configuration or resource error, nothing was run
    3   job instance already complete
    4   job instance already running
    130 interrupted
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from rebatch import __version__
from rebatch.contracts.enums import JobStatus
from rebatch.contracts.errors import (
    ConfigurationError,
    JobAlreadyCompleteError,
    JobAlreadyRunningError,
    ResourceError,
    StateTransitionError,
)
from rebatch.contracts.parameters import JobParameters
from rebatch.core.config import RebatchSettings, load_settings

if TYPE_CHECKING:
    from rebatch.contracts.execution import JobExecution
    from rebatch.plugins.manager import PluginManager

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_ALREADY_COMPLETE = 3
EXIT_ALREADY_RUNNING = 4
EXIT_INTERRUPTED = 130

# Module-level singleton for plugin manager
_plugin_manager_cache: PluginManager | None = None


def _get_plugin_manager() -> PluginManager:
    """Get initialized plugin manager (singleton)."""
    global _plugin_manager_cache

    from rebatch.plugins.manager import PluginManager

    if _plugin_manager_cache is None:
        manager = PluginManager()
        manager.register_builtin_plugins()
        _plugin_manager_cache = manager
    return _plugin_manager_cache


app = typer.Typer(
    name="rebatch",
    help="rebatch: restartable, partitioned chunk-oriented batch jobs.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rebatch version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_CONFIG_ERROR)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


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
        exists=False,  # We handle existence check ourselves for better error message
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
) -> None:
    """rebatch: restartable, partitioned chunk-oriented batch jobs."""
    from rebatch.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _load_config(settings: str) -> RebatchSettings:
    """Load settings or exit with EXIT_CONFIG_ERROR and a readable message."""
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from None


def _exit_code(status: JobStatus) -> int:
    return EXIT_COMPLETED if status is JobStatus.COMPLETED else EXIT_FAILED


def _echo_execution(execution: JobExecution, output_format: str) -> None:
    if output_format == "json":
        typer.echo(json.dumps(_execution_dict(execution)))
        return

    typer.echo(
        f"{execution.job_name} #{execution.attempt} [{execution.job_execution_id}] {execution.status.value}: "
        f"read={execution.read_count} write={execution.write_count} skip={execution.skip_count}"
    )
    if execution.exit_message:
        typer.echo(f"  {execution.exit_message}")
    for step in execution.step_executions:
        typer.echo(
            f"  {step.step_name:24} {step.status.value:10} "
            f"read={step.read_count} write={step.write_count} skip={step.skip_count} "
            f"commits={step.counters.commit_count} rollbacks={step.counters.rollback_count}"
        )
        if step.exit_message and step.status.is_terminal and step.exit_message != execution.exit_message:
            typer.echo(f"      {step.exit_message}")


def _execution_dict(execution: JobExecution) -> dict[str, object]:
    return {
        "job_execution_id": execution.job_execution_id,
        "job_name": execution.job_name,
        "attempt": execution.attempt,
        "status": execution.status.value,
        "read_count": execution.read_count,
        "write_count": execution.write_count,
        "skip_count": execution.skip_count,
        "exit_message": execution.exit_message,
        "parameters": execution.parameters.to_text(),
        "steps": [
            {
                "step_name": step.step_name,
                "status": step.status.value,
                **step.counters.as_dict(),
                "exit_message": step.exit_message,
            }
            for step in execution.step_executions
        ],
    }


@app.command()
def launch(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    param: list[str] | None = typer.Option(
        None,
        "--param",
        "-p",
        help="Job parameter as key=value, key(type)=value, or -key=value (non-identifying). Repeatable.",
    ),
    next_instance: bool = typer.Option(
        False,
        "--next",
        help="Increment run.id to force a new job instance.",
    ),
    job: str | None = typer.Option(
        None,
        "--job",
        "-j",
        help="Job name (default: job.name from settings).",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Launch a job, or restart its last failed execution."""
    from rebatch.cli_helpers import build_orchestrator

    config = _load_config(settings)
    job_name = job or config.job.name

    defaults = [f"{key}={value}" for key, value in config.job.parameters.items()]
    try:
        parameters = JobParameters.parse([*defaults, *(param or [])])
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from None

    try:
        runtime = build_orchestrator(config, _get_plugin_manager())
    except ConfigurationError as e:
        typer.echo(f"Error instantiating plugins: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from None

    try:
        orchestrator = runtime.orchestrator
        if next_instance:
            parameters = orchestrator.next_parameters(job_name, parameters)
        execution = orchestrator.launch(job_name, parameters)
    except (ConfigurationError, ResourceError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from None
    except JobAlreadyCompleteError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_ALREADY_COMPLETE) from None
    except JobAlreadyRunningError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_ALREADY_RUNNING) from None
    except KeyboardInterrupt:
        typer.echo("Interrupted; the execution was marked STOPPED and can be restarted.", err=True)
        raise typer.Exit(EXIT_INTERRUPTED) from None
    finally:
        runtime.close()

    _echo_execution(execution, output_format)
    raise typer.Exit(_exit_code(execution.status))


@app.command()
def status(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    job: str | None = typer.Option(
        None,
        "--job",
        "-j",
        help="Job name (default: job.name from settings).",
    ),
    limit: int = typer.Option(
        10,
        "--limit",
        "-n",
        min=1,
        help="Show at most this many executions, newest first.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Show the executions of a job and their steps."""
    from rebatch.core.state.database import StateDB
    from rebatch.core.state.store import ExecutionStateStore

    config = _load_config(settings)
    job_name = job or config.job.name

    with StateDB.from_url(config.state.url, echo=config.state.echo) as db:
        executions = ExecutionStateStore(db).list_job_executions(job_name, limit=limit)

    if not executions:
        typer.echo(f"No executions found for job '{job_name}'.")
        return
    if output_format == "json":
        typer.echo(json.dumps([_execution_dict(execution) for execution in executions]))
        return
    for execution in executions:
        _echo_execution(execution, output_format)


@app.command()
def abandon(
    job_execution_id: str = typer.Argument(..., help="ID of the execution to mark FAILED."),
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Mark a stale running execution FAILED so that its job can be restarted.

    Only use this when the process that owned the execution is gone.
    """
    from rebatch.core.state.database import StateDB
    from rebatch.core.state.store import ExecutionStateStore

    config = _load_config(settings)

    with StateDB.from_url(config.state.url, echo=config.state.echo) as db:
        store = ExecutionStateStore(db)
        execution = store.get_job_execution(job_execution_id)
        if execution is None:
            typer.echo(f"Error: Unknown job execution: {job_execution_id}", err=True)
            raise typer.Exit(EXIT_FAILED)
        try:
            abandoned = store.abandon_job_execution(job_execution_id, "Abandoned: owning process is no longer running")
        except StateTransitionError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(EXIT_FAILED) from None

    typer.echo(f"Execution {abandoned.job_execution_id} of '{abandoned.job_name}' marked {abandoned.status.value}.")


plugins_app = typer.Typer(help="Plugin management commands.")
app.add_typer(plugins_app, name="plugins")


@plugins_app.command("list")
def plugins_list(
    plugin_type: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help="Filter by plugin type (source, transform, sink).",
    ),
) -> None:
    """List available plugins."""
    from rebatch.plugins.manager import PLUGIN_KINDS

    if plugin_type and plugin_type not in PLUGIN_KINDS:
        typer.echo(f"Error: Invalid type '{plugin_type}'.", err=True)
        typer.echo(f"Valid types: {', '.join(sorted(PLUGIN_KINDS))}", err=True)
        raise typer.Exit(1)

    specs = _get_plugin_manager().list_specs()
    for kind in [plugin_type] if plugin_type else PLUGIN_KINDS:
        typer.echo(f"\n{kind.upper()}S:")
        matching = [spec for spec in specs if spec.kind == kind]
        if not matching:
            typer.echo("  (none available)")
        for spec in matching:
            typer.echo(f"  {spec.name:20} {spec.version:8} - {spec.description}")

    typer.echo()  # Final newline


if __name__ == "__main__":
    app()
