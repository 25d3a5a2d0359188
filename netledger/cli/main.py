"""
netledger CLI

Click-based command-line interface for inspecting networks, content and
artifacts.
"""

import json
import sys
import uuid
from typing import Any, Dict

import click
from rich.console import Console

from netledger import __version__
from netledger.errors import ConfigError, NetLedgerError
from netledger.logging import (
    EXIT_CONFIG_ERROR,
    EXIT_RUNTIME_ERROR,
    EXIT_STATE_REJECTED,
    get_logger,
    init_cli_logging,
    json_logging_from_env,
    set_log_context,
)
from netledger.services.results import OperationResult

logger = get_logger(__name__)
console = Console()


def get_runtime(ctx: click.Context):
    """Open (once per invocation) the runtime for the configured database."""
    runtime = ctx.obj.get("RUNTIME")
    if runtime is None:
        from netledger.config import load_config
        from netledger.runtime import Runtime

        try:
            config = load_config()
        except ConfigError as exc:
            click.echo(f"✗ Configuration error: {exc}", err=True)
            sys.exit(EXIT_CONFIG_ERROR)
        if ctx.obj.get("DB_PATH"):
            config = config.model_copy(update={"db_path": ctx.obj["DB_PATH"], "db_url": None})
        request_id = uuid.uuid4().hex[:12]
        set_log_context(request_id=request_id)
        runtime = Runtime.open(config, request_id=request_id)
        ctx.obj["RUNTIME"] = runtime
        ctx.call_on_close(runtime.close)
    return runtime


def wants_json(ctx: click.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("JSON"))


def echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def report_result(ctx: click.Context, result: OperationResult, payload: Dict[str, Any]) -> None:
    """Print an operation outcome and exit non-zero when it was rejected."""
    if wants_json(ctx):
        body = {"success": result.success}
        if result.error_code is not None:
            body["errorCode"] = result.error_code.value
        if result.message:
            body["message"] = result.message
        body.update(payload)
        echo_json(body)
    elif result.success:
        console.print(f"[green]✓[/green] {result.message or 'OK'}")
    else:
        console.print(f"[red]✗ {result.error_code.value}[/red]: {result.message}")
    if not result.success:
        sys.exit(EXIT_STATE_REJECTED)


def fail(ctx: click.Context, exc: Exception) -> None:
    """Report an unexpected error the way every command does."""
    if isinstance(exc, NetLedgerError):
        logger.debug("command_failed", extra=exc.log_fields())
    else:
        logger.exception("command_failed")
    if wants_json(ctx):
        echo_json({"success": False, "error": str(exc)})
    else:
        click.echo(f"✗ Error: {exc}", err=True)
    sys.exit(EXIT_RUNTIME_ERROR)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--db-path", type=click.Path(dir_okay=False), default=None, help="SQLite database file")
@click.pass_context
def cli(ctx, verbose, json_output, db_path):
    """netledger - task network ledger and artifact store."""
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose
    ctx.obj["JSON"] = json_output
    ctx.obj["DB_PATH"] = db_path
    init_cli_logging(level="DEBUG" if verbose else "WARNING", json_output=json_logging_from_env())


from netledger.cli.networks import directive, network  # noqa: E402
from netledger.cli.content import artifact, content  # noqa: E402

cli.add_command(network)
cli.add_command(directive)
cli.add_command(content)
cli.add_command(artifact)


@cli.command()
def version():
    """Show version information."""
    click.echo(f"netledger v{__version__}")


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the database schema."""
    try:
        runtime = get_runtime(ctx)
    except Exception as exc:
        fail(ctx, exc)
        return
    config = runtime.context.config
    target = "postgres" if config.is_postgres else str(config.db_path)
    if wants_json(ctx):
        echo_json({"success": True, "database": target})
    else:
        console.print(f"[green]✓[/green] Schema ready at {target}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
