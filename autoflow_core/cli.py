"""Autoflow CLI - Main entry point."""

import asyncio
import json
import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .conditions import ConditionEvaluator
from .config import get_settings
from .database import DatabaseManager
from .graph import Automation, GraphValidator, Severity
from .logging import configure_logging

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="autoflow")
@click.option("--log-level", envvar="LOG_LEVEL", default=None, help="Log level (default from settings)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str], debug: bool):
    """Autoflow - run visual automation flows.

    \b
    Examples:
      autoflow validate welcome_flow.json
      autoflow init-db
      autoflow serve --port 8090
    """
    ctx.ensure_object(dict)
    settings = get_settings()
    configure_logging(
        level="DEBUG" if debug else (log_level or settings.log_level),
        fmt=settings.log_format,
    )
    ctx.obj["settings"] = settings


@cli.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table",
              help="Output format")
@click.pass_context
def validate(ctx: click.Context, path: str, output: str):
    """Validate an automation graph exported from the builder.

    PATH is a JSON file with ``nodes`` and ``edges`` and optionally
    ``trigger`` and ``channelId``. Exits with status 1 when the graph has
    errors; warnings alone pass.
    """
    settings = ctx.obj["settings"]

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        automation = Automation.from_dict({"tenantId": "local", "name": path, **data})
    except ValueError as e:
        console.print(f"[red]✗[/red] Cannot read {path}: {e}")
        sys.exit(1)

    validator = GraphValidator(
        evaluator=ConditionEvaluator.from_settings(settings.engine),
        max_nodes=settings.engine.max_nodes_per_automation,
    )
    result = validator.validate(automation)

    if output == "json":
        click.echo(json.dumps({
            "valid": result.valid,
            "issues": [issue.to_dict() for issue in result.issues],
        }, indent=2))
    else:
        if result.issues:
            table = Table(title=f"Issues in {path}")
            table.add_column("Severity")
            table.add_column("Code", style="cyan")
            table.add_column("Node")
            table.add_column("Message")
            for issue in result.issues:
                color = "red" if issue.severity == Severity.ERROR else "yellow"
                table.add_row(
                    f"[{color}]{issue.severity.value}[/{color}]",
                    issue.code.value,
                    issue.node_id or issue.edge_id or "-",
                    issue.message,
                )
            console.print(table)

        if result.valid:
            console.print(
                f"[green]✓[/green] {len(automation.nodes)} nodes, "
                f"{len(automation.edges)} edges, {len(result.warnings)} warnings"
            )
        else:
            console.print(f"[red]✗[/red] {len(result.errors)} errors")

    if not result.valid:
        sys.exit(1)


@cli.command("init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first")
@click.pass_context
def init_db(ctx: click.Context, drop: bool):
    """Create the database tables."""
    settings = ctx.obj["settings"]

    async def _init() -> None:
        db = DatabaseManager.from_settings(settings.database)
        try:
            if drop:
                await db.drop_tables()
            await db.create_tables()
        finally:
            await db.close()

    asyncio.run(_init())
    console.print(f"[green]✓[/green] Tables ready at {settings.database.url}")


@cli.command("worker")
@click.option("--interval", type=float, default=None, help="Seconds between scheduler ticks")
@click.pass_context
def worker(ctx: click.Context, interval: Optional[float]):
    """Resume due runs until interrupted."""
    from .engine import SchedulerWorker
    from .runtime import engine_context

    settings = ctx.obj["settings"]
    interval = interval or settings.scheduler.tick_interval_s

    async def _work() -> None:
        async with engine_context(settings) as runtime:
            await SchedulerWorker(runtime.engine.scheduler, interval).run_forever()

    console.print(f"Scheduler worker ticking every {interval}s (Ctrl+C to stop)")
    try:
        asyncio.run(_work())
    except KeyboardInterrupt:
        console.print("Worker stopped")


@cli.command("serve")
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Run the HTTP API with the scheduler worker."""
    import uvicorn

    from .api import create_app

    settings = ctx.obj["settings"]
    uvicorn.run(
        create_app(settings=settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
