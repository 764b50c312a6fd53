"""
ecsview CLI - main entry point.

Typer-based CLI. The root command verifies AWS credentials, fetches the
initial fleet snapshot and launches the interactive UI; ``version`` prints
the installed version.
"""

import asyncio
import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from textual.logging import TextualHandler

from . import config
from .aggregator import SnapshotPublisher, fetch_all_services
from .gateway import EcsGateway, GatewayError
from .metrics import CloudWatchMetrics
from .models import Snapshot
from .presenter import ServicePresenter
from .ui import EcsViewApp

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="ecsview",
    help="ecsview - view and scale AWS ECS services from the terminal",
    add_completion=False,
)

# Rich console for pre-UI output
console = Console()


def _setup_logging(verbose: bool, log_file: Optional[str]) -> None:
    """Route logs away from the terminal, which the UI owns."""
    handlers: list[logging.Handler] = [TextualHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=config.LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    profile: Optional[str] = typer.Option(
        None,
        "--profile",
        "-p",
        envvar="AWS_PROFILE",
        help="AWS profile (environment) to use",
    ),
    region: Optional[str] = typer.Option(
        None,
        "--region",
        "-r",
        help="AWS region override",
    ),
    interval: float = typer.Option(
        config.POLL_INTERVAL_SECONDS,
        "--interval",
        "-i",
        min=1.0,
        help="Seconds between refreshes",
    ),
    metrics: bool = typer.Option(
        config.METRICS_ENABLED,
        "--metrics/--no-metrics",
        help="Fetch CPU/memory utilization from CloudWatch",
    ),
    log_file: Optional[str] = typer.Option(
        config.LOG_FILE,
        "--log-file",
        help="Also write logs to this file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging (DEBUG level)",
    ),
):
    """
    Launch the interactive service list.

    Confirms the AWS identity, loads every service of every cluster and
    opens the UI, which refreshes on a fixed interval.
    """
    if ctx.invoked_subcommand is not None:
        return

    _setup_logging(verbose, log_file)

    try:
        gateway = EcsGateway(profile=profile, region=region)
        if metrics:
            gateway.metrics = CloudWatchMetrics.from_session(gateway.session)

        console.print("🔐 [bold]Checking AWS identity...[/bold]")
        identity = gateway.verify_identity()
        console.print(f"   [cyan]{identity['arn']}[/cyan]")

        console.print("🔍 [bold]Fetching services...[/bold]")
        records = asyncio.run(fetch_all_services(gateway))
    except GatewayError as e:
        console.print(f"\n❌ [bold red]Error:[/bold red] {e}\n", style="red")
        logger.error(f"Startup failed: {e}", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n⚠️  [yellow]Interrupted by user[/yellow]\n")
        sys.exit(130)

    publisher = SnapshotPublisher(Snapshot(services=tuple(records)))
    presenter = ServicePresenter(gateway, publisher)

    EcsViewApp(presenter, interval=interval, identity=identity["arn"]).run()


@app.command()
def version():
    """Show version information."""
    from . import __version__
    console.print(f"ecsview version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
