"""CLI entry point for the review monitor.

Commands scrape products and reviews, run the queue manager, scan reviews for
policy violations and manage overrides, with rich progress output.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from review_monitor import __version__
from review_monitor.models.config import ConfigManager, MonitorConfig
from review_monitor.models.data_models import QueueStatus, ScanReport, ScrapeKind, ScrapeTask
from review_monitor.pipeline.output import JSONOutputFormatter
from review_monitor.pipeline.services import MonitorServices
from review_monitor.storage.database import Database


console = Console()


def _run(coro):
    """Run a coroutine, mapping interrupts and errors to exit codes."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)  # Standard exit code for SIGINT
    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        if "--debug" in sys.argv:
            console.print_exception()
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--database-url", help="Database URL (overrides config)")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.version_option(version=__version__, prog_name="review-monitor")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, database_url: Optional[str], log_level: Optional[str]) -> None:
    """
    Review Monitor - Amazon product and review monitoring.

    Examples:

        # Create tables
        $ review-monitor init-db

        # Scrape a product, then its reviews
        $ review-monitor scrape B000TEST01

        # Scan stored reviews and save the report
        $ review-monitor scan B000TEST01 --output out/report.json
    """
    cli_overrides = {
        "database_url": database_url,
        "log_level": log_level.upper() if log_level else None,
    }
    ctx.obj = ConfigManager(config_path).load_config(cli_overrides)


@cli.command("init-db")
@click.pass_obj
def init_db(config: MonitorConfig) -> None:
    """Create the store tables."""

    async def run():
        database = Database.from_config(config)
        try:
            await database.init()
        finally:
            await database.dispose()

    _run(run())
    console.print("[green]✓ Tables created[/green]")


@cli.command()
@click.argument("asins", nargs=-1, required=True)
@click.option("--reviews-only", is_flag=True, help="Scrape reviews only (one ASIN)")
@click.option("--no-chain", is_flag=True, help="Do not start review scrapes after products")
@click.pass_obj
def scrape(config: MonitorConfig, asins: List[str], reviews_only: bool, no_chain: bool) -> None:
    """Scrape products (and their reviews) to completion."""
    if reviews_only and len(asins) != 1:
        raise click.UsageError("--reviews-only takes exactly one ASIN")
    if not config.apify_token:
        raise click.UsageError("APIFY_TOKEN is not configured")
    if no_chain:
        config = config.model_copy(update={"chain_review_scrape": False})

    async def run() -> List[ScrapeTask]:
        async with MonitorServices(config) as services:
            kind = ScrapeKind.REVIEWS if reviews_only else ScrapeKind.PRODUCT
            with console.status(f"[cyan]Scraping {', '.join(asins)}..."):
                task_id = await services.orchestrator.start_scraping(list(asins), kind)
                return await services.orchestrator.wait_all(task_id)

    tasks = _run(run())
    _display_tasks(tasks)
    if any(task.error for task in tasks):
        sys.exit(1)


@cli.command()
@click.argument("asins", nargs=-1, required=True)
@click.option("--priority", "-p", type=int, default=0, help="Higher runs sooner")
@click.option("--reviews", is_flag=True, help="Queue review scrapes instead of products")
@click.pass_obj
def queue(config: MonitorConfig, asins: List[str], priority: int, reviews: bool) -> None:
    """Queue scrapes and process them until the queue drains."""
    if not config.apify_token:
        raise click.UsageError("APIFY_TOKEN is not configured")

    async def run():
        async with MonitorServices(config) as services:
            kind = ScrapeKind.REVIEWS if reviews else ScrapeKind.PRODUCT
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                bars = {}

                def on_change(items):
                    for item in items:
                        if item.id not in bars:
                            bars[item.id] = progress.add_task(f"[cyan]{item.asin}", total=100)
                        progress.update(
                            bars[item.id],
                            completed=item.progress,
                            description=f"[cyan]{item.asin} [{item.status.value}]",
                        )

                unsubscribe = services.queue.subscribe(on_change)
                await services.queue.enqueue(list(asins), priority=priority, kind=kind)
                services.queue.start()
                await services.queue.drain()
                unsubscribe()
            return services.queue.items(), services.queue.status()

    items, status = _run(run())
    table = Table(title="Queue Summary", show_header=False)
    table.add_column("State", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for state, count in status.items():
        table.add_row(state, str(count))
    console.print(table)
    for item in items:
        if item.status is QueueStatus.FAILED:
            console.print(f"[red]✗ {item.asin}[/red] after {item.attempts} attempts: {item.error}")


@cli.command()
@click.argument("asin")
@click.option("--mode", type=click.Choice(["batched", "single"]), help="Scan mode (overrides config)")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Save the JSON report here")
@click.pass_obj
def scan(config: MonitorConfig, asin: str, mode: Optional[str], output: Optional[Path]) -> None:
    """Scan a product's stored reviews for violations."""
    if not config.classifier_webhook_url:
        raise click.UsageError("CLASSIFIER_WEBHOOK_URL is not configured")

    async def run() -> ScanReport:
        async with MonitorServices(config) as services:
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                bar = progress.add_task(f"[cyan]Scanning {asin}...", total=100)
                return await services.scanner.scan_product(
                    asin,
                    mode=mode,
                    on_progress=lambda value: progress.update(bar, completed=value),
                )

    report = _run(run())
    formatter = JSONOutputFormatter()
    if output:
        formatter.save(formatter.format_scan_report(report), str(output))
    _display_scan(report, output)
    if report.error:
        sys.exit(1)


@cli.command()
@click.argument("asin")
@click.option("--all", "include_overridden", is_flag=True, help="Include overridden violations")
@click.pass_obj
def violations(config: MonitorConfig, asin: str, include_overridden: bool) -> None:
    """List stored violations for a product."""

    async def run():
        async with MonitorServices(config) as services:
            rows = await services.repository.list_violations(asin, include_overridden=include_overridden)
            active = await services.repository.count_active_violations(asin)
            return rows, active

    rows, active = _run(run())
    table = Table(title=f"Violations for {asin}")
    table.add_column("ID", justify="right")
    table.add_column("Review", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Severity")
    table.add_column("Action")
    table.add_column("Overridden", style="yellow")
    for row in rows:
        table.add_row(
            str(row["id"]),
            row["review_id"],
            row["violation_type"] or "",
            row["severity"] or "",
            row["action"] or "",
            row["overridden_by"] or "" if row["overridden"] else "",
        )
    console.print(table)
    console.print(f"[bold]Active violations:[/bold] {active}")


@cli.command()
@click.argument("review_id")
@click.option("--by", "user", required=True, help="Identity recorded on the override")
@click.pass_obj
def override(config: MonitorConfig, review_id: str, user: str) -> None:
    """Override a review's active violations."""

    async def run() -> int:
        async with MonitorServices(config) as services:
            return await services.repository.override_review_violations(review_id, user)

    count = _run(run())
    if not count:
        console.print(f"[yellow]No active violations for review {review_id}[/yellow]")
        sys.exit(1)
    console.print(f"[green]✓ Overrode {count} violation(s) on {review_id} as {user}[/green]")


@cli.command("mock-server")
@click.argument("kind", type=click.Choice(["apify", "classifier"]))
@click.option("--host", default="127.0.0.1")
@click.option("--port", type=int, default=8001)
def mock_server(kind: str, host: str, port: int) -> None:
    """Serve a local mock of the scraper API or the classifier webhook."""
    import uvicorn

    from review_monitor.mock_servers.app import create_app

    uvicorn.run(create_app(kind), host=host, port=port)


def _display_tasks(tasks: List[ScrapeTask]) -> None:
    table = Table(title="Scrape Tasks")
    table.add_column("Task", style="cyan")
    table.add_column("Kind")
    table.add_column("ASINs")
    table.add_column("Status", style="green")
    table.add_column("Error", style="red")
    for task in tasks:
        table.add_row(task.id, task.kind.value, ", ".join(task.asins), task.status.value, task.error or "")
    console.print(table)


def _display_scan(report: ScanReport, output_path: Optional[Path]) -> None:
    style = "green" if report.error is None else "red"
    console.print(f"\n[bold {style}]{report.message}[/bold {style}]\n")

    table = Table(title="Scan Statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Reviews", str(report.total_reviews))
    table.add_row("Submitted", str(report.submitted))
    table.add_row("Skipped", str(report.skipped))
    table.add_row("With violations", str(report.violations_found))
    table.add_row("Persist failures", str(report.persist_failures))
    for violation_type, count in sorted(report.by_type.items()):
        table.add_row(f"  {violation_type}", str(count))
    console.print(table)

    if output_path:
        console.print(f"[bold]Report saved to:[/bold] {output_path}")


if __name__ == "__main__":
    cli()
