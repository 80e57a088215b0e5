"""
Order assignment CLI.

Operational commands: schema setup, reconciliation, one-off monitoring
sweeps, queue inspection and health checks.
"""

import sys
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

app = typer.Typer(
    name="assignment",
    help="Order Assignment System CLI",
    add_completion=False,
)
console = Console()


# =============================================================================
# Database Commands
# =============================================================================

@app.command()
def db_init():
    """Create database tables."""
    from shared.infrastructure.db import engine
    from rest_api.models import Base

    console.print(f"[blue]Creating tables on: {engine.url.render_as_string(hide_password=True)}[/blue]")
    try:
        Base.metadata.create_all(bind=engine)
        console.print("[green]✓ Tables created/verified[/green]")
    except Exception as e:
        console.print(f"[red]✗ Schema creation failed: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def reconcile():
    """Recompute waiter load counters and purge stale queue entries."""
    from shared.infrastructure.db import get_db_context
    from rest_api.services.assignment import AssignmentEngine

    with get_db_context() as db:
        result = AssignmentEngine(db).reconcile()

    table = Table(title="Reconciliation")
    table.add_column("Action", style="cyan")
    table.add_column("Count", style="green")
    table.add_row("Waiters corrected", str(result["waiters_corrected"]))
    table.add_row("Stale queue entries removed", str(result["stale_queue_entries_removed"]))
    console.print(table)


# =============================================================================
# Assignment Commands
# =============================================================================

@app.command()
def monitor_once(
    publish: bool = typer.Option(False, "--publish", help="Publish events to Redis"),
):
    """Run a single monitoring cycle over every active branch."""
    import asyncio

    from rest_api.services.assignment import MonitoringLoop

    async def _run():
        publisher = None
        if publish:
            from shared.infrastructure.events import EventPublisher, get_redis_sync_client
            publisher = EventPublisher(get_redis_sync_client())

        loop = MonitoringLoop(publisher=publisher)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Sweeping branches...", total=None)
            return await loop.run_cycle(trigger="cli")

    summary = asyncio.run(_run())

    table = Table(title=f"Monitoring cycle {summary['cycle_id']}")
    table.add_column("Branch", style="cyan")
    table.add_column("Assigned", style="green")
    table.add_column("Orphans", style="yellow")
    table.add_column("Timeouts", style="yellow")
    table.add_column("Errors", style="red")

    for result in summary["branches"]:
        table.add_row(
            str(result["branch_id"]),
            str(result["assigned"]),
            str(result["orphans_resubmitted"]),
            str(result["timeouts_detected"]),
            "; ".join(result["errors"]) or "-",
        )

    console.print(table)
    console.print(f"[blue]Finished in {summary['duration_ms']}ms[/blue]")
    if summary["errors"]:
        raise typer.Exit(1)


@app.command()
def queue_show(
    branch_id: int = typer.Option(None, "--branch", "-b", help="Only this branch"),
    hotel_id: int = typer.Option(None, "--hotel", help="Only this hotel"),
):
    """Show queued orders in dequeue order."""
    from shared.infrastructure.db import get_db_context
    from rest_api.services.assignment import AssignmentQueue

    with get_db_context() as db:
        queue = AssignmentQueue(db)
        entries = queue.list_entries(branch_id=branch_id, hotel_id=hotel_id)
        stats = queue.stats(branch_id=branch_id, hotel_id=hotel_id)

    if not entries:
        console.print("[green]✓ Queue is empty[/green]")
        return

    table = Table(title=f"Assignment queue ({stats['total_queued']} orders)")
    table.add_column("Branch", style="cyan")
    table.add_column("Pos", style="cyan")
    table.add_column("Order", style="green")
    table.add_column("Priority", style="magenta")
    table.add_column("Waiting (min)", style="yellow")
    table.add_column("ETA (min)", style="yellow")

    for entry in entries:
        table.add_row(
            str(entry["branch_id"]),
            str(entry["position"]),
            str(entry["order_id"]),
            entry["priority"],
            str(entry["waiting_minutes"]),
            str(entry["estimated_wait_minutes"]),
        )

    console.print(table)


@app.command()
def reset_round_robin(
    hotel_id: int = typer.Option(None, "--hotel", help="Only branches of this hotel"),
    branch_id: int = typer.Option(None, "--branch", "-b", help="Only this branch"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Reset round-robin cursors."""
    from shared.infrastructure.db import get_db_context
    from rest_api.services.assignment import AssignmentEngine

    if hotel_id is None and branch_id is None and not yes:
        typer.confirm("Reset cursors for ALL branches?", abort=True)

    with get_db_context() as db:
        count = AssignmentEngine(db).reset_round_robin(hotel_id=hotel_id, branch_id=branch_id)

    console.print(f"[green]✓ Reset {count} cursor(s)[/green]")


# =============================================================================
# Health Commands
# =============================================================================

@app.command()
def health(
    url: str = typer.Option("http://localhost:8000", help="API base URL"),
):
    """Check system health."""
    import asyncio
    import time

    import httpx

    async def _health():
        table = Table(title="Service Health")
        table.add_column("Service", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Response Time", style="yellow")

        async with httpx.AsyncClient(timeout=5.0) as client:
            try:
                start = time.time()
                response = await client.get(f"{url}/api/health/detailed")
                elapsed = (time.time() - start) * 1000
                body = response.json()

                table.add_row("REST API", body.get("status", f"status {response.status_code}"), f"{elapsed:.0f}ms")
                for name, check in body.get("dependencies", {}).items():
                    table.add_row(f"  {name}", check.get("status", "?"), f"{check.get('latency_ms', '-')}ms")
            except Exception as e:
                table.add_row("REST API", f"✗ {type(e).__name__}", "-")

        # Check Redis directly
        try:
            from shared.infrastructure.events import close_redis_pool, get_redis_pool
            start = time.time()
            redis = await get_redis_pool()
            await redis.ping()
            elapsed = (time.time() - start) * 1000
            table.add_row("Redis", "✓ Healthy", f"{elapsed:.0f}ms")
            await close_redis_pool()
        except Exception as e:
            table.add_row("Redis", f"✗ {type(e).__name__}", "-")

        console.print(table)

    asyncio.run(_health())


@app.command()
def version():
    """Show version information."""
    table = Table(title="Order Assignment Version")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")

    table.add_row("API", "1.0.0")
    table.add_row("CLI", "1.0.0")
    table.add_row("Python", sys.version.split()[0])

    console.print(table)


if __name__ == "__main__":
    app()
