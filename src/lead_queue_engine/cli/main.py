"""Main CLI entry point for the lqe command."""

import functools
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..analytics.metrics import MetricsAggregator
from ..core.config import QueueConfigManager
from ..core.errors import LeadQueueError, LedgerIntegrityFault
from ..distribution.distributor import DistributionResult, LeadDistributor
from ..storage.database import QueueDatabase
from ..storage.models import AgentStatus, DistributionMode, LeadSource, LeadStatus

console = Console()


def get_config_manager() -> QueueConfigManager:
    path = os.getenv("LQE_CONFIG_PATH")
    return QueueConfigManager(Path(path) if path else None)


def get_db(db_path: Optional[str] = None) -> QueueDatabase:
    """Get database instance."""
    db_path = db_path or os.getenv("LQE_DATABASE_PATH")
    path = Path(db_path) if db_path else None
    return QueueDatabase(path)


def get_distributor(db_path: Optional[str] = None) -> LeadDistributor:
    return LeadDistributor(get_db(db_path), get_config_manager().config)


def reports_errors(func):
    """Print domain errors instead of a traceback and exit non-zero."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (LeadQueueError, ValueError) as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
    return wrapper


def _print_result(result: DistributionResult):
    lead = result.lead
    if result.agent_id and lead.status == LeadStatus.RESERVED:
        console.print(
            f"[green]Lead {lead.lead_id} reserved for {result.agent_id}[/green] "
            f"until {lead.reserved_until.strftime('%H:%M:%S')}"
        )
    elif result.pending_manual_assignment:
        console.print(f"[yellow]Lead {lead.lead_id} is AVAILABLE: no eligible agent, pending manual assignment[/yellow]")
    else:
        console.print(f"Lead {lead.lead_id} is {lead.status.value}")


@click.group()
@click.version_option(version=__version__, prog_name="lqe")
def cli():
    """Lead Queue Engine - score-ranked lead distribution.

    \b
    Quick Start:
      lqe init                                   # Initialize database
      lqe join alice && lqe join bob             # Agents join the queue
      lqe lead create prop-1 contact-1           # Distribute a lead
      lqe lead accept <lead_id> alice            # Accept the reservation
      lqe ranking                                # View the queue
    """
    pass


# ============================================================================
# CORE COMMANDS
# ============================================================================

@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def migrate(db_path: Optional[str]):
    """Run pending database migrations."""
    from ..storage.migrations import run_migrations

    db = get_db(db_path)
    count = run_migrations(str(db.db_path))
    if count:
        console.print(f"[green]Applied {count} migration(s)[/green]")
    else:
        console.print("[dim]No pending migrations[/dim]")


@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def init(db_path: Optional[str]):
    """Initialize the queue database."""
    db = get_db(db_path)

    try:
        from ..storage.migrations import run_migrations
        run_migrations(str(db.db_path))
    except Exception as e:
        console.print(f"[yellow]Migration note: {e}[/yellow]")

    console.print(Panel.fit(
        f"[green]✓ Database initialized![/green]\n\n"
        f"Location: [cyan]{db.db_path}[/cyan]\n\n"
        f"[bold]Next steps:[/bold]\n"
        f"1. [yellow]lqe join <agent_id>[/yellow]\n"
        f"2. [yellow]lqe lead create <property_ref> <contact_ref>[/yellow]\n"
        f"3. [yellow]lqe serve[/yellow]\n\n"
        f"[dim]Run 'lqe --help' for all commands[/dim]",
        title="Lead Queue Engine"
    ))


@cli.command()
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Update a config field")
def config(assignments):
    """Show or update queue configuration."""
    manager = get_config_manager()
    if assignments:
        changes = {}
        for item in assignments:
            key, sep, raw = item.partition("=")
            if not sep:
                raise click.BadParameter(f"Expected KEY=VALUE, got {item}")
            changes[key.strip()] = _parse_value(raw.strip())
        try:
            manager.update(**changes)
        except (KeyError, ValueError) as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        console.print(f"[green]Saved {manager.config_path}[/green]")

    table = Table(title="Queue configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in manager.config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


def _parse_value(raw: str):
    if raw.lower() in ("none", "null", ""):
        return None
    if raw.lower() in ("true", "false"):
        return raw.lower() == "true"
    try:
        return int(raw)
    except ValueError:
        return raw


# ============================================================================
# AGENTS
# ============================================================================

@cli.command()
@click.argument("agent_id")
@click.option("--team", default="default", help="Team id")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def join(agent_id: str, team: str, db_path: Optional[str]):
    """Add an agent to the distribution queue."""
    distributor = get_distributor(db_path)
    entry = distributor.join_queue(agent_id, team)
    position = distributor.ranking.position_of(agent_id)
    console.print(f"[green]✓ {entry.agent_id}[/green] is in the {entry.team_id} queue (position {position})")


@cli.command("status")
@click.argument("agent_id")
@click.argument("new_status", type=click.Choice([s.value for s in AgentStatus]))
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def set_status(agent_id: str, new_status: str, db_path: Optional[str]):
    """Activate or deactivate an agent."""
    distributor = get_distributor(db_path)
    distributor.set_status(agent_id, AgentStatus(new_status))
    console.print(f"[green]✓ {agent_id} is now {new_status}[/green]")


@cli.command()
@click.argument("agent_id")
@click.option("--set", "new_score", type=int, help="Set an absolute score")
@click.option("--adjust", type=int, help="Add (or subtract) points")
@click.option("--reason", "-r", help="Why the score is changing (required with --set/--adjust)")
@click.option("--reconcile", is_flag=True, help="Repair the cached score from the ledger")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def score(
    agent_id: str,
    new_score: Optional[int],
    adjust: Optional[int],
    reason: Optional[str],
    reconcile: bool,
    db_path: Optional[str]
):
    """Show or change an agent's score."""
    distributor = get_distributor(db_path)
    ledger = distributor.ledger

    if new_score is not None:
        distributor.set_score(agent_id, new_score, reason or "")
    elif adjust is not None:
        distributor.adjust_score(agent_id, adjust, reason or "")

    if reconcile and ledger.reconcile(agent_id):
        console.print("[yellow]Cached score repaired from the ledger (audit recorded)[/yellow]")

    cached = ledger.cached_score(agent_id)
    try:
        ledger.verify(agent_id)
        check = "[green]consistent[/green]"
    except LedgerIntegrityFault as e:
        check = f"[red]diverged (ledger {e.ledger})[/red]"

    console.print(f"[bold]{agent_id}[/bold]: score {cached} ({check}), "
                  f"position {distributor.ranking.position_of(agent_id) or '-'}")


@cli.command()
@click.option("--team", default="default", help="Team id")
@click.option("--db", "db_path", help="Custom database path")
def ranking(team: str, db_path: Optional[str]):
    """Show the queue in rank order."""
    distributor = get_distributor(db_path)
    entries = distributor.ranking.entries(team)

    if not entries:
        console.print("[yellow]No active agents in the queue.[/yellow]")
        return

    table = Table(title=f"Queue: {team} ({len(entries)} active)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Agent", style="cyan")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Active", justify="right")
    table.add_column("Accepted", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Expired", justify="right")
    table.add_column("Avg response", justify="right")

    for entry in entries:
        avg = f"{entry.avg_response_time:.0f}s" if entry.avg_response_time is not None else "-"
        table.add_row(
            str(entry.position),
            entry.agent_id,
            str(entry.score),
            str(entry.active_lead_count),
            str(entry.total_accepted),
            str(entry.total_rejected),
            str(entry.total_expired),
            avg,
        )

    console.print(table)


@cli.command()
@click.argument("agent_id")
@click.option("--limit", "-n", default=20, help="Number of entries to show")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def history(agent_id: str, limit: int, db_path: Optional[str]):
    """Show an agent's score ledger, newest first."""
    distributor = get_distributor(db_path)
    distributor.roster.get(agent_id)
    entries = list(distributor.ledger.history(agent_id, limit=limit))

    if not entries:
        console.print(f"[yellow]No ledger entries for {agent_id}[/yellow]")
        return

    table = Table(title=f"Score history: {agent_id}")
    table.add_column("When", style="dim")
    table.add_column("Action")
    table.add_column("Points", justify="right", style="bold")
    table.add_column("Lead")
    table.add_column("Description", max_width=40)

    for entry in entries:
        color = "green" if entry.points >= 0 else "red"
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.action.value,
            f"[{color}]{entry.points:+d}[/{color}]",
            entry.lead_id or "",
            entry.description or "",
        )

    console.print(table)


# ============================================================================
# LEADS
# ============================================================================

@cli.group()
def lead():
    """Create and act on leads."""
    pass


@lead.command("create")
@click.argument("property_ref")
@click.argument("contact_ref")
@click.option("--referrer", help="Agent who captured the lead")
@click.option("--mode", type=click.Choice([m.value for m in DistributionMode]), help="Override the team's mode")
@click.option("--team", default="default", help="Team id")
@click.option("--source", type=click.Choice([s.value for s in LeadSource]), help="board or direct")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def lead_create(
    property_ref: str,
    contact_ref: str,
    referrer: Optional[str],
    mode: Optional[str],
    team: str,
    source: Optional[str],
    db_path: Optional[str]
):
    """Create a lead and distribute it."""
    distributor = get_distributor(db_path)
    result = distributor.create_lead(
        property_ref,
        contact_ref,
        referrer_agent_id=referrer,
        distribution_mode=DistributionMode(mode) if mode else None,
        team_id=team,
        source=LeadSource(source) if source else None,
    )
    _print_result(result)


@lead.command("accept")
@click.argument("lead_id")
@click.argument("agent_id")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def lead_accept(lead_id: str, agent_id: str, db_path: Optional[str]):
    """Accept a reservation."""
    distributor = get_distributor(db_path)
    distributor.accept(lead_id, agent_id)
    console.print(f"[green]✓ Lead {lead_id} accepted by {agent_id}[/green]")


@lead.command("reject")
@click.argument("lead_id")
@click.argument("agent_id")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def lead_reject(lead_id: str, agent_id: str, db_path: Optional[str]):
    """Reject a reservation; the lead moves to the next agent."""
    distributor = get_distributor(db_path)
    result = distributor.reject(lead_id, agent_id)
    console.print(f"Lead {lead_id} rejected by {agent_id}")
    _print_result(result)


@lead.command("assign")
@click.argument("lead_id")
@click.argument("agent_id")
@click.option("--ttl-minutes", type=int, help="Override the reservation window")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def lead_assign(lead_id: str, agent_id: str, ttl_minutes: Optional[int], db_path: Optional[str]):
    """Manually reserve a lead for an agent."""
    distributor = get_distributor(db_path)
    ttl = timedelta(minutes=ttl_minutes) if ttl_minutes else None
    reservation = distributor.manual_assign(lead_id, agent_id, ttl=ttl)
    console.print(
        f"[green]✓ Lead {lead_id} reserved for {agent_id}[/green] "
        f"until {reservation.reserved_until.strftime('%H:%M:%S')}"
    )


@lead.command("complete")
@click.argument("lead_id")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def lead_complete(lead_id: str, db_path: Optional[str]):
    """Mark an accepted lead as completed."""
    distributor = get_distributor(db_path)
    completed = distributor.complete(lead_id)
    console.print(f"[green]✓ Lead {lead_id} completed by {completed.assigned_agent_id}[/green]")


@lead.command("list")
@click.option("--status", type=click.Choice([s.value for s in LeadStatus]), help="Filter by status")
@click.option("--agent", "agent_id", help="Filter by holder")
@click.option("--limit", "-n", default=20, help="Number of leads to show")
@click.option("--db", "db_path", help="Custom database path")
def lead_list(status: Optional[str], agent_id: Optional[str], limit: int, db_path: Optional[str]):
    """List leads, newest first."""
    distributor = get_distributor(db_path)
    leads = distributor.list_leads(
        status=LeadStatus(status) if status else None,
        agent_id=agent_id,
        limit=limit,
    )

    if not leads:
        console.print("[yellow]No leads found matching criteria.[/yellow]")
        return

    table = Table(title=f"Leads ({len(leads)})")
    table.add_column("ID", style="dim")
    table.add_column("Status", justify="center")
    table.add_column("Holder", style="cyan")
    table.add_column("Mode")
    table.add_column("Property", max_width=25)
    table.add_column("Created")

    status_colors = {
        "RESERVED": "yellow", "ACCEPTED": "green", "COMPLETED": "dim green",
        "AVAILABLE": "blue", "ABANDONED": "dim red",
    }
    for item in leads:
        style = status_colors.get(item.status.value, "")
        label = f"[{style}]{item.status.value}[/{style}]" if style else item.status.value
        table.add_row(
            item.lead_id,
            label,
            item.holder or "",
            item.distribution_mode.value,
            item.property_ref[:25],
            item.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@lead.command("show")
@click.argument("lead_id")
@click.option("--db", "db_path", help="Custom database path")
@reports_errors
def lead_show(lead_id: str, db_path: Optional[str]):
    """Show a lead and its status history."""
    distributor = get_distributor(db_path)
    item = distributor.get_lead(lead_id)

    info_lines = [
        f"[bold]Status:[/bold] {item.status.value}",
        f"[bold]Property:[/bold] {item.property_ref}",
        f"[bold]Contact:[/bold] {item.contact_ref}",
        f"[bold]Team:[/bold] {item.team_id}  [bold]Mode:[/bold] {item.distribution_mode.value}",
        f"[bold]Source:[/bold] {item.source.value}",
        f"[bold]Referrer:[/bold] {item.referrer_agent_id}" if item.referrer_agent_id else "",
        f"[bold]Holder:[/bold] {item.holder}" if item.holder else "",
        f"[bold]Reserved until:[/bold] {item.reserved_until.strftime('%Y-%m-%d %H:%M:%S')}" if item.reserved_until else "",
        f"[bold]Created:[/bold] {item.created_at.strftime('%Y-%m-%d %H:%M')}",
        "",
        "[bold]History:[/bold]",
    ]
    for event in distributor.lead_history(lead_id):
        origin = event.from_status.value if event.from_status else "-"
        who = f" ({event.agent_id})" if event.agent_id else ""
        info_lines.append(
            f"  {event.created_at.strftime('%H:%M:%S')} {origin} → {event.to_status.value}{who}"
        )

    console.print(Panel("\n".join(filter(None, info_lines)), title=f"Lead {item.lead_id}"))


# ============================================================================
# MAINTENANCE & REPORTING
# ============================================================================

@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def sweep(db_path: Optional[str]):
    """Expire lapsed reservations and redistribute stuck leads."""
    distributor = get_distributor(db_path)
    result = distributor.sweep()
    console.print(
        f"Expired [yellow]{result.expired}[/yellow], "
        f"redistributed [green]{result.redistributed}[/green], "
        f"abandoned [dim]{result.abandoned}[/dim]"
        + (f", [red]{result.errors} error(s)[/red]" if result.errors else "")
    )


@cli.command()
@click.option("--days", "-d", type=click.Choice(["7", "30", "90"]), default="30", help="Window in days")
@click.option("--source", "-s", type=click.Choice(["all", "board", "direct"]), default="all")
@click.option("--db", "db_path", help="Custom database path")
def overview(days: str, source: str, db_path: Optional[str]):
    """Show distribution metrics."""
    distributor = get_distributor(db_path)
    metrics = MetricsAggregator(distributor.db, distributor.config)
    data = metrics.overview(int(days), source)

    avg = data["avg_response_time"]
    status_lines = "\n".join(
        f"  {status}: {count}" for status, count in data["leads_by_status"].items() if count
    )
    console.print(Panel.fit(
        f"[bold]Agents:[/bold] {data['active_agents']} active / {data['total_agents']} total\n"
        f"[bold]Leads:[/bold] {data['total_leads']} ({data['available_leads']} available now)\n\n"
        f"[bold]By Status:[/bold]\n{status_lines or '  none'}\n\n"
        f"[bold]Conversion rate:[/bold] {data['conversion_rate']}%\n"
        f"[bold]Response rate:[/bold] {data['response_rate']}%\n"
        f"[bold]Avg response:[/bold] {f'{avg:.0f}s' if avg is not None else '-'}\n"
        f"[bold]SLA breaches:[/bold] {data['sla_breaches']}",
        title=f"Last {days} days ({source})"
    ))


@cli.command()
@click.option("--host", default=None, help="Bind address (default LQE_API_HOST)")
@click.option("--port", type=int, default=None, help="Port (default LQE_API_PORT)")
@click.option("--no-sweeper", is_flag=True, help="Do not run the background expiry sweep")
@click.option("--db", "db_path", help="Custom database path")
def serve(host: Optional[str], port: Optional[int], no_sweeper: bool, db_path: Optional[str]):
    """Run the HTTP API."""
    import uvicorn
    from ..api.config import settings
    from ..api.main import create_app

    distributor = get_distributor(db_path) if db_path else None
    app = create_app(distributor, sweeper_enabled=False if no_sweeper else None)
    uvicorn.run(app, host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    cli()
