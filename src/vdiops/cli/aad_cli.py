"""
CLI commands for Azure AD: hybrid join of this machine and pruning of
stale device records.
"""

import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from vdiops.aad.graph import GraphClient
from vdiops.aad.prune import plan_prune, prune, write_report
from vdiops.aad.workplace_join import WorkplaceJoin
from vdiops.core.config import settings
from vdiops.core.exceptions import VdiOpsError

logger = logging.getLogger(__name__)

aad_app = typer.Typer(help="Azure AD join and device cleanup commands.")
console = Console()


@aad_app.command("join")
def join_cmd(
    attempts: Optional[int] = typer.Option(None, "--attempts", "-a", help="Number of join attempts"),
    delay: Optional[float] = typer.Option(None, "--delay", "-d", help="Seconds between attempts"),
    leave_first: bool = typer.Option(False, "--leave-first", help="Leave Azure AD before joining"),
):
    """
    Hybrid Azure AD join this machine.
    """
    try:
        state = WorkplaceJoin().join(attempts=attempts, delay=delay, leave_first=leave_first)
    except VdiOpsError as e:
        logger.error(f"Workplace join failed: {e}")
        console.print(f"Error: {e}", style="bold red", markup=False)
        raise typer.Exit(code=1)
    device = f" (DeviceId {state.device_id})" if state.device_id else ""
    console.print(f"Device joined{device}", style="green")


@aad_app.command("leave")
def leave_cmd():
    """
    Remove this machine's Azure AD join.
    """
    try:
        WorkplaceJoin().leave()
    except VdiOpsError as e:
        logger.error(f"Workplace leave failed: {e}")
        console.print(f"Error: {e}", style="bold red", markup=False)
        raise typer.Exit(code=1)
    console.print("[green]Device left Azure AD[/green]")


@aad_app.command("status")
def status_cmd():
    """
    Show the join state reported by dsregcmd.
    """
    try:
        state = WorkplaceJoin().join_state()
    except VdiOpsError as e:
        console.print(f"Error: {e}", style="bold red", markup=False)
        raise typer.Exit(code=1)

    table = Table(title="Join state")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Domain joined", "Yes" if state.domain_joined else "No")
    table.add_row("Azure AD joined", "Yes" if state.azure_ad_joined else "No")
    table.add_row("Device ID", state.device_id or "")
    table.add_row("Tenant", state.tenant_name or "")
    console.print(table)


@aad_app.command("prune")
def prune_cmd(
    prefixes: Optional[List[str]] = typer.Option(
        None, "--prefix", "-p", help="Display name prefix of managed devices (repeatable)"
    ),
    stale_days: Optional[int] = typer.Option(None, "--stale-days", help="Days without sign-in before a device is stale"),
    apply: bool = typer.Option(False, "--apply/--dry-run", help="Actually delete the devices"),
    report: Optional[str] = typer.Option(None, "--report", "-r", help="Write the prune plan as JSON"),
):
    """
    Delete duplicate and stale device records of non-persistent desktops.
    """
    client = GraphClient()
    try:
        devices = client.list_devices(prefixes or None)
        plan = plan_prune(devices, stale_days=stale_days or settings.stale_days)
        if report:
            write_report(plan, report)
        removed = prune(client, plan, apply=apply)
    except VdiOpsError as e:
        logger.error(f"Device pruning failed: {e}")
        console.print(f"Error: {e}", style="bold red", markup=False)
        raise typer.Exit(code=1)

    table = Table(title="Deleted devices" if apply else "Devices to delete (dry run)")
    table.add_column("Name", style="cyan")
    table.add_column("Object ID", style="green")
    table.add_column("Last activity", style="yellow")
    table.add_column("Reason", style="magenta")
    for device in removed:
        last = device.last_activity.isoformat() if device.last_activity else "never"
        reason = "duplicate" if device in plan.duplicates else "stale"
        table.add_row(device.display_name, device.id, last, reason)
    console.print(table)
    console.print(f"{len(devices)} devices checked, {len(removed)} {'deleted' if apply else 'to delete'}, "
                  f"{len(plan.kept)} kept.")
