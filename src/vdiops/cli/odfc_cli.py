"""
CLI commands for Outlook Data File Container (ODFC) disks.

``mount`` runs from the logon script and ``unmount`` from the logoff script.
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from vdiops.core.exceptions import VdiOpsError
from vdiops.odfc.manager import OdfcManager, OdfcMode

logger = logging.getLogger(__name__)

odfc_app = typer.Typer(help="Commands to manage ODFC VHD containers.")
console = Console()


def _fail(action: str, error: Exception):
    logger.error(f"ODFC {action} failed: {error}")
    console.print(f"Error: {error}", style="bold red", markup=False)
    raise typer.Exit(code=1)


@odfc_app.command("mount")
def mount_cmd(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User name (defaults to the current user)"),
    mode: Optional[OdfcMode] = typer.Option(None, "--mode", "-m", help="Container mode"),
):
    """
    Create or attach the user's container and link the Outlook cache into it.
    """
    try:
        result = OdfcManager(mode=mode).mount(user)
    except (VdiOpsError, OSError) as e:
        _fail("mount", e)

    state = "created" if result.created else ("re-used" if result.already_attached else "attached")
    console.print(
        f"{result.vhd_path} {state}, volume {result.volume_number} mounted at {result.mount_path}",
        style="green", markup=False,
    )


@odfc_app.command("unmount")
def unmount_cmd(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User name (defaults to the current user)"),
    mode: Optional[OdfcMode] = typer.Option(None, "--mode", "-m", help="Container mode"),
    merge: bool = typer.Option(True, "--merge/--no-merge", help="Merge the differencing disk (network mode)"),
):
    """
    Unlink the Outlook cache and detach the container.
    """
    try:
        OdfcManager(mode=mode).unmount(user, merge=merge)
    except (VdiOpsError, OSError) as e:
        _fail("unmount", e)
    console.print("[green]ODFC container detached[/green]")


@odfc_app.command("merge")
def merge_cmd(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User name (defaults to the current user)"),
):
    """
    Merge a leftover differencing disk into its parent (network mode).
    """
    try:
        OdfcManager(mode=OdfcMode.NETWORK).merge(user)
    except (VdiOpsError, OSError) as e:
        _fail("merge", e)
    console.print("[green]Differencing disk merged[/green]")


@odfc_app.command("status")
def status_cmd(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User name (defaults to the current user)"),
    mode: Optional[OdfcMode] = typer.Option(None, "--mode", "-m", help="Container mode"),
):
    """
    Show where the container lives and whether it is attached.
    """
    try:
        info = OdfcManager(mode=mode).status(user)
    except (VdiOpsError, OSError) as e:
        _fail("status", e)

    table = Table(title="ODFC container")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Mode", info["mode"])
    table.add_row("VHD", info["vhd_path"])
    if info["parent_path"]:
        table.add_row("Parent VHD", info["parent_path"])
    table.add_row("Exists", "Yes" if info["exists"] else "No")
    detail = info["detail"]
    if detail:
        table.add_row("State", detail.state or "")
        table.add_row("Attached", f"disk {detail.disk_number}" if detail.attached else "No")
        table.add_row("Virtual size", detail.virtual_size or "")
        table.add_row("Physical size", detail.physical_size or "")
    table.add_row("Mount folder", info["mount_path"])
    table.add_row("Outlook link", f"{info['outlook_link']} ({'linked' if info['linked'] else 'not linked'})")
    for volume in info["volumes"]:
        free = f"{volume.free_space // (1024 * 1024)} MB free" if volume.free_space is not None else ""
        table.add_row("Volume", f"{volume.name} {free}".strip())
    console.print(table)
