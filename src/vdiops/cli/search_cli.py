"""
CLI commands for relocating the Windows Search database.
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from vdiops.core.exceptions import VdiOpsError
from vdiops.search.relocate import SearchRelocator

logger = logging.getLogger(__name__)

search_app = typer.Typer(help="Windows Search database commands.")
console = Console()


@search_app.command("relocate")
def relocate_cmd(
    target: Optional[str] = typer.Argument(None, help="New data directory (defaults to the configured root)"),
    move_data: bool = typer.Option(False, "--move-data", help="Copy the existing index into the new directory"),
    restart: bool = typer.Option(True, "--restart/--no-restart", help="Start the search service afterwards"),
):
    """
    Point Windows Search at a new data directory and rebuild the index there.
    """
    try:
        result = SearchRelocator().relocate(target, move_data=move_data, restart=restart)
    except (VdiOpsError, OSError) as e:
        logger.error(f"Windows Search relocation failed: {e}")
        console.print(f"Error: {e}", style="bold red", markup=False)
        raise typer.Exit(code=1)

    if result.changed:
        console.print(f"Windows Search moved from {result.previous} to {result.current}", style="green", markup=False)
    else:
        console.print(f"Windows Search already uses {result.current}", markup=False)


@search_app.command("status")
def status_cmd():
    """
    Show the current Windows Search data directory and service state.
    """
    from vdiops.windows.services import service_status

    relocator = SearchRelocator()
    try:
        location = relocator.current_location()
        state = service_status(relocator.service)
    except VdiOpsError as e:
        console.print(f"Error: {e}", style="bold red", markup=False)
        raise typer.Exit(code=1)

    table = Table(title="Windows Search")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Data directory", location or "(default)")
    table.add_row("Service", relocator.service)
    table.add_row("Service state", state)
    console.print(table)
