"""
Environment information for vdiops.

Shows what a runbook would see when it starts: interpreter, Windows
release, elevation, and the effective (non-secret) settings.
"""

import ctypes
import platform
import sys
import logging

from rich.console import Console
from rich.table import Table

from vdiops.core.config import get_settings

# Configure logger
logger = logging.getLogger(__name__)
console = Console()


def is_admin() -> bool:
    """True when running elevated on Windows."""
    if sys.platform != "win32":
        return False
    try:
        return ctypes.windll.shell32.IsUserAnAdmin() != 0
    except (AttributeError, OSError):
        return False


def info():
    """
    Display information about the current environment.
    """
    table = Table(title="Environment Information")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")

    # Python information
    table.add_row("Python Version", platform.python_version())
    table.add_row("Python Path", sys.executable)

    # Platform information
    table.add_row("System", platform.system())
    table.add_row("Release", platform.release())
    table.add_row("Platform", platform.platform())
    table.add_row("Elevated", "Yes" if is_admin() else "No")

    in_venv = sys.prefix != sys.base_prefix
    table.add_row("Virtual Environment", "Active" if in_venv else "Not active")

    for key, value in sorted(get_settings().public_values().items()):
        table.add_row(key, str(value))

    console.print(table)
