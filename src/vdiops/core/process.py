"""
Helpers for running external Windows executables.

Every runbook talks to the platform through a command line tool
(diskpart.exe, sc.exe, dsregcmd.exe, powershell.exe), so they all share
``run_command`` and its ``CommandResult``.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import List

from vdiops.core.exceptions import CommandError

logger = logging.getLogger(__name__)

POWERSHELL = "powershell.exe"


@dataclass
class CommandResult:
    """Outcome of one external command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr together; diskpart and dsregcmd mix them freely."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout


def _startupinfo():
    # Hide the console window when launched from a logon script
    if not hasattr(subprocess, "STARTUPINFO"):
        return None
    startupinfo = subprocess.STARTUPINFO()
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    startupinfo.wShowWindow = subprocess.SW_HIDE
    return startupinfo


def run_command(command: List[str], timeout: int = 300, check: bool = True) -> CommandResult:
    """
    Run a command and capture its text output.

    Args:
        command: Executable and arguments
        timeout: Seconds before the command is abandoned
        check: Raise CommandError on a non-zero exit code

    Returns:
        CommandResult with the captured output

    Raises:
        CommandError: On timeout, when the executable cannot be started,
            or (with check) on a non-zero exit code
    """
    logger.debug(f"Running command: {' '.join(command)}")
    start_time = time.monotonic()

    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            startupinfo=_startupinfo(),
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(f"{command[0]} timed out after {timeout}s") from e
    except OSError as e:
        raise CommandError(f"Could not start {command[0]}: {e}") from e

    result = CommandResult(
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        command=list(command),
        duration_seconds=time.monotonic() - start_time,
    )

    if check and not result.success:
        logger.warning(f"{command[0]} exited with {result.returncode}: {result.stderr.strip()[:500]}")
        raise CommandError(
            f"{command[0]} exited with code {result.returncode}", result
        )
    return result


def run_powershell(script: str, timeout: int = 300, check: bool = True) -> CommandResult:
    """Run a PowerShell snippet without profile or prompts."""
    command = [
        POWERSHELL,
        "-NoProfile",
        "-NonInteractive",
        "-ExecutionPolicy", "Bypass",
        "-Command", script,
    ]
    return run_command(command, timeout=timeout, check=check)
