"""
Hybrid Azure AD join for domain joined VDI machines.

Windows 10 and later use ``dsregcmd``; Windows 7 machines use the
downlevel ``AutoWorkplace.exe`` client. Non-persistent desktops lose their
join on every reset, so the join is retried a fixed number of times at
startup while the device record syncs to Azure AD.
"""

import logging
import os
import platform
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from vdiops.core.config import Settings, settings as default_settings
from vdiops.core.exceptions import CommandError, WorkplaceJoinError
from vdiops.core.process import CommandResult, run_command

logger = logging.getLogger(__name__)

DSREGCMD = "dsregcmd.exe"
AUTO_WORKPLACE = os.path.join(
    os.environ.get("ProgramFiles", "C:\\Program Files"),
    "Microsoft Workplace Join",
    "AutoWorkplace.exe",
)
LEGACY_RELEASES = ("7", "2008ServerR2")


@dataclass
class JoinState:
    domain_joined: bool = False
    azure_ad_joined: bool = False
    device_id: Optional[str] = None
    tenant_name: Optional[str] = None
    raw: Dict[str, str] = field(default_factory=dict)


def parse_dsregcmd_status(text: str) -> Dict[str, str]:
    """Collect the ``Key : Value`` lines of ``dsregcmd /status``."""
    values = {}
    for line in text.splitlines():
        if line.lstrip().startswith(("+", "|")):
            continue
        key, sep, value = line.partition(" : ")
        if sep and key.strip():
            values[key.strip()] = value.strip()
    return values


def is_legacy_windows() -> bool:
    return platform.system() == "Windows" and platform.release() in LEGACY_RELEASES


class WorkplaceJoin:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        run: Callable[..., CommandResult] = run_command,
        sleep: Callable[[float], None] = time.sleep,
        legacy: Optional[bool] = None,
    ):
        self.settings = settings or default_settings
        self.run = run
        self.sleep = sleep
        self.legacy = is_legacy_windows() if legacy is None else legacy

    def _join_command(self) -> List[str]:
        if self.legacy:
            return [AUTO_WORKPLACE, "/join"]
        return [DSREGCMD, "/join"]

    def _leave_command(self) -> List[str]:
        if self.legacy:
            return [AUTO_WORKPLACE, "/leave"]
        return [DSREGCMD, "/leave"]

    def join_state(self) -> JoinState:
        if self.legacy:
            # AutoWorkplace has no status report; the domain check still applies
            result = self.run(["wmic", "computersystem", "get", "PartOfDomain"], check=False)
            domain_joined = "TRUE" in result.stdout.upper()
            return JoinState(domain_joined=domain_joined)

        result = self.run([DSREGCMD, "/status"], check=False)
        values = parse_dsregcmd_status(result.stdout)
        return JoinState(
            domain_joined=values.get("DomainJoined", "").upper() == "YES",
            azure_ad_joined=values.get("AzureAdJoined", "").upper() == "YES",
            device_id=values.get("DeviceId"),
            tenant_name=values.get("TenantName"),
            raw=values,
        )

    def leave(self) -> None:
        logger.info("Leaving Azure AD")
        try:
            self.run(self._leave_command())
        except CommandError as e:
            raise WorkplaceJoinError(f"Leave failed: {e}") from e

    def join(self, attempts: Optional[int] = None, delay: Optional[float] = None,
             leave_first: bool = False) -> JoinState:
        """
        Join the device, retrying up to ``attempts`` times.

        Raises:
            WorkplaceJoinError: If the machine is not domain joined, or is
                still not joined after the last attempt
        """
        attempts = attempts or self.settings.join_attempts
        delay = self.settings.join_delay if delay is None else delay

        state = self.join_state()
        if not state.domain_joined:
            raise WorkplaceJoinError("Machine is not domain joined, hybrid join is not possible")
        if state.azure_ad_joined and not leave_first:
            logger.info(f"Device already Azure AD joined (DeviceId {state.device_id})")
            return state
        if leave_first:
            self.leave()

        for attempt in range(1, attempts + 1):
            logger.info(f"Workplace join attempt {attempt}/{attempts}")
            result = self.run(self._join_command(), check=False)

            if self.legacy:
                joined = result.success
                state = JoinState(domain_joined=True, azure_ad_joined=joined)
            else:
                state = self.join_state()
                joined = state.azure_ad_joined

            if joined:
                logger.info(f"Workplace join succeeded on attempt {attempt}")
                return state

            logger.warning(f"Workplace join attempt {attempt} did not complete (exit code {result.returncode})")
            if attempt < attempts:
                self.sleep(delay)

        logger.error(f"Workplace join failed after {attempts} attempts")
        raise WorkplaceJoinError(f"Device not joined after {attempts} attempts")
