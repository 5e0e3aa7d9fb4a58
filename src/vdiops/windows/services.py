"""
Windows service control.

Status comes from psutil; start and stop go through sc.exe, which returns
immediately, so callers wait by polling the status.
"""

import logging
import time
from typing import Callable

import psutil

from vdiops.core.exceptions import CommandError, ServiceError
from vdiops.core.process import run_command

logger = logging.getLogger(__name__)

SC = "sc.exe"

RUNNING = "running"
STOPPED = "stopped"


def service_status(name: str) -> str:
    """Return the psutil status string of a service (running, stopped, ...)."""
    try:
        return psutil.win_service_get(name).status()
    except psutil.NoSuchProcess as e:
        raise ServiceError(f"Service {name} does not exist") from e


def wait_for_status(
    name: str,
    desired: str,
    timeout: float = 60.0,
    poll_interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Poll until the service reports ``desired``.

    Raises:
        ServiceError: If the status is not reached within ``timeout`` seconds
    """
    waited = 0.0
    while True:
        status = service_status(name)
        if status == desired:
            return
        if waited >= timeout:
            raise ServiceError(
                f"Service {name} is '{status}' after {timeout:.0f}s, expected '{desired}'"
            )
        sleep(poll_interval)
        waited += poll_interval


def stop_service(name: str, timeout: float = 60.0, sleep: Callable[[float], None] = time.sleep) -> bool:
    """Stop a service and wait. Returns False if it was already stopped."""
    if service_status(name) == STOPPED:
        logger.info(f"Service {name} already stopped")
        return False
    logger.info(f"Stopping service {name}")
    try:
        run_command([SC, "stop", name], timeout=int(timeout))
    except CommandError as e:
        raise ServiceError(f"sc stop {name} failed: {e}") from e
    wait_for_status(name, STOPPED, timeout=timeout, sleep=sleep)
    return True


def start_service(name: str, timeout: float = 60.0, sleep: Callable[[float], None] = time.sleep) -> bool:
    """Start a service and wait. Returns False if it was already running."""
    if service_status(name) == RUNNING:
        logger.info(f"Service {name} already running")
        return False
    logger.info(f"Starting service {name}")
    try:
        run_command([SC, "start", name], timeout=int(timeout))
    except CommandError as e:
        raise ServiceError(f"sc start {name} failed: {e}") from e
    wait_for_status(name, RUNNING, timeout=timeout, sleep=sleep)
    return True
