"""
Move the Windows Search index database to another directory.

Windows Search reads its location from the DataDirectory value at startup.
Relocating means stopping the service, pointing DataDirectory elsewhere,
clearing SetupCompletedSuccessfully so the index is rebuilt there, and
starting the service again.
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass
from typing import Callable, Optional

from vdiops.core.config import Settings, settings as default_settings
from vdiops.core.exceptions import VdiOpsError
from vdiops.windows import registry, services

logger = logging.getLogger(__name__)

SEARCH_KEY = "HKLM\\SOFTWARE\\Microsoft\\Windows Search"
DATA_DIRECTORY = "DataDirectory"
SETUP_COMPLETED = "SetupCompletedSuccessfully"


@dataclass
class RelocationResult:
    previous: Optional[str]
    current: str
    changed: bool
    data_moved: bool = False


def normalize_directory(path: str) -> str:
    """Windows Search stores the directory with a trailing backslash."""
    return path.rstrip("\\/") + "\\"


def same_directory(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return normalize_directory(a).lower() == normalize_directory(b).lower()


class SearchRelocator:
    def __init__(self, settings: Optional[Settings] = None, sleep: Callable[[float], None] = time.sleep):
        self.settings = settings or default_settings
        self.service = self.settings.search_service_name
        self.sleep = sleep

    def current_location(self) -> Optional[str]:
        return registry.read_value(SEARCH_KEY, DATA_DIRECTORY)

    def relocate(self, target: Optional[str] = None, move_data: bool = False,
                 restart: bool = True) -> RelocationResult:
        """
        Point Windows Search at ``target``.

        Args:
            target: New data directory, defaults to the configured search_data_root
            move_data: Copy the existing index files into the new directory
            restart: Start the service again afterwards

        Returns:
            RelocationResult describing what changed
        """
        target = normalize_directory(target or self.settings.search_data_root)
        previous = self.current_location()

        if same_directory(previous, target):
            logger.info(f"Windows Search data already at {target}")
            return RelocationResult(previous=previous, current=target, changed=False)

        os.makedirs(target, exist_ok=True)
        stopped = services.stop_service(self.service, sleep=self.sleep)
        data_moved = False
        try:
            if move_data and previous and os.path.isdir(previous):
                logger.info(f"Copying index data from {previous} to {target}")
                shutil.copytree(previous, target, dirs_exist_ok=True)
                data_moved = True
            registry.write_value(SEARCH_KEY, DATA_DIRECTORY, target, "REG_SZ")
            registry.write_value(SEARCH_KEY, SETUP_COMPLETED, 0, "REG_DWORD")
        except Exception:
            if stopped:
                logger.error(f"Relocation failed, restarting {self.service}")
                try:
                    services.start_service(self.service, sleep=self.sleep)
                except VdiOpsError as restart_error:
                    logger.error(f"Restarting {self.service} also failed: {restart_error}")
            raise

        if restart:
            services.start_service(self.service, sleep=self.sleep)

        logger.info(f"Windows Search data moved from {previous} to {target}")
        return RelocationResult(previous=previous, current=target, changed=True, data_moved=data_moved)
