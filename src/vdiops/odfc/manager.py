"""
Outlook Data File Container (ODFC) VHD lifecycle.

Mounts a per-user (or per-user-per-machine) VHD at logon and links the
Outlook cache directory into it, then unlinks and detaches at logoff. In
network mode the VHD on the share is a read-only parent: each logon works
on a local differencing child which is merged back into the parent at
logoff.

The order of operations is:

    create (first use) or attach -> detail vdisk (disk #) ->
    detail disk (volume #, retried) -> assign mount -> link Outlook cache
"""

import getpass
import logging
import os
import platform
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from vdiops.core.config import Settings, settings as default_settings
from vdiops.core.exceptions import DiskpartError, VdiOpsError
from vdiops.odfc import diskpart
from vdiops.odfc.diskpart import DiskpartRunner, VdiskDetail, VolumeInfo
from vdiops.windows.wmi import query_volumes

logger = logging.getLogger(__name__)

OUTLOOK_SUBDIR = "Outlook"
LOCAL_SUFFIX = ".local"


class OdfcMode(str, Enum):
    """Where the container lives and how it is shared."""
    USER = "user"
    SESSION = "session"
    NETWORK = "network"


@dataclass
class OdfcPaths:
    vhd_path: str
    mount_path: str
    outlook_link: str
    parent_path: Optional[str] = None


@dataclass
class MountResult:
    vhd_path: str
    disk_number: int
    volume_number: int
    mount_path: str
    created: bool = False
    already_attached: bool = False


def current_user() -> str:
    return os.environ.get("USERNAME") or getpass.getuser()


def current_computer() -> str:
    return os.environ.get("COMPUTERNAME") or platform.node()


class OdfcManager:
    """
    Creates, attaches, mounts, detaches and merges ODFC containers.

    All disk work is done by diskpart through ``runner``; this class only
    decides which script to run next based on what the previous one printed.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[DiskpartRunner] = None,
        mode: Optional[OdfcMode] = None,
        sleep: Callable[[float], None] = time.sleep,
        volume_query: Callable[..., List[Any]] = query_volumes,
    ):
        self.settings = settings or default_settings
        self.runner = runner or DiskpartRunner(timeout=self.settings.diskpart_timeout)
        self.mode = OdfcMode(mode or self.settings.odfc_mode)
        self.sleep = sleep
        self.volume_query = volume_query

    # Paths

    def resolve_paths(self, user: Optional[str] = None, computer: Optional[str] = None) -> OdfcPaths:
        user = user or current_user()
        computer = computer or current_computer()
        user_dir = os.path.join(self.settings.odfc_root, user)
        mount_path = os.path.join(self.settings.odfc_mount_root, user)
        outlook_link = self.settings.outlook_cache_dir or os.path.join(
            os.environ.get("LOCALAPPDATA", os.path.expanduser("~")), "Microsoft", "Outlook"
        )

        if self.mode == OdfcMode.USER:
            vhd_path = os.path.join(user_dir, f"ODFC_{user}.vhd")
            return OdfcPaths(vhd_path, mount_path, outlook_link)
        if self.mode == OdfcMode.SESSION:
            vhd_path = os.path.join(user_dir, f"ODFC_{user}_{computer}.vhd")
            return OdfcPaths(vhd_path, mount_path, outlook_link)

        parent_path = os.path.join(user_dir, f"ODFC_{user}.vhd")
        child_path = os.path.join(self.settings.odfc_diff_root, f"ODFC_{user}_diff.vhd")
        return OdfcPaths(child_path, mount_path, outlook_link, parent_path=parent_path)

    # diskpart steps

    def create(self, vhd_path: str) -> None:
        """Create, attach, partition and format a new expandable VHD."""
        os.makedirs(os.path.dirname(vhd_path), exist_ok=True)
        logger.info(f"Creating {self.settings.odfc_size_mb} MB container {vhd_path}")
        try:
            self.runner.run(diskpart.create_vdisk_script(
                vhd_path, self.settings.odfc_size_mb, self.settings.odfc_label
            ))
        except VdiOpsError:
            self._discard(vhd_path, detach=True)
            raise

    def create_child(self, child_path: str, parent_path: str) -> None:
        os.makedirs(os.path.dirname(child_path), exist_ok=True)
        logger.info(f"Creating differencing disk {child_path} from {parent_path}")
        try:
            self.runner.run(diskpart.create_child_script(child_path, parent_path))
        except VdiOpsError:
            self._discard(child_path)
            raise

    def _discard(self, vhd_path: str, detach: bool = False) -> None:
        """Remove a half-created VHD, detaching it first if it may be attached."""
        if not os.path.exists(vhd_path):
            return
        logger.error(f"Creating {vhd_path} failed, removing it")
        if detach:
            try:
                self.detach(vhd_path)
            except DiskpartError as detach_error:
                logger.error(f"Detach after failed create also failed: {detach_error}")
        try:
            os.remove(vhd_path)
        except OSError as remove_error:
            logger.error(f"Could not remove {vhd_path}: {remove_error}")

    def attach(self, vhd_path: str) -> bool:
        """Attach a VHD. Returns True if it was already attached."""
        output = self.runner.run(diskpart.attach_script(vhd_path), tolerate=diskpart.ALREADY_ATTACHED)
        already = any(diskpart.ALREADY_ATTACHED.search(e) for e in diskpart.find_errors(output))
        if already:
            logger.info(f"{vhd_path} was already attached, re-using it")
        else:
            logger.info(f"Attached {vhd_path}")
        return already

    def detach(self, vhd_path: str) -> None:
        self.runner.run(diskpart.detach_script(vhd_path))
        logger.info(f"Detached {vhd_path}")

    def detail(self, vhd_path: str) -> VdiskDetail:
        return diskpart.parse_vdisk_detail(self.runner.run(diskpart.detail_vdisk_script(vhd_path)))

    def find_volume(self, disk_number: int) -> VolumeInfo:
        """
        Find the container's volume on ``disk_number``.

        A freshly attached disk can take a moment before its volume shows up,
        so ``detail disk`` is retried a fixed number of times.
        """
        attempts = max(1, self.settings.volume_attempts)
        for attempt in range(1, attempts + 1):
            output = self.runner.run(diskpart.detail_disk_script(disk_number))
            volumes = diskpart.parse_volume_table(output)
            labelled = [v for v in volumes if (v.label or "").upper() == self.settings.odfc_label.upper()]
            if labelled or volumes:
                return (labelled or volumes)[0]
            logger.info(f"No volume on disk {disk_number} yet (attempt {attempt}/{attempts})")
            if attempt < attempts:
                self.sleep(self.settings.volume_delay)
        raise DiskpartError(f"No volume found on disk {disk_number} after {attempts} attempts")

    # Lifecycle

    def _prepare_network_child(self, paths: OdfcPaths) -> bool:
        """Make sure a usable differencing child exists. Returns True if the parent was created."""
        created = False
        if not os.path.exists(paths.parent_path):
            self.create(paths.parent_path)
            try:
                self.detach(paths.parent_path)
            except DiskpartError:
                self._discard(paths.parent_path, detach=True)
                raise
            created = True

        if os.path.exists(paths.vhd_path):
            if self.detail(paths.vhd_path).attached:
                return created
            logger.info(f"Removing stale differencing disk {paths.vhd_path}")
            os.remove(paths.vhd_path)
        self.create_child(paths.vhd_path, paths.parent_path)
        return created

    def mount(self, user: Optional[str] = None, computer: Optional[str] = None) -> MountResult:
        paths = self.resolve_paths(user, computer)
        created = False
        already_attached = False

        if self.mode == OdfcMode.NETWORK:
            created = self._prepare_network_child(paths)
            already_attached = self.attach(paths.vhd_path)
        elif not os.path.exists(paths.vhd_path):
            self.create(paths.vhd_path)
            created = True
        else:
            already_attached = self.attach(paths.vhd_path)

        try:
            detail = self.detail(paths.vhd_path)
            if not detail.attached:
                raise DiskpartError(f"{paths.vhd_path} is not attached after attach")
            volume = self.find_volume(detail.disk_number)
            self._assign_mount(volume, paths.mount_path, already_attached)
            self.link_outlook_cache(paths)
        except (VdiOpsError, OSError):
            if not already_attached:
                logger.error(f"Mounting {paths.vhd_path} failed, detaching")
                try:
                    self.detach(paths.vhd_path)
                except DiskpartError as detach_error:
                    logger.error(f"Detach after failed mount also failed: {detach_error}")
            raise

        logger.info(
            f"ODFC container {paths.vhd_path} mounted at {paths.mount_path} "
            f"(disk {detail.disk_number}, volume {volume.number})"
        )
        return MountResult(
            vhd_path=paths.vhd_path,
            disk_number=detail.disk_number,
            volume_number=volume.number,
            mount_path=paths.mount_path,
            created=created,
            already_attached=already_attached,
        )

    def _assign_mount(self, volume: VolumeInfo, mount_path: str, already_attached: bool) -> None:
        os.makedirs(mount_path, exist_ok=True)
        if os.listdir(mount_path):
            if already_attached:
                logger.info(f"{mount_path} is already mounted")
                return
            raise DiskpartError(f"Mount folder {mount_path} is not empty")
        self.runner.run(diskpart.assign_mount_script(volume.number, mount_path=mount_path))

    def unmount(self, user: Optional[str] = None, computer: Optional[str] = None, merge: bool = True) -> None:
        paths = self.resolve_paths(user, computer)
        self.unlink_outlook_cache(paths)

        if os.path.exists(paths.vhd_path):
            detail = self.detail(paths.vhd_path)
            if detail.attached:
                if os.path.isdir(paths.mount_path) and os.listdir(paths.mount_path):
                    volume = self.find_volume(detail.disk_number)
                    self.runner.run(diskpart.remove_mount_script(volume.number, paths.mount_path))
                else:
                    logger.info(f"Nothing mounted at {paths.mount_path}")
                self.detach(paths.vhd_path)
            else:
                logger.info(f"{paths.vhd_path} is not attached")
        else:
            logger.warning(f"{paths.vhd_path} does not exist")

        if self.mode == OdfcMode.NETWORK and merge and os.path.exists(paths.vhd_path):
            self._merge_child(paths)

    def merge(self, user: Optional[str] = None, computer: Optional[str] = None) -> None:
        """Merge the local differencing disk into its parent and remove it."""
        if self.mode != OdfcMode.NETWORK:
            raise DiskpartError(f"Merging only applies to network mode, not {self.mode.value}")
        paths = self.resolve_paths(user, computer)
        if not os.path.exists(paths.vhd_path):
            raise DiskpartError(f"No differencing disk at {paths.vhd_path}")
        if self.detail(paths.vhd_path).attached:
            raise DiskpartError(f"{paths.vhd_path} is still attached, unmount it first")
        self._merge_child(paths)

    def _merge_child(self, paths: OdfcPaths) -> None:
        logger.info(f"Merging {paths.vhd_path} into {paths.parent_path}")
        self.runner.run(diskpart.merge_script(paths.vhd_path))
        os.remove(paths.vhd_path)
        logger.info(f"Removed differencing disk {paths.vhd_path}")

    def status(self, user: Optional[str] = None, computer: Optional[str] = None) -> Dict[str, Any]:
        paths = self.resolve_paths(user, computer)
        info: Dict[str, Any] = {
            "mode": self.mode.value,
            "vhd_path": paths.vhd_path,
            "parent_path": paths.parent_path,
            "mount_path": paths.mount_path,
            "outlook_link": paths.outlook_link,
            "exists": os.path.exists(paths.vhd_path),
            "linked": os.path.islink(paths.outlook_link),
            "detail": None,
            "volumes": [],
        }
        if info["exists"]:
            info["detail"] = self.detail(paths.vhd_path)
            info["volumes"] = self.volume_query(self.settings.odfc_label)
        return info

    # Outlook cache link

    def link_outlook_cache(self, paths: OdfcPaths) -> None:
        target = os.path.join(paths.mount_path, OUTLOOK_SUBDIR)
        os.makedirs(target, exist_ok=True)
        link = paths.outlook_link

        if os.path.islink(link):
            os.unlink(link)
        elif os.path.isdir(link):
            if os.listdir(link):
                backup = link + LOCAL_SUFFIX
                if os.path.islink(backup) or os.path.isfile(backup):
                    os.remove(backup)
                elif os.path.isdir(backup):
                    shutil.rmtree(backup)
                logger.info(f"Moving existing {link} to {backup}")
                os.rename(link, backup)
            else:
                os.rmdir(link)
        else:
            os.makedirs(os.path.dirname(link), exist_ok=True)

        os.symlink(target, link, target_is_directory=True)
        logger.info(f"Linked {link} -> {target}")

    def unlink_outlook_cache(self, paths: OdfcPaths) -> None:
        if os.path.islink(paths.outlook_link):
            os.unlink(paths.outlook_link)
            logger.info(f"Removed link {paths.outlook_link}")
