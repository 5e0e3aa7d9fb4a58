"""
Shared fixtures: settings pointing into a temporary directory and a small
diskpart simulator that answers scripts the way diskpart.exe prints them.
"""

import os
import re
import shutil
from unittest.mock import patch

import pytest

from vdiops.core.config import Settings
from vdiops.core.exceptions import DiskpartError

SUCCESS = "DiskPart successfully {}.\n"

HEADER = """
Microsoft DiskPart version 6.1.7601
Copyright (C) 1999-2008 Microsoft Corporation.
On computer: VDI-001

"""

VOLUME_TABLE = """
  Volume ###  Ltr  Label        Fs     Type        Size     Status     Info
  ----------  ---  -----------  -----  ----------  -------  ---------  --------
* Volume {number}         ODFC         NTFS   Partition     29 GB  Healthy
"""

FILE_ARG = re.compile(r'file="([^"]+)"')


@pytest.fixture(autouse=True)
def no_keyring():
    with patch("keyring.get_password", return_value=None):
        yield


@pytest.fixture
def settings(tmp_path):
    return Settings(
        event_log_enabled=False,
        odfc_root=str(tmp_path / "share"),
        odfc_mount_root=str(tmp_path / "mount"),
        odfc_diff_root=str(tmp_path / "diff"),
        outlook_cache_dir=str(tmp_path / "appdata" / "Microsoft" / "Outlook"),
        odfc_size_mb=1024,
        volume_attempts=3,
        volume_delay=0.5,
        search_data_root=str(tmp_path / "search"),
        join_attempts=3,
        join_delay=5,
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        throttle_batch_size=1000,
        throttle_interval=0,
    )


class FakeDiskpart:
    """Keeps track of attached VHDs and answers like diskpart.exe would."""

    def __init__(self):
        self.scripts = []
        self.attached = {}
        self.next_disk = 2
        self.volume_misses = 0
        self.fail_on = None

    @property
    def commands(self):
        return [c for script in self.scripts for c in script]

    def run(self, commands, tolerate=None):
        commands = list(commands)
        self.scripts.append(commands)
        match = FILE_ARG.search(commands[0])
        path = match.group(1) if match else None
        last = commands[-1]

        if self.fail_on and any(self.fail_on in c for c in commands):
            failed = next(i for i, c in enumerate(commands) if self.fail_on in c)
            # diskpart stops at the failing line; earlier lines took effect and
            # a failed create can leave a partial file behind
            if commands[0].startswith("create vdisk"):
                with open(path, "w"):
                    pass
                if "attach vdisk" in commands[:failed]:
                    self.attached[path] = self._new_disk()
            elif "detach vdisk" in commands[:failed]:
                self.attached.pop(path, None)
            raise DiskpartError(f"diskpart '{commands[failed]}' failed: simulated", "")

        if commands[0].startswith("create vdisk"):
            with open(path, "w"):
                pass
            if "parent=" in commands[0]:
                return HEADER + SUCCESS.format("created the virtual disk file")
            self.attached[path] = self._new_disk()
            return HEADER + SUCCESS.format("formatted the volume")

        if last == "attach vdisk":
            if path in self.attached:
                output = HEADER + "Virtual Disk Service error:\nThe virtual disk is already attached.\n"
                if tolerate is not None and tolerate.search(output):
                    return output
                raise DiskpartError("already attached", output)
            self.attached[path] = self._new_disk()
            return HEADER + SUCCESS.format("attached the virtual disk file")

        if last == "detach vdisk":
            self.attached.pop(path, None)
            return HEADER + SUCCESS.format("detached the virtual disk file")

        if last == "detail vdisk":
            disk = self.attached.get(path)
            return HEADER + (
                "Device type ID: 2 (VHD)\n"
                "State: Added\n"
                "Virtual size:   30 GB\n"
                "Physical size:  2112 KB\n"
                f"Filename: {path}\n"
                "Is Child: No\n"
                "Parent Filename:\n"
                f"Associated disk#: {disk if disk is not None else 'Not found'}\n"
            )

        if last == "detail disk":
            if self.volume_misses:
                self.volume_misses -= 1
                return HEADER + "There are no volumes.\n"
            disk = int(commands[0].split()[-1])
            return HEADER + "Msft Virtual Disk SCSI Disk Device\nDisk ID: 1A2B3C4D\n" + VOLUME_TABLE.format(number=disk + 3)

        if last.startswith("assign mount="):
            mount = last.split("=", 1)[1].strip('"')
            os.makedirs(os.path.join(mount, "System Volume Information"), exist_ok=True)
            return HEADER + SUCCESS.format("assigned the drive letter or mount point")

        if last.startswith("remove mount="):
            mount = last.split("=", 1)[1].strip('"')
            for name in os.listdir(mount):
                full = os.path.join(mount, name)
                if os.path.isdir(full) and not os.path.islink(full):
                    shutil.rmtree(full)
                else:
                    os.remove(full)
            return HEADER + SUCCESS.format("removed the drive letter or mount point")

        if last.startswith("merge vdisk"):
            return HEADER + "100 percent completed\n\n" + SUCCESS.format("merged the virtual disk file")

        return HEADER

    def _new_disk(self):
        disk = self.next_disk
        self.next_disk += 1
        return disk


@pytest.fixture
def fake_diskpart():
    return FakeDiskpart()
