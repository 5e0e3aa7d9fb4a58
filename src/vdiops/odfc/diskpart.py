"""
diskpart.exe scripting and output scraping.

Windows 7 has no storage cmdlets, so every VHD operation is a short diskpart
script written to a temporary file and run with ``diskpart /s``. The output
is free text; the parsers here pull out the few facts the ODFC manager needs
(associated disk number, volume numbers, error messages).
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from vdiops.core.exceptions import DiskpartError
from vdiops.core.process import run_command

logger = logging.getLogger(__name__)

DISKPART = "diskpart.exe"

ERROR_MARKERS = (
    "Virtual Disk Service error:",
    "DiskPart has encountered an error:",
    "DiskPart failed",
)

ALREADY_ATTACHED = re.compile(r"already attached", re.IGNORECASE)
VOLUME_ROW = re.compile(r"^\s*\*?\s*Volume\s+(\d+)\b")
DISK_NUMBER = re.compile(r"(\d+)")


@dataclass
class VdiskDetail:
    """Parsed ``detail vdisk`` output."""
    state: Optional[str] = None
    virtual_size: Optional[str] = None
    physical_size: Optional[str] = None
    filename: Optional[str] = None
    is_child: bool = False
    parent_filename: Optional[str] = None
    disk_number: Optional[int] = None

    @property
    def attached(self) -> bool:
        return self.disk_number is not None


@dataclass
class VolumeInfo:
    """One row of a diskpart volume table."""
    number: int
    letter: Optional[str] = None
    label: Optional[str] = None
    fs: Optional[str] = None
    type: Optional[str] = None
    size: Optional[str] = None
    status: Optional[str] = None
    info: Optional[str] = None


# Script builders

def _q(path: str) -> str:
    return f'"{path}"'


def create_vdisk_script(vhd_path: str, size_mb: int, label: str) -> List[str]:
    return [
        f"create vdisk file={_q(vhd_path)} maximum={size_mb} type=expandable",
        f"select vdisk file={_q(vhd_path)}",
        "attach vdisk",
        "create partition primary",
        f"format fs=ntfs label={_q(label)} quick",
    ]


def create_child_script(child_path: str, parent_path: str) -> List[str]:
    return [f"create vdisk file={_q(child_path)} parent={_q(parent_path)}"]


def attach_script(vhd_path: str) -> List[str]:
    return [f"select vdisk file={_q(vhd_path)}", "attach vdisk"]


def detach_script(vhd_path: str) -> List[str]:
    return [f"select vdisk file={_q(vhd_path)}", "detach vdisk"]


def detail_vdisk_script(vhd_path: str) -> List[str]:
    return [f"select vdisk file={_q(vhd_path)}", "detail vdisk"]


def detail_disk_script(disk_number: int) -> List[str]:
    return [f"select disk {disk_number}", "detail disk"]


def assign_mount_script(volume_number: int, mount_path: Optional[str] = None,
                        letter: Optional[str] = None) -> List[str]:
    if letter:
        target = f"letter={letter.rstrip(':')}"
    elif mount_path:
        target = f"mount={_q(mount_path)}"
    else:
        raise ValueError("Either mount_path or letter is required")
    return [f"select volume {volume_number}", f"assign {target}"]


def remove_mount_script(volume_number: int, mount_path: str) -> List[str]:
    return [f"select volume {volume_number}", f"remove mount={_q(mount_path)}"]


def merge_script(child_path: str, depth: int = 1) -> List[str]:
    return [f"select vdisk file={_q(child_path)}", f"merge vdisk depth={depth}"]


# Output parsers

def find_errors(output: str) -> List[str]:
    """
    Collect error messages from diskpart output.

    diskpart prints the marker and the message either on the same line or
    on the following non-empty line.
    """
    errors = []
    lines = output.splitlines()
    for index, line in enumerate(lines):
        stripped = line.strip()
        for marker in ERROR_MARKERS:
            if not stripped.startswith(marker):
                continue
            if marker == "DiskPart failed":
                errors.append(stripped)
                break
            message = stripped[len(marker):].strip()
            if not message:
                for following in lines[index + 1:]:
                    if following.strip():
                        message = following.strip()
                        break
            errors.append(message or stripped)
            break
    return errors


def parse_key_values(output: str) -> Dict[str, str]:
    values = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key:
            values[key.lower()] = value.strip()
    return values


def parse_vdisk_detail(output: str) -> VdiskDetail:
    values = parse_key_values(output)
    if "associated disk#" not in values and "state" not in values:
        raise DiskpartError("No virtual disk details in diskpart output", output)

    disk_number = None
    match = DISK_NUMBER.search(values.get("associated disk#", ""))
    if match:
        disk_number = int(match.group(1))

    return VdiskDetail(
        state=values.get("state") or None,
        virtual_size=values.get("virtual size") or None,
        physical_size=values.get("physical size") or None,
        filename=values.get("filename") or None,
        is_child=values.get("is child", "").lower() == "yes",
        parent_filename=values.get("parent filename") or None,
        disk_number=disk_number,
    )


def _column_spans(separator: str) -> List[int]:
    return [m.start() for m in re.finditer(r"-+", separator)]


def parse_volume_table(output: str) -> List[VolumeInfo]:
    """Parse the ``Volume ###`` table printed by ``list volume`` and ``detail disk``."""
    lines = output.splitlines()
    starts: List[int] = []
    volumes = []
    for index, line in enumerate(lines):
        if "Volume ###" in line and index + 1 < len(lines):
            starts = _column_spans(lines[index + 1])
            continue
        match = VOLUME_ROW.match(line)
        if not match or not starts:
            continue
        cells = []
        for pos, start in enumerate(starts):
            end = starts[pos + 1] if pos + 1 < len(starts) else len(line)
            cells.append(line[start:end].strip() or None)
        cells += [None] * (8 - len(cells))
        volumes.append(VolumeInfo(
            number=int(match.group(1)),
            letter=cells[1],
            label=cells[2],
            fs=cells[3],
            type=cells[4],
            size=cells[5],
            status=cells[6],
            info=cells[7],
        ))
    return volumes


class DiskpartRunner:
    """Runs diskpart scripts and raises on reported errors."""

    def __init__(self, timeout: int = 300, executable: str = DISKPART):
        self.timeout = timeout
        self.executable = executable

    def run(self, commands: Iterable[str], tolerate: Optional[re.Pattern] = None) -> str:
        """
        Run a diskpart script.

        Args:
            commands: diskpart commands, one per line
            tolerate: Errors matching this pattern are logged, not raised

        Returns:
            The combined diskpart output

        Raises:
            DiskpartError: If diskpart reports an error or exits non-zero
        """
        commands = list(commands)
        output = self._execute(commands)

        errors = find_errors(output)
        if tolerate is not None:
            tolerated = [e for e in errors if tolerate.search(e)]
            for message in tolerated:
                logger.info(f"diskpart: {message}")
            if tolerated and len(tolerated) == len(errors):
                return output
        if errors:
            raise DiskpartError(f"diskpart '{commands[-1]}' failed: {errors[0]}", output)
        return output

    def _execute(self, commands: List[str]) -> str:
        logger.debug("diskpart script:\n" + "\n".join(commands))
        with tempfile.NamedTemporaryFile(mode="w", suffix=".txt", delete=False) as f:
            f.write("\n".join(commands) + "\n")
            script_path = f.name
        try:
            result = run_command([self.executable, "/s", script_path], timeout=self.timeout, check=False)
        finally:
            try:
                os.unlink(script_path)
            except OSError:
                logger.warning(f"Could not remove diskpart script {script_path}")

        output = result.output
        if not result.success and not find_errors(output):
            raise DiskpartError(
                f"diskpart exited with code {result.returncode}", output
            )
        return output
