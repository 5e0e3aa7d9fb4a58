"""
Volume queries through WMI.

Windows 7 has no Get-Volume, so Win32_Volume is queried through
Get-WmiObject and the result converted to JSON.
"""

import json
import logging
from typing import List, Optional

from pydantic import BaseModel

from vdiops.core.exceptions import CommandError
from vdiops.core.process import run_powershell

logger = logging.getLogger(__name__)


class WmiVolume(BaseModel):
    device_id: str
    name: Optional[str] = None
    label: Optional[str] = None
    file_system: Optional[str] = None
    capacity: Optional[int] = None
    free_space: Optional[int] = None


def _quote(value: str) -> str:
    # WQL string literal inside a PowerShell single-quoted string
    return value.replace("\\", "\\\\").replace("'", "''")


def parse_volume_json(text: str) -> List[WmiVolume]:
    """ConvertTo-Json emits an object for one result and a list for several."""
    text = text.strip()
    if not text:
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        data = [data]
    return [
        WmiVolume(
            device_id=item.get("DeviceID") or "",
            name=item.get("Name"),
            label=item.get("Label"),
            file_system=item.get("FileSystem"),
            capacity=item.get("Capacity"),
            free_space=item.get("FreeSpace"),
        )
        for item in data
    ]


def query_volumes(label: Optional[str] = None) -> List[WmiVolume]:
    """Return Win32_Volume records, optionally filtered by label."""
    script = "Get-WmiObject -Class Win32_Volume"
    if label:
        script += f" -Filter \"Label='{_quote(label)}'\""
    script += " | Select-Object DeviceID,Name,Label,FileSystem,Capacity,FreeSpace | ConvertTo-Json -Compress"
    result = run_powershell(script, timeout=60)
    try:
        return parse_volume_json(result.stdout)
    except ValueError as e:
        raise CommandError(f"Unexpected Win32_Volume output: {e}", result) from e
