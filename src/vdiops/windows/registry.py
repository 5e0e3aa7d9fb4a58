"""
Thin wrapper over ``winreg`` addressing keys by ``HIVE\\sub\\key`` strings.

winreg is imported inside the functions so the package can be imported (and
tested) on machines that are not Windows.
"""

import logging
from typing import Any, Tuple

from vdiops.core.exceptions import RegistryError

logger = logging.getLogger(__name__)

HIVE_ALIASES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKCU": "HKEY_CURRENT_USER",
    "HKCR": "HKEY_CLASSES_ROOT",
    "HKU": "HKEY_USERS",
    "HKCC": "HKEY_CURRENT_CONFIG",
}

VALUE_TYPES = ("REG_SZ", "REG_EXPAND_SZ", "REG_DWORD", "REG_QWORD", "REG_MULTI_SZ")


def split_key_path(path: str) -> Tuple[str, str]:
    """
    Split ``HKLM\\SOFTWARE\\Foo`` into (``HKEY_LOCAL_MACHINE``, ``SOFTWARE\\Foo``).

    Raises:
        RegistryError: If the hive is not recognised
    """
    normalized = path.replace("/", "\\").strip("\\")
    hive, _, subkey = normalized.partition("\\")
    hive = hive.upper()
    hive = HIVE_ALIASES.get(hive, hive)
    if hive not in HIVE_ALIASES.values():
        raise RegistryError(f"Unknown registry hive in '{path}'")
    return hive, subkey


def _winreg():
    try:
        import winreg
    except ImportError as e:
        raise RegistryError("The Windows registry is only available on Windows") from e
    return winreg


def read_value(path: str, name: str, default: Any = None) -> Any:
    """Read a value, returning ``default`` when the key or value is missing."""
    winreg = _winreg()
    hive, subkey = split_key_path(path)
    try:
        with winreg.OpenKey(getattr(winreg, hive), subkey, 0, winreg.KEY_READ) as key:
            value, _ = winreg.QueryValueEx(key, name)
            return value
    except FileNotFoundError:
        return default
    except OSError as e:
        raise RegistryError(f"Cannot read {path}\\{name}: {e}") from e


def write_value(path: str, name: str, value: Any, value_type: str = "REG_SZ") -> None:
    """Write a value, creating the key if needed."""
    if value_type not in VALUE_TYPES:
        raise RegistryError(f"Unsupported registry value type: {value_type}")
    winreg = _winreg()
    hive, subkey = split_key_path(path)
    try:
        with winreg.CreateKeyEx(getattr(winreg, hive), subkey, 0, winreg.KEY_WRITE) as key:
            winreg.SetValueEx(key, name, 0, getattr(winreg, value_type), value)
    except OSError as e:
        raise RegistryError(f"Cannot write {path}\\{name}: {e}") from e
    logger.info(f"Set {path}\\{name} = {value!r} ({value_type})")
