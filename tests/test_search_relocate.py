"""Tests for Windows Search database relocation."""

import os
from unittest.mock import call, patch

import pytest

from vdiops.core.exceptions import RegistryError, ServiceError
from vdiops.search.relocate import (
    DATA_DIRECTORY,
    SEARCH_KEY,
    SETUP_COMPLETED,
    SearchRelocator,
    normalize_directory,
    same_directory,
)


def test_normalize_directory():
    assert normalize_directory("D:\\Search") == "D:\\Search\\"
    assert normalize_directory("D:\\Search\\") == "D:\\Search\\"
    assert normalize_directory("D:\\Search/") == "D:\\Search\\"


def test_same_directory_is_case_insensitive():
    assert same_directory("C:\\ProgramData\\Microsoft\\Search\\Data\\", "c:\\programdata\\microsoft\\search\\data")
    assert not same_directory(None, "D:\\Search")


@pytest.fixture
def platform_calls():
    with patch("vdiops.windows.registry.read_value") as read_value, \
         patch("vdiops.windows.registry.write_value") as write_value, \
         patch("vdiops.windows.services.stop_service", return_value=True) as stop, \
         patch("vdiops.windows.services.start_service", return_value=True) as start:
        yield read_value, write_value, stop, start


def test_relocate_noop_when_already_there(settings, platform_calls):
    read_value, write_value, stop, start = platform_calls
    read_value.return_value = "D:\\Search\\"

    result = SearchRelocator(settings).relocate("d:\\search")
    assert not result.changed
    stop.assert_not_called()
    write_value.assert_not_called()


def test_relocate_updates_registry_and_restarts(settings, platform_calls, tmp_path):
    read_value, write_value, stop, start = platform_calls
    read_value.return_value = "C:\\ProgramData\\Microsoft\\Search\\Data\\"
    target = str(tmp_path / "index")

    result = SearchRelocator(settings).relocate(target)

    assert result.changed
    assert result.current == target + "\\"
    assert result.previous == "C:\\ProgramData\\Microsoft\\Search\\Data\\"
    assert not result.data_moved
    stop.assert_called_once()
    assert stop.call_args[0][0] == "WSearch"
    write_value.assert_has_calls([
        call(SEARCH_KEY, DATA_DIRECTORY, target + "\\", "REG_SZ"),
        call(SEARCH_KEY, SETUP_COMPLETED, 0, "REG_DWORD"),
    ])
    start.assert_called_once()


def test_relocate_without_restart(settings, platform_calls, tmp_path):
    read_value, write_value, stop, start = platform_calls
    read_value.return_value = None

    SearchRelocator(settings).relocate(str(tmp_path / "index"), restart=False)
    start.assert_not_called()


def test_relocate_uses_configured_default(settings, platform_calls):
    read_value, write_value, stop, start = platform_calls
    read_value.return_value = None

    result = SearchRelocator(settings).relocate()
    assert result.current == settings.search_data_root + "\\"


def test_relocate_moves_data(settings, platform_calls, tmp_path):
    read_value, write_value, stop, start = platform_calls
    previous = tmp_path / "old"
    (previous / "Applications" / "Windows").mkdir(parents=True)
    (previous / "Applications" / "Windows" / "Windows.edb").write_text("index")
    read_value.return_value = str(previous)

    result = SearchRelocator(settings).relocate(str(tmp_path / "new"))
    assert not result.data_moved

    result = SearchRelocator(settings).relocate(str(tmp_path / "new2"), move_data=True)
    assert result.data_moved
    copied = os.path.join(result.current, "Applications", "Windows", "Windows.edb")
    assert open(copied).read() == "index"


def test_relocate_restarts_service_when_registry_write_fails(settings, platform_calls, tmp_path):
    read_value, write_value, stop, start = platform_calls
    read_value.return_value = None
    write_value.side_effect = RegistryError("access denied")

    with pytest.raises(RegistryError):
        SearchRelocator(settings).relocate(str(tmp_path / "index"), restart=False)
    start.assert_called_once()


def test_relocate_reports_original_error_when_restart_fails(settings, platform_calls, tmp_path):
    read_value, write_value, stop, start = platform_calls
    read_value.return_value = None
    write_value.side_effect = RegistryError("access denied")
    start.side_effect = ServiceError("start timed out")

    with pytest.raises(RegistryError, match="access denied"):
        SearchRelocator(settings).relocate(str(tmp_path / "index"))
    start.assert_called_once()
