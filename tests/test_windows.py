"""
Tests for the Windows platform wrappers: services, registry paths, WMI
volume output and the command runner.
"""

import subprocess
from unittest.mock import MagicMock, patch

import psutil
import pytest

from vdiops.core.exceptions import CommandError, RegistryError, ServiceError
from vdiops.core.process import CommandResult, run_command, run_powershell
from vdiops.windows import registry, services, wmi


def _service(*statuses):
    svc = MagicMock()
    svc.status.side_effect = list(statuses)
    return svc


def test_stop_service_waits_until_stopped():
    sleeps = []
    svc = _service("running", "stop_pending", "stop_pending", "stopped")
    with patch("psutil.win_service_get", create=True, return_value=svc), \
         patch("vdiops.windows.services.run_command") as run:
        assert services.stop_service("WSearch", sleep=sleeps.append)
    run.assert_called_once()
    assert run.call_args[0][0] == ["sc.exe", "stop", "WSearch"]
    assert sleeps == [1.0, 1.0]


def test_stop_service_already_stopped():
    with patch("psutil.win_service_get", create=True, return_value=_service("stopped")), \
         patch("vdiops.windows.services.run_command") as run:
        assert not services.stop_service("WSearch")
    run.assert_not_called()


def test_start_service_times_out():
    svc = MagicMock()
    svc.status.return_value = "stopped"
    with patch("psutil.win_service_get", create=True, return_value=svc), \
         patch("vdiops.windows.services.run_command"):
        with pytest.raises(ServiceError, match="expected 'running'"):
            services.start_service("WSearch", timeout=3, sleep=lambda s: None)


def test_sc_failure_becomes_service_error():
    with patch("psutil.win_service_get", create=True, return_value=_service("stopped")), \
         patch("vdiops.windows.services.run_command", side_effect=CommandError("sc.exe exited with code 5")):
        with pytest.raises(ServiceError, match="sc start"):
            services.start_service("WSearch")


def test_missing_service():
    with patch("psutil.win_service_get", create=True, side_effect=psutil.NoSuchProcess(0)):
        with pytest.raises(ServiceError, match="does not exist"):
            services.service_status("NoSuchService")


def test_split_key_path():
    assert registry.split_key_path("HKLM\\SOFTWARE\\Microsoft\\Windows Search") == (
        "HKEY_LOCAL_MACHINE", "SOFTWARE\\Microsoft\\Windows Search"
    )
    assert registry.split_key_path("HKEY_CURRENT_USER/Software/Foo") == ("HKEY_CURRENT_USER", "Software\\Foo")
    with pytest.raises(RegistryError):
        registry.split_key_path("HKXX\\Software")


def test_write_value_rejects_unknown_type():
    with pytest.raises(RegistryError, match="Unsupported"):
        registry.write_value("HKLM\\SOFTWARE\\Foo", "Bar", 1, "REG_BINARYISH")


def test_parse_volume_json_single_and_list():
    single = '{"DeviceID":"\\\\\\\\?\\\\Volume{1234}\\\\","Name":"C:\\\\ODFC\\\\jdoe\\\\","Label":"ODFC",' \
             '"FileSystem":"NTFS","Capacity":31457280000,"FreeSpace":1048576}'
    volumes = wmi.parse_volume_json(single)
    assert len(volumes) == 1
    assert volumes[0].label == "ODFC"
    assert volumes[0].name == "C:\\ODFC\\jdoe\\"
    assert volumes[0].free_space == 1048576

    many = '[{"DeviceID":"a","Label":"ODFC"},{"DeviceID":"b","Label":null}]'
    assert [v.device_id for v in wmi.parse_volume_json(many)] == ["a", "b"]
    assert wmi.parse_volume_json("") == []


def test_query_volumes_filters_by_label():
    result = CommandResult(returncode=0, stdout='{"DeviceID":"a","Label":"ODFC"}')
    with patch("vdiops.windows.wmi.run_powershell", return_value=result) as run:
        volumes = wmi.query_volumes("ODFC")
    assert volumes[0].device_id == "a"
    assert "Label='ODFC'" in run.call_args[0][0]
    assert "ConvertTo-Json" in run.call_args[0][0]


def test_query_volumes_bad_json():
    with patch("vdiops.windows.wmi.run_powershell", return_value=CommandResult(returncode=0, stdout="not json")):
        with pytest.raises(CommandError):
            wmi.query_volumes()


def test_run_command_success():
    completed = subprocess.CompletedProcess(["x"], 0, stdout="out", stderr="")
    with patch("subprocess.run", return_value=completed):
        result = run_command(["x"])
    assert result.success
    assert result.output == "out"


def test_run_command_failure_raises_with_result():
    completed = subprocess.CompletedProcess(["x"], 3, stdout="", stderr="bad")
    with patch("subprocess.run", return_value=completed):
        with pytest.raises(CommandError) as excinfo:
            run_command(["x"])
        assert excinfo.value.result.returncode == 3
        assert run_command(["x"], check=False).output == "\nbad"


def test_run_command_timeout():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["x"], 5)):
        with pytest.raises(CommandError, match="timed out"):
            run_command(["x"], timeout=5)


def test_run_command_missing_executable():
    with patch("subprocess.run", side_effect=FileNotFoundError("no such file")):
        with pytest.raises(CommandError, match="Could not start"):
            run_command(["nope.exe"])


def test_run_powershell_arguments():
    with patch("vdiops.core.process.run_command") as run:
        run_powershell("Get-Date")
    command = run.call_args[0][0]
    assert command[0] == "powershell.exe"
    assert command[-2:] == ["-Command", "Get-Date"]
    assert "-NonInteractive" in command
