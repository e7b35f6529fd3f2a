"""
Tests for the system checks and power measurement.
"""

import signal
from inspect import cleandoc

import pytest

from zephyrus.diagnostics import (
    CheckResult,
    PowerSampler,
    check_cpu_scaling,
    check_gpus,
    check_kernel_modules,
    check_nvidia_power_state,
    check_packages,
    check_services,
    check_xorg_config,
    nvidia_power_state,
    parse_lsmod,
    power_summary,
    print_summary,
    read_battery_power,
    run_checks,
)
from zephyrus.distro import ARCH
from zephyrus.templates import xorg_hybrid

LSMOD = cleandoc('''
    Module                  Size  Used by
    nvidia_drm            135168  4
    nvidia              60874752  50 nvidia_uvm,nvidia_modeset
    amdgpu              12464128  32
''')


@pytest.fixture
def pci_devices(tmp_path):
    """A fake /sys/bus/pci/devices with the AMD iGPU and a runtime suspended NVIDIA dGPU."""

    def device(slot, vendor, device_class, runtime_status):
        path = tmp_path / "pci" / slot
        (path / "power").mkdir(parents=True)
        (path / "vendor").write_text(f"{vendor}\n")
        (path / "class").write_text(f"{device_class}\n")
        (path / "power" / "runtime_status").write_text(f"{runtime_status}\n")

    device("0000:01:00.0", "0x10de", "0x030000", "suspended")
    device("0000:01:00.1", "0x10de", "0x040300", "active")
    device("0000:65:00.0", "0x1002", "0x038000", "active")
    return tmp_path / "pci"


@pytest.fixture
def power_supply(tmp_path):
    path = tmp_path / "power_supply"
    (path / "BAT0").mkdir(parents=True)
    (path / "AC0").mkdir()
    return path


def test_parse_lsmod():
    assert parse_lsmod(LSMOD) == {"nvidia_drm", "nvidia", "amdgpu"}


class TestModulesAndPackages:
    def test_kernel_modules(self, mocker):
        mocker.patch("zephyrus.diagnostics.shell_output", return_value=LSMOD)
        assert check_kernel_modules().passed
        result = check_kernel_modules(bbswitch=True)
        assert not result.passed
        assert result.message == "not loaded: bbswitch"

    def test_packages(self, mocker):
        mocker.patch("zephyrus.diagnostics.shell_output", return_value="nvidia\nasusctl\n")
        assert check_packages(ARCH, ["nvidia", "asusctl"]).passed
        assert check_packages(ARCH, ["nvidia", "supergfxctl"]).message == "missing: supergfxctl"

    def test_gpus(self, mocker, lspci_output):
        mocker.patch("zephyrus.diagnostics.shell_output", return_value=lspci_output)
        assert check_gpus().passed

    def test_gpus_without_nvidia(self, mocker):
        output = "65:00.0 Display controller [0380]: Advanced Micro Devices, Inc. [AMD/ATI] Phoenix1"
        mocker.patch("zephyrus.diagnostics.shell_output", return_value=output)
        assert not check_gpus().passed

    def test_services(self, mocker):
        status = {"is-enabled tlp.service": "enabled", "is-active tlp.service": "active",
                  "is-enabled asusd.service": "disabled", "is-active asusd.service": "inactive"}
        mocker.patch("zephyrus.diagnostics.shell_output", side_effect=lambda command, **kwargs: status[command.removeprefix("systemctl ")])
        result = check_services(["tlp.service", "asusd.service"])
        assert not result.passed
        assert result.message == "not running: asusd.service (disabled/inactive)"


class TestXorgConfig:
    def test_generated_config(self, tmp_path):
        path = tmp_path / "10-hybrid.conf"
        path.write_text(xorg_hybrid("PCI:101:0:0", "PCI:1:0:0"))
        assert check_xorg_config(str(path)).passed

    def test_missing(self, tmp_path):
        assert "not found" in check_xorg_config(str(tmp_path / "missing.conf")).message

    def test_without_nvidia(self, tmp_path):
        path = tmp_path / "10-hybrid.conf"
        path.write_text('Section "Device"\n  Driver "amdgpu"\nEndSection\n')
        assert check_xorg_config(str(path)).message == "driver section missing: nvidia"


class TestNvidiaPowerState:
    def test_bbswitch_wins(self, tmp_path, pci_devices):
        bbswitch = tmp_path / "bbswitch"
        bbswitch.write_text("0000:01:00.0 ON\n")
        assert nvidia_power_state(str(bbswitch), str(pci_devices)) == "ON"

    def test_runtime_pm(self, tmp_path, pci_devices):
        assert nvidia_power_state(str(tmp_path / "no-bbswitch"), str(pci_devices)) == "OFF"

    def test_unknown(self, tmp_path):
        result = check_nvidia_power_state(str(tmp_path / "no-bbswitch"), str(tmp_path / "no-pci"))
        assert not result.passed


class TestCpuScaling:
    def test_scaling(self, tmp_path):
        (tmp_path / "scaling_governor").write_text("schedutil\n")
        (tmp_path / "scaling_cur_freq").write_text("3201000\n")
        assert check_cpu_scaling(str(tmp_path)).message == "governor schedutil, 3201 MHz"

    def test_no_cpufreq(self, tmp_path):
        assert not check_cpu_scaling(str(tmp_path / "missing")).passed


class TestBatteryPower:
    def test_power_now(self, power_supply):
        (power_supply / "BAT0" / "power_now").write_text("12500000\n")
        assert read_battery_power(str(power_supply)) == pytest.approx(12.5)

    def test_current_and_voltage(self, power_supply):
        (power_supply / "BAT0" / "current_now").write_text("1000000\n")
        (power_supply / "BAT0" / "voltage_now").write_text("15000000\n")
        assert read_battery_power(str(power_supply)) == pytest.approx(15.0)

    def test_no_readings(self, power_supply):
        assert read_battery_power(str(power_supply)) is None

    def test_sampler(self, power_supply, mocker):
        (power_supply / "BAT0" / "power_now").write_text("8000000\n")
        mocker.patch("zephyrus.diagnostics.sleep")
        clock = iter(range(100))
        mocker.patch("zephyrus.diagnostics.monotonic", side_effect=lambda: next(clock))
        samples = PowerSampler(interval=1, duration=3, power_supply=str(power_supply)).sample()
        assert samples == [8.0, 8.0]

    def test_stress_command_group_is_stopped(self, power_supply, mocker):
        mocker.patch("zephyrus.diagnostics.sleep")
        clock = iter(range(100))
        mocker.patch("zephyrus.diagnostics.monotonic", side_effect=lambda: next(clock))
        popen = mocker.patch("zephyrus.diagnostics.Popen")
        popen.return_value.pid = 4242
        killpg = mocker.patch("zephyrus.diagnostics.os.killpg")
        PowerSampler(interval=1, duration=2, power_supply=str(power_supply)).sample("stress -c 8 & stress -m 2")
        assert popen.call_args.kwargs["start_new_session"] is True
        killpg.assert_called_once_with(4242, signal.SIGTERM)
        popen.return_value.wait.assert_called_once_with()

    def test_stress_command_already_finished(self, power_supply, mocker):
        mocker.patch("zephyrus.diagnostics.sleep")
        clock = iter(range(100))
        mocker.patch("zephyrus.diagnostics.monotonic", side_effect=lambda: next(clock))
        mocker.patch("zephyrus.diagnostics.Popen")
        mocker.patch("zephyrus.diagnostics.os.killpg", side_effect=ProcessLookupError)
        assert PowerSampler(interval=1, duration=2, power_supply=str(power_supply)).sample("true") == []

    def test_summary(self):
        assert power_summary([10.0, 12.0, 14.0]) == "3 samples, average 12.00 W, min 10.00 W, max 14.00 W"
        assert "no battery power readings" in power_summary([])


class TestSummary:
    def test_exit_code(self, capsys):
        results = run_checks([
            lambda: CheckResult("first", True, "fine"),
            lambda: CheckResult("second", False, "broken"),
        ])
        assert print_summary(results) == 1
        output = capsys.readouterr().out
        assert "1/2 checks passed" in output
        assert "second: broken" in output

    def test_all_passed(self):
        assert print_summary([CheckResult("only", True, "fine")]) == 0
