from __future__ import annotations

import os
import signal
from glob import glob
from subprocess import DEVNULL, Popen
from time import monotonic, sleep
from typing import Callable

from zephyrus.distro import Distro
from zephyrus.hardware import parse_lspci, read_text
from zephyrus.managers.dnf import RPM_QUERY
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import command_exists, shell_output, shell_success
from zephyrus.utils.text import *

BBSWITCH = "/proc/acpi/bbswitch"
PCI_DEVICES = "/sys/bus/pci/devices"
POWER_SUPPLY = "/sys/class/power_supply"
CPUFREQ = "/sys/devices/system/cpu/cpu0/cpufreq"
XORG_CONFIG = "/etc/X11/xorg.conf.d/10-hybrid.conf"


class CheckResult:
  name: str
  passed: bool
  message: str

  def __init__(self, name: str, passed: bool, message: str):
    self.name = name
    self.passed = passed
    self.message = message

  def __repr__(self):
    return f"CheckResult({self.name!r}, {self.passed}, {self.message!r})"


def installed_packages(distro: Distro) -> set[str]:
  command = "pacman -Qq" if distro.name == "arch" else RPM_QUERY
  return set(shell_output(command, check = False).split())


def check_packages(distro: Distro, required: list[str]) -> CheckResult:
  installed = installed_packages(distro)
  missing = [name for name in required if name not in installed]
  if missing:
    return CheckResult("packages", False, f"missing: {" ".join(missing)}")
  return CheckResult("packages", True, f"all {len(required)} required packages installed")


def check_gpus() -> CheckResult:
  gpus = parse_lspci(shell_output("lspci -nn", check = False))
  vendors = {gpu.vendor for gpu in gpus}
  found = ", ".join(f"{gpu.slot} {gpu.description}" for gpu in gpus) or "none"
  return CheckResult("GPU detection", {"amd", "nvidia"} <= vendors, f"found: {found}")


def parse_lsmod(output: str) -> set[str]:
  return {line.split()[0] for line in output.splitlines()[1:] if line.strip()}


def check_kernel_modules(bbswitch: bool = False) -> CheckResult:
  loaded = parse_lsmod(shell_output("lsmod", check = False))
  required = ["amdgpu", "nvidia", *(["bbswitch"] if bbswitch else [])]
  missing = [module for module in required if module not in loaded]
  if missing:
    return CheckResult("kernel modules", False, f"not loaded: {" ".join(missing)}")
  return CheckResult("kernel modules", True, f"loaded: {" ".join(required)}")


def check_xorg_config(path: str = XORG_CONFIG) -> CheckResult:
  content = read_text(path)
  if not content:
    return CheckResult("Xorg configuration", False, f"{path} not found")
  missing = [driver for driver in ["amdgpu", "nvidia"] if f'Driver "{driver}"' not in content]
  if missing:
    return CheckResult("Xorg configuration", False, f"driver section missing: {" ".join(missing)}")
  return CheckResult("Xorg configuration", True, f"{path} configures amdgpu and nvidia")


def check_services(units: list[str]) -> CheckResult:
  problems: list[str] = []
  for unit in units:
    enabled = shell_output(f"systemctl is-enabled {unit}", check = False)
    active = shell_output(f"systemctl is-active {unit}", check = False)
    if enabled not in ("enabled", "static") or active != "active":
      problems.append(f"{unit} ({enabled or "unknown"}/{active or "unknown"})")
  if problems:
    return CheckResult("power services", False, f"not running: {", ".join(problems)}")
  return CheckResult("power services", True, f"enabled and active: {" ".join(units)}")


def nvidia_power_state(bbswitch: str = BBSWITCH, pci_devices: str = PCI_DEVICES) -> str | None:
  """ON/OFF as reported by bbswitch, otherwise derived from the runtime PM status of the dGPU."""
  content = read_text(bbswitch)
  if content:
    return content.split()[-1].upper()
  for device in sorted(glob(f"{pci_devices}/*")):
    if read_text(f"{device}/vendor") == "0x10de" and read_text(f"{device}/class").startswith("0x03"):
      status = read_text(f"{device}/power/runtime_status")
      if status:
        return "OFF" if status == "suspended" else "ON"
  return None


def check_nvidia_power_state(bbswitch: str = BBSWITCH, pci_devices: str = PCI_DEVICES) -> CheckResult:
  state = nvidia_power_state(bbswitch, pci_devices)
  if state is None:
    return CheckResult("NVIDIA power state", False, "neither bbswitch nor runtime PM status readable")
  return CheckResult("NVIDIA power state", True, f"dGPU is {state}")


def check_asus_tools() -> CheckResult:
  broken = [tool for tool in ["asusctl", "supergfxctl"] if not shell_success(f"{tool} --version")]
  if broken:
    return CheckResult("ASUS tools", False, f"not responding: {" ".join(broken)}")
  return CheckResult("ASUS tools", True, "asusctl and supergfxctl respond")


def check_display() -> CheckResult:
  if os.environ.get("WAYLAND_DISPLAY"):
    return CheckResult("display", True, f"Wayland session ({os.environ["WAYLAND_DISPLAY"]})")
  if not os.environ.get("DISPLAY"):
    return CheckResult("display", False, "neither DISPLAY nor WAYLAND_DISPLAY is set")
  if command_exists("xrandr") and shell_success("xrandr --listmonitors"):
    return CheckResult("display", True, f"X11 session ({os.environ["DISPLAY"]})")
  return CheckResult("display", False, "xrandr cannot query the display")


def check_prime_offload() -> CheckResult:
  if not command_exists("prime-run"):
    return CheckResult("PRIME offload", False, "prime-run not installed")
  output = shell_output("prime-run glxinfo -B", check = False)
  renderer = next((line.split(":", 1)[1].strip() for line in output.splitlines() if "OpenGL renderer" in line), "")
  if "nvidia" in renderer.lower():
    return CheckResult("PRIME offload", True, f"renderer: {renderer}")
  return CheckResult("PRIME offload", False, f"renderer: {renderer or "unknown"}")


def check_cpu_scaling(cpufreq: str = CPUFREQ) -> CheckResult:
  governor = read_text(f"{cpufreq}/scaling_governor")
  frequency = read_text(f"{cpufreq}/scaling_cur_freq")
  if not governor:
    return CheckResult("CPU frequency scaling", False, "cpufreq not available")
  mhz = f"{int(frequency) // 1000} MHz" if frequency.isdigit() else "unknown frequency"
  return CheckResult("CPU frequency scaling", True, f"governor {governor}, {mhz}")


def run_checks(checks: list[Callable[[], CheckResult]]) -> list[CheckResult]:
  results: list[CheckResult] = []
  for check in checks:
    result = check()
    results.append(result)
    logger.echo("success" if result.passed else "error", f"{result.name}: {result.message}")
  return results


def print_summary(results: list[CheckResult]) -> int:
  """Prints totals and returns the exit code: 1 if any check failed."""
  failed = [result for result in results if not result.passed]
  print()
  printc(f"{BOLD}Summary: {len(results) - len(failed)}/{len(results)} checks passed")
  for result in failed:
    print_listitem(f"{RED}{result.name}: {result.message}")
  return 1 if failed else 0


def read_battery_power(power_supply: str = POWER_SUPPLY) -> float | None:
  """Current battery discharge in watts, summed over all batteries."""
  total = None
  for battery in sorted(glob(f"{power_supply}/BAT*")):
    power_now = read_text(f"{battery}/power_now")
    if power_now.isdigit():
      watts = int(power_now) / 1_000_000
    else:
      current, voltage = read_text(f"{battery}/current_now"), read_text(f"{battery}/voltage_now")
      if not (current.isdigit() and voltage.isdigit()):
        continue
      watts = int(current) * int(voltage) / 1_000_000_000_000
    total = (total or 0.0) + watts
  return total


class PowerSampler:
  """Samples the battery power draw at a fixed interval, optionally while a stress command runs."""
  interval: float
  duration: float
  power_supply: str

  def __init__(self, interval: float = 1.0, duration: float = 30.0, power_supply: str = POWER_SUPPLY):
    self.interval = interval
    self.duration = duration
    self.power_supply = power_supply

  def sample(self, stress_command: str | None = None) -> list[float]:
    process = None
    if stress_command:
      process = Popen(stress_command, shell = True, stdout = DEVNULL, stderr = DEVNULL, start_new_session = True)
    samples: list[float] = []
    try:
      deadline = monotonic() + self.duration
      while monotonic() < deadline:
        watts = read_battery_power(self.power_supply)
        if watts is not None:
          samples.append(watts)
          logger.debug(f"power draw: {watts:.2f} W")
        sleep(self.interval)
    finally:
      if process is not None:
        stop_process_group(process)
    return samples


def stop_process_group(process: Popen):
  """Terminates the shell and everything it started; the process leads its own session."""
  try:
    os.killpg(process.pid, signal.SIGTERM)
  except ProcessLookupError:
    pass
  process.wait()


def power_summary(samples: list[float]) -> str:
  if not samples:
    return "no battery power readings (running on AC or no battery)"
  return f"{len(samples)} samples, average {sum(samples) / len(samples):.2f} W, min {min(samples):.2f} W, max {max(samples):.2f} W"
