from __future__ import annotations

import os
import re
import shutil
from datetime import datetime
from glob import glob
from pathlib import Path
from typing import Iterable

from zephyrus.backup import Backup, BackupStore, file_sha256
from zephyrus.diagnostics import XORG_CONFIG, CheckResult, check_xorg_config, parse_lsmod
from zephyrus.distro import Distro
from zephyrus.hardware import read_text
from zephyrus.suspend import SuspendHandler
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import shell, shell_output, shell_success
from zephyrus.utils.text import *

REPORT_DIR = "/tmp"
MEMINFO = "/proc/meminfo"

# restarted by the automatic fixes, if enabled
FIX_SERVICES = ["asusd", "supergfxd", "tlp", "auto-cpufreq"]


class ErrorPattern:
  """A known problem that shows up in setup logs or the journal."""
  category: str
  name: str
  regex: re.Pattern[str]
  description: str
  solution: str

  def __init__(self, category: str, name: str, pattern: str, description: str, solution: str):
    self.category = category
    self.name = name
    self.regex = re.compile(pattern, re.IGNORECASE)
    self.description = description
    self.solution = solution

  def __repr__(self):
    return f"ErrorPattern({self.category!r}, {self.name!r})"


ERROR_PATTERNS = [
  ErrorPattern(
    "package", "signature_error", r"signature.*invalid|key.*unknown|gpg.*error",
    "package signature validation failed", "update the keyring (pacman -S archlinux-keyring) and retry",
  ),
  ErrorPattern(
    "package", "dependency_conflict", r"conflicting dependencies|conflicts with",
    "package dependency conflict", "remove the conflicting package manually and run the setup again",
  ),
  ErrorPattern(
    "package", "network_error", r"failed retrieving file|download.*failed|connection.*timed? ?out",
    "network error during package download", "check the internet connection or switch mirrors",
  ),
  ErrorPattern(
    "service", "service_failed", r"failed to start|service.*failed|unit.*failed",
    "a systemd service failed", "inspect the unit with journalctl -u <service>",
  ),
  ErrorPattern(
    "service", "dependency_failed", r"dependency failed|required by.*failed",
    "a service dependency failed", "restart the services the failed unit depends on",
  ),
  ErrorPattern(
    "gpu", "nvidia_driver_error", r"nvidia.*error|nvidia.*failed|nvrm:.*xid",
    "NVIDIA driver error", "reload the NVIDIA modules (zephyrus troubleshoot --fix) or reinstall the driver",
  ),
  ErrorPattern(
    "gpu", "xorg_error", r"xorg.*error|x server.*failed|\(EE\)",
    "X server error", "check /etc/X11/xorg.conf.d/10-hybrid.conf and restart the display manager",
  ),
  ErrorPattern(
    "gpu", "bbswitch_error", r"bbswitch.*(error|failed)",
    "bbswitch error", "reload bbswitch: modprobe -r bbswitch && modprobe bbswitch",
  ),
  ErrorPattern(
    "power", "tlp_error", r"tlp.*(error|failed)",
    "TLP error", "check /etc/tlp.conf and restart tlp.service",
  ),
  ErrorPattern(
    "power", "cpufreq_error", r"cpufreq.*error|scaling.*failed",
    "CPU frequency scaling error", "check the governor and the amd_pstate kernel parameter",
  ),
  ErrorPattern(
    "hardware", "asus_error", r"asus.*error|asusd.*failed|asusctl.*error",
    "ASUS hardware control error", "restart asusd.service",
  ),
  ErrorPattern(
    "hardware", "thermal_error", r"thermal.*throttl|overheating|temperature.*critical",
    "thermal throttling", "check the fan profile and clean the vents",
  ),
]


class LogMatch:
  pattern: ErrorPattern
  count: int
  example: str

  def __init__(self, pattern: ErrorPattern, count: int, example: str):
    self.pattern = pattern
    self.count = count
    self.example = example

  def __repr__(self):
    return f"LogMatch({self.pattern.name!r}, {self.count})"


def analyze_log(text: str, patterns: list[ErrorPattern] = ERROR_PATTERNS) -> list[LogMatch]:
  """Counts the lines matching each known error pattern. Patterns without matches are left out."""
  lines = text.splitlines()
  result: list[LogMatch] = []
  for pattern in patterns:
    matching = [line for line in lines if pattern.regex.search(line)]
    if matching:
      result.append(LogMatch(pattern, len(matching), matching[-1].strip()))
  return result


def log_files(log_dir: str | Path) -> list[Path]:
  return sorted(Path(path) for path in glob(f"{log_dir}/*.log"))


def journal_text() -> str:
  return shell_output("journalctl -b -p warning --no-pager", check = False)


def print_matches(matches: list[LogMatch]):
  if not matches:
    logger.echo("success", "no known errors found in the logs")
    return
  print()
  printc(f"{BOLD}Known errors found in the logs: {sum(match.count for match in matches)} lines")
  for match in matches:
    print_listitem(f"{YELLOW}{match.pattern.description}{ENDC} ({match.pattern.category}, {match.count}x)")
    printc(f"  last: {match.example}")
    printc(f"  solution: {match.pattern.solution}")


def check_nouveau() -> CheckResult:
  if "nouveau" in parse_lsmod(shell_output("lsmod", check = False)):
    return CheckResult("nouveau", False, "nouveau is loaded, blacklist it and add nouveau.modeset=0")
  return CheckResult("nouveau", True, "nouveau is not loaded")


def check_power_conflict() -> CheckResult:
  active = [
    unit for unit in ["tlp.service", "power-profiles-daemon.service", "auto-cpufreq.service"]
    if shell_output(f"systemctl is-active {unit}", check = False) == "active"
  ]
  if len(active) > 1:
    return CheckResult("power manager conflict", False, f"running at the same time: {" ".join(active)}")
  return CheckResult("power manager conflict", True, f"active: {" ".join(active) or "none"}")


def check_memory(meminfo: str = MEMINFO, limit: int = 90) -> CheckResult:
  values: dict[str, int] = {}
  for line in read_text(meminfo).splitlines():
    key, _, value = line.partition(":")
    if value.split() and value.split()[0].isdigit():
      values[key] = int(value.split()[0])
  total, available = values.get("MemTotal"), values.get("MemAvailable")
  if not total or available is None:
    return CheckResult("memory", False, f"{meminfo} not readable")
  used = 100 * (total - available) // total
  if used > limit:
    return CheckResult("memory", False, f"{used}% in use")
  return CheckResult("memory", True, f"{used}% in use")


# (title, command) pairs of the system report, run without root
REPORT_SECTIONS = [
  ("Hardware", "lscpu | head -n 10; lspci -nn | grep -E 'VGA|3D|Display'"),
  ("Kernel and modules", "uname -a; cat /proc/cmdline; lsmod | grep -E 'nvidia|amdgpu|bbswitch|nouveau'"),
  ("Graphics", "nvidia-smi; supergfxctl -g; cat /proc/acpi/bbswitch"),
  ("Power management", "systemctl status --no-pager tlp auto-cpufreq power-profiles-daemon | grep -E 'Loaded|Active'"),
  ("ASUS services", "systemctl status --no-pager asusd supergfxd | grep -E 'Loaded|Active'; asusctl --version"),
  ("Display", "xrandr --listmonitors"),
  ("Recent logs", "journalctl --since '1 hour ago' --no-pager | grep -iE 'nvidia|amdgpu|asus|gpu' | tail -n 20"),
]


def system_report(results: list[CheckResult], matches: list[LogMatch]) -> str:
  lines = [f"System report generated: {datetime.now().isoformat(timespec = "seconds")}", "=" * 40, ""]
  for title, command in REPORT_SECTIONS:
    lines += [f"{title}:", "-" * (len(title) + 1), shell_output(command, check = False) or "(no output)", ""]
  lines += ["Checks:", "-------"]
  lines += [f"[{"PASS" if result.passed else "FAIL"}] {result.name}: {result.message}" for result in results]
  lines += ["", "Known errors:", "-------------"]
  lines += [f"{match.pattern.category}/{match.pattern.name} ({match.count}x): {match.example}" for match in matches] or ["none"]
  return "\n".join(lines) + "\n"


def write_report(report_dir: str | Path, content: str) -> Path:
  path = Path(report_dir) / f"system-report-{datetime.now().strftime("%Y%m%d-%H%M%S")}.txt"
  path.parent.mkdir(parents = True, exist_ok = True)
  path.write_text(content, encoding = "utf-8")
  logger.echo("success", f"system report written to {path}")
  return path


class Troubleshooter:
  """Automatic fixes for the common problems: reloading the NVIDIA driver, power cycling the
  dGPU, restarting the ASUS and power services, rebuilding the initramfs and restoring a broken
  Xorg configuration. A backup is created first, so every fix can be rolled back."""
  distro: Distro
  store: BackupStore
  suspend: SuspendHandler
  xorg_config: str
  services: list[str]

  def __init__(
    self,
    distro: Distro,
    store: BackupStore,
    suspend: SuspendHandler,
    xorg_config: str = XORG_CONFIG,
    services: list[str] = FIX_SERVICES,
  ):
    self.distro = distro
    self.store = store
    self.suspend = suspend
    self.xorg_config = xorg_config
    self.services = services

  def fix(self, backup_paths: Iterable[str]) -> list[CheckResult]:
    try:
      self.store.create("before automatic fixes", backup_paths)
    except OSError as e:
      logger.echo("warn", f"no backup created, the fixes cannot be rolled back: {e}")
    results = [
      *self.reload_gpu_driver(),
      *self.restart_services(),
      self.rebuild_initramfs(),
    ]
    if not check_xorg_config(self.xorg_config).passed:
      results.append(self.restore_xorg_config())
    for result in results:
      logger.echo("success" if result.passed else "error", f"{result.name}: {result.message}")
    return results

  def reload_gpu_driver(self) -> list[CheckResult]:
    """Unloads the NVIDIA modules, power cycles the dGPU if bbswitch is available and loads them again."""
    results: list[CheckResult] = []
    try:
      self.suspend.unload_modules()
    except AssertionError as e:
      return [CheckResult("GPU driver reload", False, str(e))]

    state = self.suspend.read_state()
    if state is not None:
      try:
        self.suspend.write_state("OFF")
        self.suspend.write_state("ON")
        results.append(CheckResult("dGPU power cycle", True, f"{state} -> OFF -> ON"))
      except (AssertionError, OSError) as e:
        results.append(CheckResult("dGPU power cycle", False, str(e)))

    try:
      self.suspend.load_modules()
      results.insert(0, CheckResult("GPU driver reload", True, "NVIDIA modules reloaded"))
    except AssertionError as e:
      results.insert(0, CheckResult("GPU driver reload", False, str(e)))
    return results

  def restart_services(self) -> list[CheckResult]:
    results: list[CheckResult] = []
    for service in self.services:
      if shell_output(f"systemctl is-enabled {service}", check = False) != "enabled":
        logger.debug(f"{service} is not enabled, not restarting it")
        continue
      if shell_success(f"systemctl restart {service}"):
        results.append(CheckResult(f"restart {service}", True, "restarted"))
      else:
        results.append(CheckResult(f"restart {service}", False, f"failed, see journalctl -u {service}"))
    return results

  def rebuild_initramfs(self) -> CheckResult:
    try:
      shell(self.distro.initramfs_command)
    except AssertionError:
      return CheckResult("initramfs", False, f"{self.distro.initramfs_command} failed")
    return CheckResult("initramfs", True, f"rebuilt with {self.distro.initramfs_command}")

  def latest_xorg_copy(self) -> tuple[Backup, dict] | None:
    """The newest intact backup copy of the Xorg configuration."""
    for backup in reversed(self.store.backups()):
      for entry in backup.files:
        if entry["source"] != self.xorg_config:
          continue
        copy = backup.backup_path(entry)
        if copy.is_file() and entry.get("sha256", file_sha256(copy)) == file_sha256(copy) and check_xorg_config(str(copy)).passed:
          return backup, entry
    return None

  def restore_xorg_config(self) -> CheckResult:
    found = self.latest_xorg_copy()
    if found is None:
      return CheckResult("Xorg configuration", False, "no intact backup copy found, run `zephyrus setup` again")
    backup, entry = found
    if os.path.isfile(self.xorg_config):
      shutil.copy2(self.xorg_config, f"{self.xorg_config}.broken-{datetime.now().strftime("%Y%m%d_%H%M%S")}")
    os.makedirs(os.path.dirname(self.xorg_config), exist_ok = True)
    shutil.copyfile(backup.backup_path(entry), self.xorg_config)
    os.chmod(self.xorg_config, 0o644)
    return CheckResult("Xorg configuration", True, f"restored from backup {backup.name}")


def print_fix_summary(results: list[CheckResult]) -> int:
  failed = [result for result in results if not result.passed]
  print()
  printc(f"{BOLD}Automatic fixes: {len(results) - len(failed)} applied, {len(failed)} failed")
  for result in failed:
    print_listitem(f"{RED}{result.name}: {result.message}")
  if failed:
    logger.echo("warn", "some fixes failed, consider `zephyrus backup restore` to roll back")
  return 1 if failed else 0
