from __future__ import annotations

import os
import re
from configparser import ConfigParser
from datetime import datetime
from glob import glob
from pathlib import Path
from pwd import getpwnam
from typing import Literal

from zephyrus.utils.logging import logger
from zephyrus.utils.shell import shell_output

type Vendor = Literal["amd", "nvidia", "other"]

CONFIG_DIR_NAME = ".config/zephyrus-g14"


class GpuDevice:
  slot: str
  description: str
  vendor: Vendor

  def __init__(self, slot: str, description: str, vendor: Vendor):
    self.slot = slot
    self.description = description
    self.vendor = vendor

  @property
  def bus_id(self) -> str:
    return pci_to_xorg_bus_id(self.slot)

  def __repr__(self):
    return f"GpuDevice({self.slot!r}, {self.description!r}, {self.vendor!r})"


class Hardware:
  """Detected hardware of the machine. Empty strings mean "not detected"."""
  laptop_model: str
  cpu_model: str
  amd_gpu: str
  nvidia_gpu: str
  amd_bus_id: str
  nvidia_bus_id: str
  has_battery: bool
  amd_pstate_supported: bool
  bbswitch_supported: bool

  def __init__(
    self,
    laptop_model: str = "",
    cpu_model: str = "",
    amd_gpu: str = "",
    nvidia_gpu: str = "",
    amd_bus_id: str = "",
    nvidia_bus_id: str = "",
    has_battery: bool = False,
    amd_pstate_supported: bool = False,
    bbswitch_supported: bool = False,
  ):
    self.laptop_model = laptop_model
    self.cpu_model = cpu_model
    self.amd_gpu = amd_gpu
    self.nvidia_gpu = nvidia_gpu
    self.amd_bus_id = amd_bus_id
    self.nvidia_bus_id = nvidia_bus_id
    self.has_battery = has_battery
    self.amd_pstate_supported = amd_pstate_supported
    self.bbswitch_supported = bbswitch_supported

  @property
  def hybrid_graphics(self) -> bool:
    return bool(self.amd_gpu) and bool(self.nvidia_gpu)

  @property
  def amd_cpu(self) -> bool:
    return "amd" in self.cpu_model.lower()

  def compatibility_warnings(self) -> list[str]:
    warnings: list[str] = []
    if not self.amd_cpu:
      warnings.append(f"CPU '{self.cpu_model or "unknown"}' is not an AMD processor")
    if not self.hybrid_graphics:
      warnings.append("hybrid AMD/NVIDIA graphics not detected")
    if "ROG" not in self.laptop_model.upper() and not re.search(r"GA40\d", self.laptop_model.upper()):
      warnings.append(f"laptop model '{self.laptop_model or "unknown"}' does not look like a ROG Zephyrus G14")
    return warnings

  def save(self, path: str | Path):
    parser = ConfigParser()
    parser["hardware"] = {
      "laptop_model": self.laptop_model,
      "cpu_model": self.cpu_model,
      "amd_gpu": self.amd_gpu,
      "nvidia_gpu": self.nvidia_gpu,
      "amd_bus_id": self.amd_bus_id,
      "nvidia_bus_id": self.nvidia_bus_id,
      "has_battery": bool_str(self.has_battery),
    }
    parser["capabilities"] = {
      "hybrid_graphics": bool_str(self.hybrid_graphics),
      "amd_pstate_supported": bool_str(self.amd_pstate_supported),
      "bbswitch_supported": bool_str(self.bbswitch_supported),
    }
    Path(path).parent.mkdir(parents = True, exist_ok = True)
    with open(path, "w", encoding = "utf-8") as fh:
      fh.write(f"# Hardware configuration, auto-detected on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")
      parser.write(fh)

  @staticmethod
  def load(path: str | Path) -> Hardware:
    parser = ConfigParser()
    assert parser.read(path, encoding = "utf-8"), f"hardware cache not found: {path}"
    hardware = parser["hardware"] if parser.has_section("hardware") else {}
    capabilities = parser["capabilities"] if parser.has_section("capabilities") else {}
    return Hardware(
      laptop_model = hardware.get("laptop_model", ""),
      cpu_model = hardware.get("cpu_model", ""),
      amd_gpu = hardware.get("amd_gpu", ""),
      nvidia_gpu = hardware.get("nvidia_gpu", ""),
      amd_bus_id = hardware.get("amd_bus_id", ""),
      nvidia_bus_id = hardware.get("nvidia_bus_id", ""),
      has_battery = hardware.get("has_battery", "false") == "true",
      amd_pstate_supported = capabilities.get("amd_pstate_supported", "false") == "true",
      bbswitch_supported = capabilities.get("bbswitch_supported", "false") == "true",
    )


def bool_str(value: bool) -> str:
  return "true" if value else "false"


def pci_to_xorg_bus_id(slot: str) -> str:
  """Converts an lspci slot (hexadecimal `bus:device.function`, optionally prefixed by a domain)
  into the decimal notation Xorg expects, e.g. `65:00.0` becomes `PCI:101:0:0`."""
  match = re.fullmatch(r"(?:[0-9a-fA-F]{4}:)?([0-9a-fA-F]{2}):([0-9a-fA-F]{2})\.([0-7])", slot.strip())
  assert match is not None, f"malformed PCI slot: {slot}"
  bus, device, function = (int(part, 16) for part in match.groups())
  return f"PCI:{bus}:{device}:{function}"


def classify_vendor(description: str) -> Vendor:
  lowered = description.lower()
  if "nvidia" in lowered:
    return "nvidia"
  if re.search(r"\b(amd|ati|radeon)\b", lowered) or "advanced micro devices" in lowered:
    return "amd"
  return "other"


def parse_lspci(output: str) -> list[GpuDevice]:
  """Extracts display controllers (VGA, 3D and Display classes) from `lspci -nn` output."""
  result: list[GpuDevice] = []
  for line in output.splitlines():
    if not re.search(r"VGA compatible controller|3D controller|Display controller", line):
      continue
    slot, _, rest = line.partition(" ")
    description = rest.split(": ", 1)[1] if ": " in rest else rest
    result.append(GpuDevice(slot, description.strip(), classify_vendor(description)))
  return result


def parse_cpu_model(cpuinfo: str) -> str:
  for line in cpuinfo.splitlines():
    if line.startswith("model name"):
      return line.split(":", 1)[1].strip()
  return ""


def read_text(path: str, default: str = "") -> str:
  try:
    with open(path, encoding = "utf-8") as fh:
      return fh.read().strip()
  except OSError:
    return default


def detect_hardware() -> Hardware:
  gpus = parse_lspci(shell_output("lspci -nn", check = False))
  amd = next((gpu for gpu in gpus if gpu.vendor == "amd"), None)
  nvidia = next((gpu for gpu in gpus if gpu.vendor == "nvidia"), None)
  for gpu in gpus:
    logger.debug(f"display controller {gpu.slot} ({gpu.vendor}): {gpu.description}")
  return Hardware(
    laptop_model = read_text("/sys/class/dmi/id/product_name"),
    cpu_model = parse_cpu_model(read_text("/proc/cpuinfo")),
    amd_gpu = amd.description if amd else "",
    nvidia_gpu = nvidia.description if nvidia else "",
    amd_bus_id = amd.bus_id if amd else "",
    nvidia_bus_id = nvidia.bus_id if nvidia else "",
    has_battery = len(glob("/sys/class/power_supply/BAT*")) > 0,
    amd_pstate_supported = "amd-pstate" in read_text("/sys/devices/system/cpu/cpu0/cpufreq/scaling_driver"),
    bbswitch_supported = os.path.exists("/proc/acpi/bbswitch") or "bbswitch" in shell_output("lsmod", check = False),
  )


def target_user() -> str:
  """The user on whose behalf the tool runs (the sudo caller, if any)."""
  return os.environ.get("SUDO_USER") or os.environ.get("USER") or "root"


def config_dir(user: str | None = None) -> Path:
  override = os.environ.get("ZEPHYRUS_CONFIG_DIR")
  if override:
    return Path(override)
  home = getpwnam(user or target_user()).pw_dir
  return Path(home) / CONFIG_DIR_NAME


def hardware_cache_path(user: str | None = None) -> Path:
  return config_dir(user) / "hardware.conf"


def load_or_detect(refresh: bool = False) -> Hardware:
  path = hardware_cache_path()
  if not refresh and path.is_file():
    logger.debug(f"using cached hardware configuration {path}")
    return Hardware.load(path)
  logger.debug("detecting hardware")
  hardware = detect_hardware()
  hardware.save(path)
  give_to_user(path)
  return hardware


def give_to_user(path: Path):
  """Files below the user's config dir are created by root, but belong to the user."""
  if os.getuid() != 0 or os.environ.get("ZEPHYRUS_CONFIG_DIR"):
    return
  pwnam = getpwnam(target_user())
  for entry in [path.parent, path]:
    os.chown(entry, uid = pwnam.pw_uid, gid = pwnam.pw_gid)
