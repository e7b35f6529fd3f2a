from __future__ import annotations

from zephyrus.hardware import Hardware


class Variant:
  """Model specific defaults. The bus ids are only used when they cannot be detected."""
  name: str
  description: str
  amd_bus_id: str
  nvidia_bus_id: str
  nvidia_driver: str
  kernel_params: list[str]

  def __init__(
    self,
    name: str,
    description: str,
    amd_bus_id: str = "PCI:6:0:0",
    nvidia_bus_id: str = "PCI:1:0:0",
    nvidia_driver: str = "nvidia",
    kernel_params: list[str] | None = None,
  ):
    self.name = name
    self.description = description
    self.amd_bus_id = amd_bus_id
    self.nvidia_bus_id = nvidia_bus_id
    self.nvidia_driver = nvidia_driver
    self.kernel_params = kernel_params or []

  def __repr__(self):
    return f"Variant({self.name!r})"


VARIANTS: dict[str, Variant] = {
  variant.name: variant for variant in [
    Variant(
      "ga403uv", "ROG Zephyrus G14 (2024) with RTX 4060",
      amd_bus_id = "PCI:101:0:0",
      kernel_params = ["amdgpu.dcdebugmask=0x10"],
    ),
    Variant(
      "ga403wr", "ROG Zephyrus G14 (2024) with RTX 4070",
      amd_bus_id = "PCI:101:0:0",
      kernel_params = ["amdgpu.dcdebugmask=0x10"],
    ),
    Variant(
      "ga403wr-2025", "ROG Zephyrus G14 (2025) with RTX 5070",
      amd_bus_id = "PCI:101:0:0",
      nvidia_driver = "nvidia-open",
      kernel_params = ["amdgpu.dcdebugmask=0x10"],
    ),
    Variant("ga403-generic", "ROG Zephyrus G14 (GA403, unknown GPU)", amd_bus_id = "PCI:101:0:0"),
    Variant("ga402-series", "ROG Zephyrus G14 (2022/2023, GA402)", amd_bus_id = "PCI:8:0:0"),
    Variant("generic-asus", "ASUS laptop with hybrid AMD/NVIDIA graphics"),
  ]
}


def variant_name(hardware: Hardware) -> str:
  model = hardware.laptop_model.upper()
  gpu = hardware.nvidia_gpu.upper()
  if "GA403" in model:
    if "RTX 4060" in gpu:
      return "ga403uv"
    if "RTX 4070" in gpu:
      return "ga403wr"
    if "RTX 5070" in gpu:
      return "ga403wr-2025"
    return "ga403-generic"
  if "GA402" in model:
    return "ga402-series"
  return "generic-asus"


def variant_for(hardware: Hardware) -> Variant:
  return VARIANTS[variant_name(hardware)]


def bus_ids(hardware: Hardware) -> tuple[str, str]:
  """AMD and NVIDIA bus ids for the Xorg configuration; detected values win over variant defaults."""
  variant = variant_for(hardware)
  return hardware.amd_bus_id or variant.amd_bus_id, hardware.nvidia_bus_id or variant.nvidia_bus_id
