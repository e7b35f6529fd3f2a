from __future__ import annotations

from pathlib import Path

from zephyrus.distro import Distro, detect_distro
from zephyrus.hardware import Hardware, config_dir, load_or_detect, target_user
from zephyrus.preferences import Preferences, load_preferences
from zephyrus.utils.logging import logger
from zephyrus.variants import Variant, bus_ids, variant_for


class SystemContext:
  """Everything the system definition depends on: distribution, hardware, preferences and the user."""
  distro: Distro
  hardware: Hardware
  preferences: Preferences
  user: str
  templates_dir: Path

  def __init__(self, distro: Distro, hardware: Hardware, preferences: Preferences, user: str, templates_dir: Path):
    self.distro = distro
    self.hardware = hardware
    self.preferences = preferences
    self.user = user
    self.templates_dir = templates_dir

  @property
  def variant(self) -> Variant:
    return variant_for(self.hardware)

  @property
  def bus_ids(self) -> tuple[str, str]:
    return bus_ids(self.hardware)

  @property
  def arch(self) -> bool:
    return self.distro.name == "arch"

  def log_details(self):
    amd_bus_id, nvidia_bus_id = self.bus_ids
    logger.debug(f"distribution: {self.distro.name}, target user: {self.user}")
    logger.debug(f"laptop: {self.hardware.laptop_model or "unknown"}, cpu: {self.hardware.cpu_model or "unknown"}")
    logger.debug(f"variant: {self.variant.name}, nvidia driver: {self.variant.nvidia_driver}")
    logger.debug(f"bus ids: amd {amd_bus_id}, nvidia {nvidia_bus_id}")
    logger.debug(f"power manager: {self.preferences.power_manager}, gpu mode: {self.preferences.gpu_mode}")

  @staticmethod
  def detect(refresh_hardware: bool = False) -> SystemContext:
    ctx = SystemContext(
      distro = detect_distro(),
      hardware = load_or_detect(refresh = refresh_hardware),
      preferences = load_preferences(),
      user = target_user(),
      templates_dir = config_dir() / "templates",
    )
    ctx.log_details()
    return ctx
