from __future__ import annotations

from configparser import ConfigParser
from inspect import cleandoc
from pathlib import Path

from zephyrus.hardware import config_dir, give_to_user
from zephyrus.utils.logging import logger

ENUMS: dict[tuple[str, str], tuple[str, ...]] = {
  ("power", "default_power_profile"): ("power-saver", "balanced", "performance"),
  ("power", "cpu_governor_preference"): ("powersave", "ondemand", "performance", "schedutil"),
  ("power", "power_manager"): ("tlp", "auto-cpufreq", "power-profiles-daemon"),
  ("graphics", "primary_gpu_mode"): ("integrated", "hybrid", "discrete"),
  ("asus", "fan_profile"): ("silent", "balanced", "performance"),
  ("asus", "keyboard_brightness"): ("off", "low", "med", "high"),
}

BOOLEANS: list[tuple[str, str]] = [
  ("power", "battery_power_saving"),
  ("graphics", "nvidia_power_management"),
  ("graphics", "prime_offload_default"),
  ("display", "external_display_support"),
  ("display", "night_light"),
  ("asus", "enable_asusctl"),
  ("asus", "enable_rog_control"),
  ("advanced", "experimental_features"),
]

DEFAULT_PREFERENCES = cleandoc('''
  # User preferences for the Zephyrus G14 configuration
  # Edit this file to customize your setup, then run `zephyrus setup` again.

  [power]
  # Power profile: power-saver, balanced, performance
  default_power_profile = balanced
  # Enable aggressive power saving on battery
  battery_power_saving = true
  # CPU governor preference: powersave, ondemand, performance, schedutil
  cpu_governor_preference = schedutil
  # Power manager: tlp, auto-cpufreq, power-profiles-daemon (only one can be active)
  power_manager = tlp

  [graphics]
  # Primary GPU: integrated, hybrid, discrete
  primary_gpu_mode = hybrid
  # Enable NVIDIA GPU power management
  nvidia_power_management = true
  # PRIME render offload by default
  prime_offload_default = true

  [display]
  # Enable external display support
  external_display_support = true
  # Preferred display scaling
  display_scaling = 1.0
  # Enable night light/blue light filter
  night_light = false

  [asus]
  # Enable ASUS hardware controls
  enable_asusctl = true
  # Enable ROG Control Center
  enable_rog_control = true
  # Fan curve profile: silent, balanced, performance
  fan_profile = balanced
  # Keyboard backlight: off, low, med, high
  keyboard_brightness = med

  [advanced]
  # Enable experimental features
  experimental_features = false
  # Custom kernel parameters (space-separated)
  custom_kernel_params =
  # Additional packages to install (space-separated)
  additional_packages =
''') + "\n"


class PreferencesError(AssertionError):
  pass


class Preferences:
  """Typed view on preferences.conf. Missing keys fall back to the defaults."""
  parser: ConfigParser

  def __init__(self, parser: ConfigParser):
    self.parser = parser
    self.validate()

  @staticmethod
  def defaults() -> Preferences:
    return Preferences.parse(DEFAULT_PREFERENCES)

  @staticmethod
  def parse(content: str) -> Preferences:
    parser = default_parser()
    parser.read_string(content)
    return Preferences(parser)

  @staticmethod
  def load(path: str | Path) -> Preferences:
    with open(path, encoding = "utf-8") as fh:
      return Preferences.parse(fh.read())

  def get(self, section: str, key: str) -> str:
    return self.parser.get(section, key).strip().strip('"')

  def flag(self, section: str, key: str) -> bool:
    try:
      return self.parser.getboolean(section, key)
    except ValueError:
      raise PreferencesError(f"[{section}] {key} must be true or false, got '{self.get(section, key)}'")

  def words(self, section: str, key: str) -> list[str]:
    return self.get(section, key).split()

  def validate(self):
    for (section, key), allowed in ENUMS.items():
      value = self.get(section, key)
      if value not in allowed:
        raise PreferencesError(f"[{section}] {key} = '{value}' is invalid, allowed values: {", ".join(allowed)}")
    for section, key in BOOLEANS:
      self.flag(section, key)
    try:
      scaling = float(self.get("display", "display_scaling"))
    except ValueError:
      raise PreferencesError(f"[display] display_scaling must be a number, got '{self.get("display", "display_scaling")}'")
    if not 0.5 <= scaling <= 4.0:
      raise PreferencesError(f"[display] display_scaling must be between 0.5 and 4.0, got {scaling}")

  @property
  def power_profile(self) -> str:
    return self.get("power", "default_power_profile")

  @property
  def power_manager(self) -> str:
    return self.get("power", "power_manager")

  @property
  def governor(self) -> str:
    return self.get("power", "cpu_governor_preference")

  @property
  def battery_power_saving(self) -> bool:
    return self.flag("power", "battery_power_saving")

  @property
  def gpu_mode(self) -> str:
    return self.get("graphics", "primary_gpu_mode")

  @property
  def nvidia_power_management(self) -> bool:
    return self.flag("graphics", "nvidia_power_management")

  @property
  def fan_profile(self) -> str:
    return self.get("asus", "fan_profile")

  @property
  def keyboard_brightness(self) -> str:
    return self.get("asus", "keyboard_brightness")

  @property
  def enable_asusctl(self) -> bool:
    return self.flag("asus", "enable_asusctl")

  @property
  def enable_rog_control(self) -> bool:
    return self.flag("asus", "enable_rog_control")

  @property
  def custom_kernel_params(self) -> list[str]:
    return self.words("advanced", "custom_kernel_params")

  @property
  def additional_packages(self) -> list[str]:
    return self.words("advanced", "additional_packages")

  def context(self) -> dict[str, str]:
    """All preferences flattened to `section_key` names, used for template substitution."""
    return {
      f"{section}_{key}": self.get(section, key)
      for section in self.parser.sections()
      for key in self.parser.options(section)
    }


def default_parser() -> ConfigParser:
  parser = ConfigParser()
  parser.read_string(DEFAULT_PREFERENCES)
  return parser


def preferences_path(user: str | None = None) -> Path:
  return config_dir(user) / "preferences.conf"


def init_preferences(overwrite: bool = False, path: Path | None = None) -> bool:
  """Writes the default preferences. Returns False if the file exists and `overwrite` is not set."""
  path = path or preferences_path()
  if path.exists() and not overwrite:
    return False
  path.parent.mkdir(parents = True, exist_ok = True)
  path.write_text(DEFAULT_PREFERENCES, encoding = "utf-8")
  give_to_user(path)
  return True


def load_preferences(path: Path | None = None) -> Preferences:
  """Loads the preferences file, creating it with defaults on first use."""
  path = path or preferences_path()
  init_preferences(overwrite = False, path = path)
  logger.debug(f"loading preferences from {path}")
  return Preferences.load(path)
