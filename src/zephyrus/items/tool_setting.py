from __future__ import annotations

from typing import Any, Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class ToolSetting(ManagedConfigItem):
  """A runtime setting owned by a vendor tool. Subclasses name the tool commands that read
  and apply the value. Each setting exists only once per system, regardless of its value."""
  value: str
  allowed_values: tuple[str, ...] = ()
  query_command: str = ""
  apply_command: str = ""

  def __init__(self, value: str, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    assert not self.allowed_values or value in self.allowed_values, \
      f"{self.__class__.__name__}: invalid value '{value}' (allowed: {", ".join(self.allowed_values)})"
    self.value = value

  def __eq__(self, other: Any) -> bool:
    return other.__class__ == self.__class__

  def __hash__(self):
    return hash(self.__class__.__name__)

  def __str__(self):
    return f"{self.__class__.__name__}('{self.value}')"

  def apply(self) -> str:
    return self.apply_command.format(value = self.tool_value())

  def tool_value(self) -> str:
    """The value in the notation the tool expects."""
    return self.value

  def parse(self, output: str) -> str | None:
    """Extracts the current value from the output of the query command."""
    for value in self.allowed_values:
      if self.tool_notation(value).lower() in output.lower():
        return value
    return None

  def tool_notation(self, value: str) -> str:
    return value

  def merge(self, other: ConfigItem) -> ToolSetting:
    assert isinstance(other, ToolSetting) and self == other
    assert self.value == other.value, f"{self.__class__.__name__} has conflicting values: {self.value} / {other.value}"
    return self.__class__(self.value, **self.merge_base_attrs(self, other))


class GpuMode(ToolSetting):
  allowed_values = ("integrated", "hybrid", "discrete")
  query_command = "supergfxctl -g"
  apply_command = "supergfxctl -m {value}"
  supergfx_modes = {"integrated": "Integrated", "hybrid": "Hybrid", "discrete": "AsusMuxDgpu"}

  def tool_value(self) -> str:
    return self.supergfx_modes[self.value]

  def tool_notation(self, value: str) -> str:
    return self.supergfx_modes[value]


class PlatformProfile(ToolSetting):
  """The ASUS platform (fan) profile."""
  allowed_values = ("quiet", "balanced", "performance")
  query_command = "asusctl profile -p"
  apply_command = "asusctl profile -P {value}"

  def tool_value(self) -> str:
    return self.value.capitalize()

  def parse(self, output: str) -> str | None:
    for line in output.splitlines():
      if "active profile" in line.lower():
        return next((value for value in self.allowed_values if value in line.lower()), None)
    return super().parse(output)


class PowerProfile(ToolSetting):
  allowed_values = ("power-saver", "balanced", "performance")
  query_command = "powerprofilesctl get"
  apply_command = "powerprofilesctl set {value}"

  def parse(self, output: str) -> str | None:
    value = output.strip()
    return value if value in self.allowed_values else None


class KeyboardBrightness(ToolSetting):
  allowed_values = ("off", "low", "med", "high")
  query_command = "asusctl -k"
  apply_command = "asusctl -k {value}"

  def parse(self, output: str) -> str | None:
    words = output.lower().replace(":", " ").split()
    return next((word for word in reversed(words) if word in self.allowed_values), None)
