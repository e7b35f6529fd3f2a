from __future__ import annotations

from typing import Generator, Sequence

from zephyrus.items.tool_setting import GpuMode, KeyboardBrightness, PlatformProfile, PowerProfile, ToolSetting
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import command_exists, shell, shell_output


class ToolSettingState(ConfigItemState):
  value: str

  def __init__(self, value: str):
    self.value = value

  def sha256(self) -> str:
    return self.value


class ToolSettingManager(ConfigManager[ToolSetting, ToolSettingState]):
  """Applies settings through the vendor tools (supergfxctl, asusctl, powerprofilesctl).
  Settings are never reverted, so there is nothing to clean up."""
  managed_classes = [GpuMode, PlatformProfile, PowerProfile, KeyboardBrightness]
  cleanup_order = 90

  def assert_installable(self, item: ToolSetting, model: ConfigModel):
    assert item.query_command and item.apply_command, f"{item} has no tool commands"

  def get_state_current(self, item: ToolSetting) -> ToolSettingState | None:
    tool = item.query_command.split()[0]
    if not command_exists(tool):
      return None
    value = item.parse(shell_output(item.query_command, check = False))
    return ToolSettingState(value) if value is not None else None

  def get_state_target(self, item: ToolSetting, model: ConfigModel, phase: Phase) -> ToolSettingState:
    return ToolSettingState(item.value)

  def get_install_actions(self, items_to_check: Sequence[ToolSetting], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      if isinstance(item, GpuMode) and phase == "planning":
        logger.warn("Changing the GPU mode requires logging out (or a reboot when switching to/from discrete mode).")
      yield Action(
        installs = [item] if current is None else [],
        updates = [item] if current is not None else [],
        description = f"set {item.__class__.__name__} to {item.value}" + (f" (currently {current.value})" if current else ""),
        additional_info = item.apply(),
        execute = lambda: shell(item.apply()),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[ToolSetting], model: ConfigModel, phase: Phase) -> Generator[Action]:
    yield from ()
