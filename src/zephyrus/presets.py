from zephyrus.distro import Distro
from zephyrus.managers import *
from zephyrus.model import ConfigManager


class ManagerPresets:

  @staticmethod
  def arch(aur_helper: AurHelper | None = None, attempts: int = 3, retry_delay: float = 5) -> list[ConfigManager]:
    return [
      PacmanKeyManager(),
      PacmanRepoManager(),
      PacmanPackageManager(aur_helper = aur_helper, attempts = attempts, retry_delay = retry_delay),
      UserGroupManager(),
      FileManager(),
      KernelParameterManager(),
      SystemdUnitManager(),
      ToolSettingManager(),
      PostHookManager(),
    ]

  @staticmethod
  def fedora(attempts: int = 3, retry_delay: float = 5) -> list[ConfigManager]:
    return [
      CoprRepoManager(),
      DnfPackageManager(attempts = attempts, retry_delay = retry_delay),
      UserGroupManager(),
      FileManager(),
      KernelParameterManager(),
      SystemdUnitManager(),
      ToolSettingManager(),
      PostHookManager(),
    ]

  @staticmethod
  def for_distro(distro: Distro, aur_helper: AurHelper | None = None) -> list[ConfigManager]:
    return ManagerPresets.arch(aur_helper) if distro.name == "arch" else ManagerPresets.fedora()
