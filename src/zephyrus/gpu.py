from __future__ import annotations

import os
from typing import Sequence

from zephyrus.diagnostics import BBSWITCH, nvidia_power_state
from zephyrus.hardware import read_text
from zephyrus.items.tool_setting import GpuMode
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import command_exists, shell, shell_output

PRIME_OFFLOAD_ENV = {
  "__NV_PRIME_RENDER_OFFLOAD": "1",
  "__GLX_VENDOR_LIBRARY_NAME": "nvidia",
  "__VK_LAYER_NV_optimus": "NVIDIA_only",
}


def current_mode() -> str | None:
  if not command_exists("supergfxctl"):
    return None
  return GpuMode("hybrid").parse(shell_output(GpuMode.query_command, check = False))


def status() -> dict[str, str]:
  bbswitch = read_text(BBSWITCH)
  return {
    "GPU mode": current_mode() or "unknown (supergfxctl not available)",
    "dGPU power": nvidia_power_state() or "unknown",
    "bbswitch": bbswitch.split()[-1] if bbswitch else "not loaded",
  }


def required_session_change(current: str | None, target: str) -> str | None:
  """What the user has to do before a mode change takes effect."""
  if current == target:
    return None
  if "discrete" in (current, target):
    return "reboot"
  return "logout"


def switch(mode: str) -> str | None:
  target = GpuMode(mode)
  current = current_mode()
  change = required_session_change(current, mode)
  if change is None:
    logger.echo("info", f"GPU mode is already {mode}")
    return None
  shell(target.apply())
  logger.echo("success", f"GPU mode switched to {mode}")
  logger.echo("warn", f"the new mode takes effect after a {change}")
  return change


def offload_env(base: dict[str, str] | None = None) -> dict[str, str]:
  return {**(os.environ if base is None else base), **PRIME_OFFLOAD_ENV}


def run(command: Sequence[str]):
  """Replaces the current process with `command`, rendered on the NVIDIA dGPU."""
  assert command, "no command given"
  os.execvpe(command[0], list(command), offload_env())
