from __future__ import annotations

import os
import re
import shlex
import shutil
from datetime import datetime
from typing import Generator, Sequence

from zephyrus.items.kernel import KernelParameter
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file

CMDLINE_VARIABLE = "GRUB_CMDLINE_LINUX_DEFAULT"


class KernelParameterState(ConfigItemState):
  token: str

  def __init__(self, token: str):
    self.token = token

  def sha256(self) -> str:
    return self.token


class KernelParameterManager(ConfigManager[KernelParameter, KernelParameterState]):
  """Keeps parameters in the GRUB_CMDLINE_LINUX_DEFAULT line of /etc/default/grub. Parameters
  not declared by any section are left alone unless an earlier run added them. Regenerating
  grub.cfg is left to a PostHook triggered by the parameters."""
  managed_classes = [KernelParameter]
  cleanup_order = 60
  grub_defaults: str
  managed_params_store: JsonCollection[str]

  def __init__(self, grub_defaults: str = "/etc/default/grub"):
    super().__init__()
    self.grub_defaults = grub_defaults
    store = JsonStore(state_file("KernelParameterManager"))
    self.managed_params_store = store.collection("managed_parameters")

  def assert_installable(self, item: KernelParameter, model: ConfigModel):
    assert os.path.isfile(self.grub_defaults), f"{self.grub_defaults} not found (is GRUB the bootloader?)"

  def get_state_current(self, item: KernelParameter) -> KernelParameterState | None:
    token = next((token for token in self.current_tokens() if param_name(token) == item.name), None)
    return KernelParameterState(token) if token is not None else None

  def get_state_target(self, item: KernelParameter, model: ConfigModel, phase: Phase) -> KernelParameterState:
    return KernelParameterState(item.token())

  def get_install_actions(self, items_to_check: Sequence[KernelParameter], model: ConfigModel, phase: Phase) -> Generator[Action]:
    installs: list[KernelParameter] = []
    updates: list[KernelParameter] = []
    info: list[str] = []
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      if current is None:
        installs.append(item)
        info.append(f"add {item.token()}")
      else:
        updates.append(item)
        info.append(f"replace {current.token} with {item.token()}")

    if installs or updates:
      changed = [*installs, *updates]
      yield Action(
        installs = installs,
        updates = updates,
        description = f"update kernel command line in {self.grub_defaults}",
        additional_info = info,
        execute = lambda: self.apply(changed),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[KernelParameter], model: ConfigModel, phase: Phase) -> Generator[Action]:
    current_names = [param_name(token) for token in self.current_tokens()]
    to_remove = [
      KernelParameter(name) for name in self.managed_params_store.elements()
      if KernelParameter(name) not in items_to_keep and name in current_names
    ]
    if to_remove:
      yield Action(
        removes = to_remove,
        description = f"remove kernel parameter(s) {" ".join(item.name for item in to_remove)} from {self.grub_defaults}",
        execute = lambda: self.remove(to_remove),
      )

  def current_tokens(self) -> list[str]:
    if not os.path.isfile(self.grub_defaults):
      return []
    with open(self.grub_defaults, encoding = "utf-8") as fh:
      return read_cmdline(fh.read())

  def apply(self, items: list[KernelParameter]):
    tokens = self.current_tokens()
    for item in items:
      tokens = set_parameter(tokens, item.token())
    self.write(tokens)
    self.managed_params_store.add_all([item.name for item in items])

  def remove(self, items: list[KernelParameter]):
    tokens = self.current_tokens()
    for item in items:
      tokens = [token for token in tokens if param_name(token) != item.name]
    self.write(tokens)
    self.managed_params_store.remove_all([item.name for item in items])

  def write(self, tokens: list[str]):
    with open(self.grub_defaults, encoding = "utf-8") as fh:
      content = fh.read()
    backup = f"{self.grub_defaults}.backup-{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    shutil.copy2(self.grub_defaults, backup)
    with open(self.grub_defaults, "w", encoding = "utf-8") as fh:
      fh.write(write_cmdline(content, tokens))
    print(f"{CMDLINE_VARIABLE}=\"{" ".join(tokens)}\" (previous version saved as {backup})")

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_params_store.replace_all([item.name for item in model.items(KernelParameter)])


def param_name(token: str) -> str:
  return token.split("=", 1)[0]


def set_parameter(tokens: list[str], token: str) -> list[str]:
  """Replaces the parameter with the same name in place, or appends it."""
  name = param_name(token)
  if any(param_name(existing) == name for existing in tokens):
    return [token if param_name(existing) == name else existing for existing in tokens]
  return [*tokens, token]


def read_cmdline(content: str) -> list[str]:
  match = re.search(rf"^{CMDLINE_VARIABLE}=(.*)$", content, re.MULTILINE)
  if match is None:
    return []
  # the shell unquotes the value, the kernel then splits it at whitespace
  return " ".join(shlex.split(match.group(1))).split()


def write_cmdline(content: str, tokens: list[str]) -> str:
  line = f"{CMDLINE_VARIABLE}=\"{" ".join(tokens)}\""
  pattern = re.compile(rf"^{CMDLINE_VARIABLE}=.*$", re.MULTILINE)
  if pattern.search(content):
    return pattern.sub(lambda match: line, content, count = 1)
  return content.rstrip("\n") + f"\n{line}\n"
