from __future__ import annotations

import os
import shutil
from datetime import datetime
from hashlib import sha256
from typing import Generator, Sequence

from zephyrus.items.repository import CoprRepo, PacmanKey, PacmanRepo
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file
from zephyrus.utils.shell import shell, shell_output, shell_success


class RepositoryState(ConfigItemState):
  definition: str

  def __init__(self, definition: str = "-"):
    self.definition = definition

  def sha256(self) -> str:
    return sha256(self.definition.encode()).hexdigest()


class PacmanKeyManager(ConfigManager[PacmanKey, RepositoryState]):
  managed_classes = [PacmanKey]
  cleanup_order = 80

  def assert_installable(self, item: PacmanKey, model: ConfigModel):
    pass

  def get_state_current(self, item: PacmanKey) -> RepositoryState | None:
    return RepositoryState() if shell_success(f"pacman-key --list-keys {item.key_id}") else None

  def get_state_target(self, item: PacmanKey, model: ConfigModel, phase: Phase) -> RepositoryState:
    return RepositoryState()

  def get_install_actions(self, items_to_check: Sequence[PacmanKey], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      yield Action(
        installs = [item],
        description = f"import and sign pacman key {item.key_id} from {item.key_server}",
        execute = lambda: self.add_key(item),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[PacmanKey], model: ConfigModel, phase: Phase) -> Generator[Action]:
    yield from ()

  @staticmethod
  def add_key(item: PacmanKey):
    shell("pacman-key --init")
    shell(f"pacman-key --recv-keys {item.key_id} --keyserver {item.key_server}")
    shell(f"pacman-key --lsign-key {item.key_id}")


class PacmanRepoManager(ConfigManager[PacmanRepo, RepositoryState]):
  """Maintains repository sections in pacman.conf. Other parts of the file are never touched."""
  managed_classes = [PacmanRepo]
  cleanup_order = 75
  pacman_conf: str
  managed_repos_store: JsonCollection[str]

  def __init__(self, pacman_conf: str = "/etc/pacman.conf"):
    super().__init__()
    self.pacman_conf = pacman_conf
    store = JsonStore(state_file("PacmanRepoManager"))
    self.managed_repos_store = store.collection("managed_repos")

  def assert_installable(self, item: PacmanRepo, model: ConfigModel):
    assert item.name not in ("options",), f"{item}: reserved section name"

  def get_state_current(self, item: PacmanRepo) -> RepositoryState | None:
    block = read_sections(self.read_conf()).get(item.name)
    return RepositoryState(normalize(block)) if block is not None else None

  def get_state_target(self, item: PacmanRepo, model: ConfigModel, phase: Phase) -> RepositoryState:
    return RepositoryState(normalize(item.section()))

  def get_install_actions(self, items_to_check: Sequence[PacmanRepo], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      yield Action(
        installs = [item] if current is None else [],
        updates = [item] if current is not None else [],
        description = f"{"add" if current is None else "update"} repository [{item.name}] in {self.pacman_conf}",
        additional_info = item.section().splitlines(),
        execute = lambda: self.write_repo(item),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[PacmanRepo], model: ConfigModel, phase: Phase) -> Generator[Action]:
    sections = read_sections(self.read_conf())
    for name in self.managed_repos_store.elements():
      item = PacmanRepo(name, server = "")
      if item in items_to_keep or name not in sections:
        continue
      yield Action(
        removes = [item],
        description = f"remove repository [{name}] from {self.pacman_conf}",
        execute = lambda: self.remove_repo(item),
      )

  def read_conf(self) -> str:
    if not os.path.isfile(self.pacman_conf):
      return ""
    with open(self.pacman_conf, encoding = "utf-8") as fh:
      return fh.read()

  def write_conf(self, content: str):
    if os.path.isfile(self.pacman_conf):
      shutil.copy2(self.pacman_conf, f"{self.pacman_conf}.backup-{datetime.now().strftime('%Y%m%d_%H%M%S')}")
    with open(self.pacman_conf, "w", encoding = "utf-8") as fh:
      fh.write(content)

  def write_repo(self, item: PacmanRepo):
    self.write_conf(set_section(self.read_conf(), item.name, item.section()))
    self.managed_repos_store.add(item.name)
    shell("pacman -Sy")

  def remove_repo(self, item: PacmanRepo):
    self.write_conf(remove_section(self.read_conf(), item.name))
    self.managed_repos_store.remove(item.name)
    shell("pacman -Sy")

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_repos_store.replace_all([item.name for item in model.items(PacmanRepo)])


class CoprRepoManager(ConfigManager[CoprRepo, RepositoryState]):
  managed_classes = [CoprRepo]
  cleanup_order = 75
  managed_repos_store: JsonCollection[str]

  def __init__(self):
    super().__init__()
    store = JsonStore(state_file("CoprRepoManager"))
    self.managed_repos_store = store.collection("managed_repos")

  def assert_installable(self, item: CoprRepo, model: ConfigModel):
    pass

  def get_state_current(self, item: CoprRepo) -> RepositoryState | None:
    return RepositoryState() if item.name in self.enabled_repos() else None

  def get_state_target(self, item: CoprRepo, model: ConfigModel, phase: Phase) -> RepositoryState:
    return RepositoryState()

  def get_install_actions(self, items_to_check: Sequence[CoprRepo], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      yield Action(
        installs = [item],
        description = f"enable COPR repository {item.name}",
        execute = lambda: self.enable(item),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[CoprRepo], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for name in self.managed_repos_store.elements():
      item = CoprRepo(name)
      if item in items_to_keep:
        continue
      yield Action(
        removes = [item],
        description = f"disable COPR repository {name}",
        execute = lambda: self.disable(item),
      )

  @staticmethod
  def enabled_repos() -> list[str]:
    # output lines look like "copr.fedorainfracloud.org/lukenukem/asus-linux"
    output = shell_output("dnf copr list", check = False)
    return ["/".join(line.strip().split("/")[-2:]) for line in output.splitlines() if "/" in line and "disabled" not in line]

  def enable(self, item: CoprRepo):
    shell(f"dnf copr enable -y {item.name}")
    self.managed_repos_store.add(item.name)

  def disable(self, item: CoprRepo):
    shell(f"dnf copr disable {item.name}")
    self.managed_repos_store.remove(item.name)

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_repos_store.replace_all([item.name for item in model.items(CoprRepo)])


def read_sections(content: str) -> dict[str, str]:
  """Splits an INI-like file into its `[section]` blocks (header line included)."""
  result: dict[str, str] = {}
  current: str | None = None
  for line in content.splitlines():
    stripped = line.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
      current = stripped[1:-1]
      result[current] = line
    elif current is not None:
      result[current] += f"\n{line}"
  return result


def normalize(block: str) -> str:
  lines = [line.strip() for line in block.splitlines()]
  return "\n".join(line for line in lines if line and not line.startswith("#"))


def remove_section(content: str, name: str) -> str:
  result: list[str] = []
  skipping = False
  for line in content.splitlines():
    stripped = line.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
      skipping = stripped == f"[{name}]"
    if not skipping:
      result.append(line)
  return "\n".join(result).rstrip("\n") + "\n"


def set_section(content: str, name: str, block: str) -> str:
  """Replaces the section in place if it exists, otherwise appends it at the end of the file."""
  if name not in read_sections(content):
    return content.rstrip("\n") + f"\n\n{block}\n"
  result: list[str] = []
  skipping = False
  for line in content.splitlines():
    stripped = line.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
      skipping = stripped == f"[{name}]"
      if skipping:
        result.extend([*block.splitlines(), ""])
    if not skipping:
      result.append(line)
  return "\n".join(result).rstrip("\n") + "\n"
