from __future__ import annotations

from typing import Generator, Sequence

from zephyrus.items.systemd import DisabledUnit, MaskedUnit, SystemdUnit
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file
from zephyrus.utils.shell import shell, shell_output

type UnitItem = SystemdUnit | DisabledUnit | MaskedUnit

SYSTEM = "$system"


class SystemdUnitState(ConfigItemState):
  def sha256(self) -> str:
    return "-"


class SystemdUnitManager(ConfigManager[UnitItem, SystemdUnitState]):
  managed_classes = [SystemdUnit, DisabledUnit, MaskedUnit]
  cleanup_order = 40
  store: JsonStore
  masked_store: JsonCollection[str]

  def __init__(self):
    super().__init__()
    self.store = JsonStore(state_file("SystemdUnitManager"))
    self.masked_store = self.store.collection("$masked")

  def assert_installable(self, item: UnitItem, model: ConfigModel):
    if isinstance(item, (DisabledUnit, MaskedUnit)):
      assert not model.contains(SystemdUnit(item.name)), f"{item} is also declared as SystemdUnit"

  def get_state_current(self, item: UnitItem) -> SystemdUnitState | None:
    status = self.unit_status(item.name, item.user if isinstance(item, SystemdUnit) else None)
    if isinstance(item, SystemdUnit):
      reached = status in ("enabled", "enabled-runtime", "static", "alias", "indirect")
    elif isinstance(item, MaskedUnit):
      reached = status in ("masked", "masked-runtime")
    else:
      reached = status not in ("enabled", "enabled-runtime")
    return SystemdUnitState() if reached else None

  def get_state_target(self, item: UnitItem, model: ConfigModel, phase: Phase) -> SystemdUnitState:
    return SystemdUnitState()

  def get_install_actions(self, items_to_check: Sequence[UnitItem], model: ConfigModel, phase: Phase) -> Generator[Action]:
    pending = [item for item in items_to_check if self.get_state_current(item) is None]

    to_disable = [item for item in pending if isinstance(item, DisabledUnit)]
    if to_disable:
      yield Action(
        removes = to_disable,
        description = f"disable conflicting systemd unit(s): {" ".join(item.name for item in to_disable)}",
        execute = lambda: shell(f"systemctl disable --now {" ".join(item.name for item in to_disable)}"),
      )

    to_mask = [item for item in pending if isinstance(item, MaskedUnit)]
    if to_mask:
      yield Action(
        installs = to_mask,
        description = f"mask systemd unit(s): {" ".join(item.name for item in to_mask)}",
        execute = lambda: self.mask_units(to_mask),
      )

    units = [item for item in pending if isinstance(item, SystemdUnit)]
    for username in dict.fromkeys(item.user for item in units):
      units_for_user = [item for item in units if item.user == username]
      yield Action(
        installs = units_for_user,
        description = f"enable systemd unit(s): {" ".join(item.name for item in units_for_user)}" + (f" (user {username})" if username else ""),
        execute = lambda: self.enable_units(username, units_for_user),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[UnitItem], model: ConfigModel, phase: Phase) -> Generator[Action]:
    installed = self.installed_units()
    for username in dict.fromkeys(item.user for item in installed):
      to_disable = [item for item in installed if item.user == username and item not in items_to_keep]
      if to_disable:
        yield Action(
          removes = to_disable,
          description = f"disable systemd unit(s): {" ".join(item.name for item in to_disable)}" + (f" (user {username})" if username else ""),
          execute = lambda: self.disable_units(username, to_disable),
        )

    to_unmask = [MaskedUnit(name) for name in self.masked_store.elements() if MaskedUnit(name) not in items_to_keep]
    if to_unmask:
      yield Action(
        removes = to_unmask,
        description = f"unmask systemd unit(s): {" ".join(item.name for item in to_unmask)}",
        execute = lambda: self.unmask_units(to_unmask),
      )

  def installed_units(self) -> list[SystemdUnit]:
    result: list[SystemdUnit] = []
    for key in self.store.keys():
      if key == "$masked":
        continue
      username = None if key == SYSTEM else key
      result += [SystemdUnit(name, username) for name in self.units_store(username).elements()]
    return result

  def units_store(self, username: str | None) -> JsonCollection[str]:
    return self.store.collection(username or SYSTEM)

  def enable_units(self, username: str | None, items: list[SystemdUnit]):
    shell(f"{systemctl(username)} daemon-reload")
    shell(f"{systemctl(username)} enable --now {" ".join(item.name for item in items)}")
    self.units_store(username).add_all([item.name for item in items])

  def disable_units(self, username: str | None, items: list[SystemdUnit]):
    shell(f"{systemctl(username)} disable --now {" ".join(item.name for item in items)}", check = False)
    self.units_store(username).remove_all([item.name for item in items])

  def mask_units(self, items: list[MaskedUnit]):
    shell(f"systemctl mask {" ".join(item.name for item in items)}")
    self.masked_store.add_all([item.name for item in items])

  def unmask_units(self, items: list[MaskedUnit]):
    shell(f"systemctl unmask {" ".join(item.name for item in items)}")
    self.masked_store.remove_all([item.name for item in items])

  @staticmethod
  def unit_status(name: str, username: str | None = None) -> str:
    return shell_output(f"{systemctl(username)} is-enabled {name}", check = False).strip()

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase != "execution":
      return
    units = model.items(SystemdUnit)
    for key in self.store.keys():
      if key != "$masked" and key not in {item.user or SYSTEM for item in units}:
        self.store.remove(key)
    for username in dict.fromkeys(item.user for item in units):
      self.units_store(username).replace_all([item.name for item in units if item.user == username])
    self.masked_store.replace_all([item.name for item in model.items(MaskedUnit)])


def systemctl(username: str | None) -> str:
  return f"systemctl --user -M {username}@" if username is not None else "systemctl"
