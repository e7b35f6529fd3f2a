from __future__ import annotations

from typing import Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class SystemdUnit(ManagedConfigItem):
  """A unit that gets enabled and started. User units are handled via `systemctl --user -M user@`."""
  name: str
  user: str | None

  def __init__(self, name: str, user: str | None = None, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.name = name
    self.user = user

  def __str__(self) -> str:
    if self.user is not None:
      return f"SystemdUnit('{self.name}', user = '{self.user}')"
    return f"SystemdUnit('{self.name}')"

  def merge(self, other: ConfigItem) -> SystemdUnit:
    assert isinstance(other, SystemdUnit) and self == other
    return SystemdUnit(self.name, self.user, **self.merge_base_attrs(self, other))


class DisabledUnit(ManagedConfigItem):
  """A unit that conflicts with the setup and gets disabled (and stopped) when enabled."""
  name: str

  def __init__(self, name: str, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.name = name

  def __str__(self) -> str:
    return f"DisabledUnit('{self.name}')"

  def merge(self, other: ConfigItem) -> DisabledUnit:
    assert isinstance(other, DisabledUnit) and self == other
    return DisabledUnit(self.name, **self.merge_base_attrs(self, other))


class MaskedUnit(ManagedConfigItem):
  name: str

  def __init__(self, name: str, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.name = name

  def __str__(self) -> str:
    return f"MaskedUnit('{self.name}')"

  def merge(self, other: ConfigItem) -> MaskedUnit:
    assert isinstance(other, MaskedUnit) and self == other
    return MaskedUnit(self.name, **self.merge_base_attrs(self, other))


# noinspection PyPep8Naming
def SystemdUnits(*names: str, user: str | None = None) -> list[SystemdUnit]:
  return [SystemdUnit(name, user) for name in names]


# noinspection PyPep8Naming
def DisabledUnits(*names: str) -> list[DisabledUnit]:
  return [DisabledUnit(name) for name in names]
