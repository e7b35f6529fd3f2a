from __future__ import annotations

from typing import Any, Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class Package(ManagedConfigItem):
  """A package of the distribution's package manager. `aur = True` installs it through the
  AUR helper on Arch; on Fedora the flag is ignored (the package comes from a COPR repository)."""
  name: str
  aur: bool

  def __init__(
    self,
    name: str,
    aur: bool = False,
    **kwargs: Unpack[ManagedConfigItemBaseArgs],
  ):
    super().__init__(**kwargs)
    self.name = name
    self.aur = aur

  def __eq__(self, other: Any) -> bool:
    return isinstance(other, Package) and self.name == other.name

  def __hash__(self):
    return hash(self.name)

  def __str__(self):
    return f"Package('{self.name}', aur = True)" if self.aur else f"Package('{self.name}')"

  def merge(self, other: ConfigItem) -> Package:
    assert isinstance(other, Package) and self == other
    return Package(
      name = self.name,
      aur = self.aur or other.aur,
      **self.merge_base_attrs(self, other),
    )


class ConflictingPackage(ManagedConfigItem):
  """A package that must not be installed. It gets removed when found on the system."""
  name: str

  def __init__(self, name: str, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.name = name

  def __str__(self):
    return f"ConflictingPackage('{self.name}')"

  def merge(self, other: ConfigItem) -> ConflictingPackage:
    assert isinstance(other, ConflictingPackage) and self == other
    return ConflictingPackage(self.name, **self.merge_base_attrs(self, other))


# noinspection PyPep8Naming
def Packages(*names: str, aur: bool = False) -> list[Package]:
  return [Package(name, aur = aur) for name in names]


# noinspection PyPep8Naming
def ConflictingPackages(*names: str) -> list[ConflictingPackage]:
  return [ConflictingPackage(name) for name in names]
