from __future__ import annotations

from typing import Any, Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class KernelParameter(ManagedConfigItem):
  """A parameter of the kernel command line, e.g. `KernelParameter("amd_pstate", "active")`.
  Identity is the parameter name, so two sections cannot demand different values."""
  name: str
  value: str | None

  def __init__(self, name: str, value: str | None = None, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    assert name and " " not in name and "=" not in name, f"invalid kernel parameter name: {name}"
    self.name = name
    self.value = value

  def __eq__(self, other: Any) -> bool:
    return isinstance(other, KernelParameter) and self.name == other.name

  def __hash__(self):
    return hash(self.name)

  def __str__(self):
    return f"KernelParameter('{self.token()}')"

  def token(self) -> str:
    return self.name if self.value is None else f"{self.name}={self.value}"

  def merge(self, other: ConfigItem) -> KernelParameter:
    assert isinstance(other, KernelParameter) and self == other
    assert self.value == other.value, f"{self} has conflicting values: {self.value} / {other.value}"
    return KernelParameter(self.name, self.value, **self.merge_base_attrs(self, other))

  @staticmethod
  def parse(token: str) -> KernelParameter:
    name, sep, value = token.partition("=")
    return KernelParameter(name, value if sep else None)


# noinspection PyPep8Naming
def KernelParameters(*tokens: str) -> list[KernelParameter]:
  """Accepts `name=value` tokens as they appear on the kernel command line."""
  return [KernelParameter.parse(token) for token in tokens]
