from __future__ import annotations

from typing import Any, Sequence

from zephyrus.model import ConfigItem, UnmanagedConfigItem


class Option[T](UnmanagedConfigItem):
  """A named value that other items read from the model, e.g. additional module options
  that get rendered into a modprobe file. Definitions from several sections are concatenated."""
  name: str
  _values: list[T]

  def __init__(self, name: str, value: Sequence[T] | T | None = None):
    super().__init__()
    self.name = name
    if value is None:
      self._values = []
    elif isinstance(value, (list, tuple)):
      self._values = [*value]
    else:
      self._values = [value]

  def values(self) -> list[T]:
    return self._values

  def distinct(self) -> list[T]:
    return list(dict.fromkeys(self._values))

  def optional(self) -> T | None:
    """The single value of this option, or None if it has no value. Fails on contradicting values."""
    if not self._values:
      return None
    first = self._values[0]
    assert all(first == value for value in self._values[1:]), f"{self} contains non-unique values"
    return first

  def single(self) -> T:
    result = self.optional()
    assert result is not None, f"no value provided for {self}"
    return result

  def __eq__(self, other: Any) -> bool:
    return isinstance(other, Option) and self.name == other.name

  def __hash__(self):
    return hash(self.name)

  def __str__(self):
    return f"Option('{self.name}')"

  def merge(self, other: ConfigItem) -> Option[T]:
    assert isinstance(other, Option) and self == other
    return Option(self.name, [*self._values, *other._values])
