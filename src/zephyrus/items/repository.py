from __future__ import annotations

from typing import Any, Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs


class PacmanKey(ManagedConfigItem):
  key_id: str
  key_server: str

  def __init__(self, key_id: str, key_server: str = "keyserver.ubuntu.com", **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.key_id = key_id
    self.key_server = key_server

  def __str__(self):
    return f"PacmanKey('{self.key_id}')"

  def merge(self, other: ConfigItem) -> PacmanKey:
    assert isinstance(other, PacmanKey) and other == self
    assert other.key_server == self.key_server, f"conflicting key_server in {self}"
    return PacmanKey(self.key_id, self.key_server, **self.merge_base_attrs(self, other))


class PacmanRepo(ManagedConfigItem):
  """An additional repository section in /etc/pacman.conf."""
  name: str
  server: str
  sig_level: str | None

  def __init__(self, name: str, server: str, sig_level: str | None = None, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    self.name = name
    self.server = server
    self.sig_level = sig_level

  def __eq__(self, other: Any) -> bool:
    return isinstance(other, PacmanRepo) and self.name == other.name

  def __hash__(self):
    return hash(self.name)

  def __str__(self):
    return f"PacmanRepo('{self.name}')"

  def section(self) -> str:
    lines = [f"[{self.name}]"]
    if self.sig_level is not None:
      lines.append(f"SigLevel = {self.sig_level}")
    lines.append(f"Server = {self.server}")
    return "\n".join(lines)

  def merge(self, other: ConfigItem) -> PacmanRepo:
    assert isinstance(other, PacmanRepo) and self == other
    assert self.server == other.server, f"{self} has conflicting server parameter"
    assert self.sig_level == other.sig_level, f"{self} has conflicting sig_level parameter"
    return PacmanRepo(self.name, self.server, self.sig_level, **self.merge_base_attrs(self, other))


class CoprRepo(ManagedConfigItem):
  """A Fedora COPR repository, e.g. `CoprRepo("lukenukem/asus-linux")`."""
  name: str

  def __init__(self, name: str, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    assert name.count("/") == 1, f"COPR repositories are named owner/project: {name}"
    self.name = name

  def __str__(self):
    return f"CoprRepo('{self.name}')"

  def merge(self, other: ConfigItem) -> CoprRepo:
    assert isinstance(other, CoprRepo) and self == other
    return CoprRepo(self.name, **self.merge_base_attrs(self, other))
