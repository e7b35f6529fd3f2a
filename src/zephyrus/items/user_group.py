from __future__ import annotations

import re
from typing import Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs

# account names as accepted by shadow-utils; they end up in gpasswd command lines
ACCOUNT_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]{0,30}\$?")


class UserGroupAssignment(ManagedConfigItem):
  """Membership of the invoking user in a supplementary group, e.g. `input` for asusctl
  keyboard access. The group itself must already exist; it is never created or removed."""
  username: str
  group: str

  def __init__(self, username: str, group: str, **kwargs: Unpack[ManagedConfigItemBaseArgs]):
    super().__init__(**kwargs)
    for kind, name in (("user", username), ("group", group)):
      assert ACCOUNT_NAME.fullmatch(name), f"invalid {kind} name: {name!r}"
    assert username != "root", "root does not need supplementary groups"
    self.username = username
    self.group = group

  def __str__(self) -> str:
    return f"UserGroupAssignment('{self.username}', '{self.group}')"

  @property
  def entry(self) -> str:
    """The form in which assignments are persisted by the UserGroupManager."""
    return f"{self.username}:{self.group}"

  @staticmethod
  def from_entry(entry: str) -> UserGroupAssignment:
    username, _, group = entry.partition(":")
    return UserGroupAssignment(username, group)

  def merge(self, other: ConfigItem) -> UserGroupAssignment:
    assert isinstance(other, UserGroupAssignment) and self == other
    return UserGroupAssignment(self.username, self.group, **self.merge_base_attrs(self, other))
