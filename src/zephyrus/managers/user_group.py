from __future__ import annotations

from typing import Generator, Sequence

from zephyrus.items.user_group import UserGroupAssignment
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file
from zephyrus.utils.shell import shell, shell_output


class UserGroupAssignmentState(ConfigItemState):
  def sha256(self) -> str:
    return "-"


class UserGroupManager(ConfigManager[UserGroupAssignment, UserGroupAssignmentState]):
  managed_classes = [UserGroupAssignment]
  cleanup_order = 30
  managed_assignments_store: JsonCollection[str]

  def __init__(self):
    super().__init__()
    store = JsonStore(state_file("UserGroupManager"))
    self.managed_assignments_store = store.collection("managed_assignments")

  def assert_installable(self, item: UserGroupAssignment, model: ConfigModel):
    assert item.group in group_members(), f"{item}: group {item.group} does not exist"

  def get_state_current(self, item: UserGroupAssignment) -> UserGroupAssignmentState | None:
    return UserGroupAssignmentState() if item.username in group_members().get(item.group, []) else None

  def get_state_target(self, item: UserGroupAssignment, model: ConfigModel, phase: Phase) -> UserGroupAssignmentState:
    return UserGroupAssignmentState()

  def get_install_actions(self, items_to_check: Sequence[UserGroupAssignment], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      yield Action(
        installs = [item],
        description = f"add user {item.username} to group {item.group}",
        additional_info = "takes effect after the next login",
        execute = lambda: self.assign(item),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[UserGroupAssignment], model: ConfigModel, phase: Phase) -> Generator[Action]:
    members = group_members()
    for entry in self.managed_assignments_store.elements():
      item = UserGroupAssignment.from_entry(entry)
      if item in items_to_keep or item.username not in members.get(item.group, []):
        continue
      yield Action(
        removes = [item],
        description = f"remove user {item.username} from group {item.group}",
        execute = lambda: self.unassign(item),
      )

  def assign(self, item: UserGroupAssignment):
    shell(f"gpasswd --add {item.username} {item.group}")
    self.managed_assignments_store.add(item.entry)

  def unassign(self, item: UserGroupAssignment):
    shell(f"gpasswd --delete {item.username} {item.group}")
    self.managed_assignments_store.remove(item.entry)

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_assignments_store.replace_all([item.entry for item in model.items(UserGroupAssignment)])


def group_members() -> dict[str, list[str]]:
  result: dict[str, list[str]] = {}
  for line in shell_output("getent group | cut -d: -f1,4").splitlines():
    group, _, users_csv = line.partition(":")
    result[group] = [user for user in users_csv.split(",") if user]
  return result
