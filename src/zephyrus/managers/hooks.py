from __future__ import annotations

from hashlib import sha256
from typing import Generator, Sequence

from zephyrus.items.hooks import PostHook
from zephyrus.model import Action, ConfigItem, ConfigItemState, ConfigManager, ConfigModel, ManagedConfigItem, Phase
from zephyrus.utils.json_store import JsonMapping, JsonStore, state_file


class PostHookState(ConfigItemState):
  trigger_hashes: dict[str, str]

  def __init__(self, trigger_hashes: dict[str, str]):
    self.trigger_hashes = trigger_hashes

  def sha256(self) -> str:
    sha256_hash = sha256()
    for identifier, trigger_hash in sorted(self.trigger_hashes.items()):
      sha256_hash.update(identifier.encode())
      sha256_hash.update(trigger_hash.encode())
    return sha256_hash.hexdigest()


class PostHookManager(ConfigManager[PostHook, PostHookState]):
  """Remembers the state hashes of each hook's triggers and reruns the hook when they differ."""
  managed_classes = [PostHook]
  cleanup_order = 100
  trigger_hash_store: JsonMapping[str, dict[str, str]]

  def __init__(self):
    super().__init__()
    store = JsonStore(state_file("PostHookManager"))
    self.trigger_hash_store = store.mapping("trigger_hashes")

  def assert_installable(self, hook: PostHook, model: ConfigModel):
    assert hook.execute is not None, f"{hook} is missing the execute parameter"
    hook_position = position_in_install_order(model, hook)
    assert hook_position is not None, f"{hook} not found in install order"
    for trigger in self.triggers(hook, model):
      trigger_position = position_in_install_order(model, trigger)
      assert trigger_position is None or trigger_position < hook_position, f"{hook} has trigger that is installed too late: {trigger}"

  def triggers(self, hook: PostHook, model: ConfigModel) -> list[ManagedConfigItem]:
    result: list[ManagedConfigItem] = []
    for trigger in hook.trigger:
      if isinstance(trigger, ManagedConfigItem):
        result.append(trigger)
      else:
        result.extend(item for item in model.items(ManagedConfigItem) if item != hook and trigger(item))
    return list(dict.fromkeys(result))

  def get_state_current(self, hook: PostHook) -> PostHookState | None:
    stored = self.trigger_hash_store.get(hook.name, None)
    return PostHookState(stored) if isinstance(stored, dict) else None

  def get_state_target(self, hook: PostHook, model: ConfigModel, phase: Phase) -> PostHookState:
    trigger_hashes: dict[str, str] = {}
    for trigger in self.triggers(hook, model):
      state = self.trigger_state(trigger, model, phase)
      if state is not None:
        trigger_hashes[str(trigger)] = state.sha256()
    return PostHookState(trigger_hashes)

  @staticmethod
  def trigger_state(reference: ManagedConfigItem, model: ConfigModel, phase: Phase) -> ConfigItemState | None:
    manager = model.manager(reference)
    # during planning, triggers are not yet installed, so their target state is used
    if phase == "planning":
      item = model.item(reference, optional = True)
      if item is not None:
        return manager.get_state_target(item, model, phase)
    return manager.get_state_current(reference)

  def get_install_actions(self, items_to_check: Sequence[PostHook], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for hook in items_to_check:
      current, target = self.get_states(hook, model, phase)
      if current == target:
        continue
      changed = [name for name, value in target.trigger_hashes.items() if current is None or current.trigger_hashes.get(name) != value]
      yield Action(
        installs = [hook] if current is None else [],
        updates = [hook] if current is not None else [],
        description = f"run hook '{hook.name}'" + (" for the first time" if current is None else " because of updated triggers"),
        additional_info = [f"changed: {name}" for name in changed][:5],
        execute = lambda: self.execute_hook(hook, target),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[PostHook], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for name in self.trigger_hash_store.keys():
      hook = PostHook(name)
      if hook in items_to_keep:
        continue
      yield Action(
        removes = [hook],
        description = f"stop tracking hook '{name}'",
        execute = lambda: self.trigger_hash_store.remove(hook.name),
      )

  def execute_hook(self, hook: PostHook, target: PostHookState):
    assert hook.execute is not None
    hook.execute()
    self.trigger_hash_store.put(hook.name, target.trigger_hashes)

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      names = [hook.name for hook in model.items(PostHook)]
      for name in self.trigger_hash_store.keys():
        if name not in names:
          self.trigger_hash_store.remove(name)


def position_in_install_order(model: ConfigModel, needle: ConfigItem) -> int | None:
  position = 0
  for step in model.steps:
    for item in step.items_to_install:
      if item == needle:
        return position
      position += 1
  return None
