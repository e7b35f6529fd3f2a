from __future__ import annotations

from typing import Callable, Sequence, Unpack

from zephyrus.model import ConfigItem, ManagedConfigItem, ManagedConfigItemBaseArgs

type PostHookTrigger = ManagedConfigItem | Callable[[ManagedConfigItem], bool]


class PostHook(ManagedConfigItem):
  """Runs `execute` whenever one of its triggers changed state since the last run,
  e.g. reloading udev rules after a rule file was written."""
  name: str
  execute: Callable[[], None] | None
  trigger: Sequence[PostHookTrigger]

  def __init__(
    self,
    name: str,
    execute: Callable[[], None] | None = None,
    trigger: PostHookTrigger | Sequence[PostHookTrigger] | None = None,
    **kwargs: Unpack[ManagedConfigItemBaseArgs],
  ):
    super().__init__(**kwargs)
    self.name = name
    self.execute = execute
    if isinstance(trigger, ManagedConfigItem) or callable(trigger):
      self.trigger = [trigger]
    else:
      self.trigger = list(trigger or [])
    self.after = [*self.after, *self.trigger]

  def __str__(self) -> str:
    return f"PostHook('{self.name}')"

  def merge(self, other: ConfigItem) -> PostHook:
    raise AssertionError(f"{self} cannot be declared twice")


# noinspection PyPep8Naming
def PostHookScope(*items: ConfigItem | None) -> list[ConfigItem]:
  """Makes every managed item of the scope a trigger of the hooks within it."""
  present = [item for item in items if item is not None]
  hooks = [item for item in present if isinstance(item, PostHook)]
  triggers = [item for item in present if isinstance(item, ManagedConfigItem) and not isinstance(item, PostHook)]
  for hook in hooks:
    hook.trigger = [*hook.trigger, *triggers]
    hook.after = [*hook.after, *triggers]
  return present
