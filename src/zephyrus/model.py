from __future__ import annotations

from abc import ABCMeta, abstractmethod
from typing import Any, Callable, Generator, Iterable, Literal, Sequence, Type, TypedDict, cast

type Phase = Literal["planning", "execution"]
type ConfigItems = Sequence[ConfigItem | None] | Iterable[ConfigItem | None] | ConfigItem | None
type ConfigDict = dict[Section, ConfigItems]
type OrderingRef = ManagedConfigItem | Iterable[ManagedConfigItem] | Callable[[ManagedConfigItem], bool] | None


class Section:
  """A named block of a system definition. Disabled sections are ignored entirely."""
  description: str
  enabled: bool

  def __init__(self, description: str, enabled: bool = True):
    self.description = description
    self.enabled = enabled

  def __eq__(self, other: Any):
    return self is other

  def __hash__(self):
    return id(self)

  def __str__(self):
    return f"Section('{self.description}')"


class ConfigItem(metaclass = ABCMeta):
  @abstractmethod
  def __str__(self):
    """The identity of an item. Two items with the same string are considered to describe the
    same thing and get merged before planning, so different things must never share a string."""
    pass

  def __eq__(self, other: Any) -> bool:
    return str(self) == str(other)

  def __hash__(self):
    return hash(str(self))

  @abstractmethod
  def merge(self, other: ConfigItem) -> ConfigItem:
    """Combines two definitions of the same item. Raises an AssertionError if they contradict each other."""
    raise NotImplementedError(f"method not implemented: {self.__class__.__name__}.merge()")


class ManagedConfigItemBaseArgs(TypedDict, total = False):
  requires: ManagedConfigItem | Iterable[ManagedConfigItem] | None
  after: OrderingRef


class ManagedConfigItem(ConfigItem, metaclass = ABCMeta):
  """Something that gets installed on the system by exactly one ConfigManager.

  `requires` and `after` place this item behind the referenced items. `after` may also hold
  predicates that are matched against all other items of the model (used by post hooks)."""
  requires: Sequence[ManagedConfigItem]
  after: Sequence[ManagedConfigItem | Callable[[ManagedConfigItem], bool]]

  def __init__(
    self,
    requires: ManagedConfigItem | Iterable[ManagedConfigItem] | None = None,
    after: OrderingRef = None,
  ):
    self.requires = cast(list[ManagedConfigItem], as_list(requires))
    self.after = as_list(after)

  @staticmethod
  def merge_base_attrs(item1: ManagedConfigItem, item2: ManagedConfigItem) -> dict[str, Any]:
    return {
      "requires": [*item1.requires, *item2.requires],
      "after": [*item1.after, *item2.after],
    }


def as_list(arg: OrderingRef) -> list[ManagedConfigItem | Callable[[ManagedConfigItem], bool]]:
  if arg is None:
    return []
  if isinstance(arg, ManagedConfigItem) or callable(arg):
    return [arg]
  return list(arg)


class UnmanagedConfigItem(ConfigItem, metaclass = ABCMeta):
  """Values that are not installed themselves, but read by other items (e.g. Options)."""
  pass


class ConfigItemState(metaclass = ABCMeta):
  @abstractmethod
  def sha256(self) -> str:
    """A hash over the complete state. Used for change detection and stored by the PostHookManager."""
    pass

  def __eq__(self, other: Any) -> bool:
    return other.__class__ == self.__class__ and self.sha256() == other.sha256()

  def __hash__(self):
    return hash(self.sha256())


class ConfigManager[T: ManagedConfigItem, S: ConfigItemState](metaclass = ABCMeta):
  managed_classes: list[Type] = []
  cleanup_order: float = 0.0
  cleanup_order_before: Sequence[type[ConfigManager]] = []
  cleanup_order_after: Sequence[type[ConfigManager]] = []

  @abstractmethod
  def assert_installable(self, item: T, model: ConfigModel):
    """Raises an AssertionError if the item is not configured completely."""
    pass

  @abstractmethod
  def get_state_current(self, item: T) -> S | None:
    """State of the item as currently found on the system, None if it is not installed."""
    pass

  @abstractmethod
  def get_state_target(self, item: T, model: ConfigModel, phase: Phase) -> S:
    """State of the item after installation. During planning, items this one depends on
    are assumed to already be in their target state."""
    pass

  def get_states(self, item: T, model: ConfigModel, phase: Phase) -> tuple[S | None, S]:
    return self.get_state_current(item), self.get_state_target(item, model, phase)

  @abstractmethod
  def get_install_actions(self, items_to_check: Sequence[T], model: ConfigModel, phase: Phase) -> Generator[Action]:
    """Yields the actions needed to bring the given items into their target state.
    During execution, every yielded action is run before the next one is requested."""
    pass

  @abstractmethod
  def get_cleanup_actions(self, items_to_keep: Sequence[T], model: ConfigModel, phase: Phase) -> Generator[Action]:
    """Yields the actions that remove items installed by earlier runs that are not part of `items_to_keep`."""
    pass

  def initialize(self, model: ConfigModel, phase: Phase):
    pass

  def finalize(self, model: ConfigModel, phase: Phase):
    """Called after a run went through. Persists the list of installed items."""
    pass


class Action:
  """An executable step that changes one or more items on the system."""
  installs: Sequence[ManagedConfigItem]
  updates: Sequence[ManagedConfigItem]
  removes: Sequence[ManagedConfigItem]
  execute: Callable[[], None]
  description: str
  additional_info: list[str]

  def __init__(
    self,
    description: str,
    execute: Callable[[], None],
    additional_info: list[str] | str | None = None,
    installs: Sequence[ManagedConfigItem] | None = None,
    updates: Sequence[ManagedConfigItem] | None = None,
    removes: Sequence[ManagedConfigItem] | None = None,
  ):
    self.installs = installs or []
    self.updates = updates or []
    self.removes = removes or []
    self.description = description
    self.execute = execute
    self.additional_info = [additional_info] if isinstance(additional_info, str) else (additional_info or [])

  def is_covered_by(self, other: Action) -> bool:
    return (
      set(self.installs) <= set(other.installs)
      and set(self.updates) <= set(other.updates)
      and set(self.removes) <= set(other.removes)
    )

  def was_expected(self, expected_actions: Sequence[Action]) -> bool:
    return any(self.is_covered_by(expected) for expected in expected_actions)


class ExecutionPlan:
  """Outcome of the planning phase: the model and the actions that are expected to run.
  Actions that show up unexpectedly during execution require an extra confirmation."""
  model: ConfigModel
  expected_actions: Sequence[Action]

  def __init__(self, model: ConfigModel, expected_actions: Sequence[Action]):
    self.model = model
    self.expected_actions = expected_actions


class ConfigModel:
  """The merged target state plus the computed install steps. Items can query it to
  render themselves from other items (e.g. files that include Option values)."""
  configs: Sequence[MergedConfig]
  managers: Sequence[ConfigManager]
  steps: Sequence[InstallStep]

  def __init__(
    self,
    configs: Sequence[MergedConfig],
    managers: Sequence[ConfigManager],
    steps: Sequence[InstallStep],
  ):
    self.configs = configs
    self.managers = managers
    self.steps = steps

  def item[T: ConfigItem](self, reference: T, optional: bool = False) -> T:
    result = next((cast(T, item) for config in self.configs for item in config.provides if item == reference), None)
    assert result is not None or optional, f"item not found: {reference}"
    return cast(T, result)

  def contains(self, needle: ConfigItem) -> bool:
    return any(needle == item for config in self.configs for item in config.provides)

  def items[T: ConfigItem](self, cls: type[T] | None = None) -> list[T]:
    """All distinct items of the model, optionally restricted to one class."""
    result = dict.fromkeys(item for config in self.configs for item in config.provides)
    return [cast(T, item) for item in result if cls is None or isinstance(item, cls)]

  def manager[T: ManagedConfigItem](self, reference: T) -> ConfigManager[T, ConfigItemState]:
    for manager in self.managers:
      if reference.__class__ in manager.managed_classes:
        return manager
    raise AssertionError(f"manager not found for {reference}")


class InstallStep:
  manager: ConfigManager
  items_to_install: Sequence[ManagedConfigItem]

  def __init__(self, manager: ConfigManager, items_to_install: Sequence[ManagedConfigItem]):
    self.manager = manager
    self.items_to_install = items_to_install


class CleanupStep:
  manager: ConfigManager
  items_to_keep: Sequence[ManagedConfigItem]

  def __init__(self, manager: ConfigManager, items_to_keep: Sequence[ManagedConfigItem]):
    self.manager = manager
    self.items_to_keep = items_to_keep


class MergedConfig:
  description: str
  provides: Sequence[ConfigItem]

  def __init__(self, description: str, provides: Sequence[ConfigItem]):
    self.description = description
    self.provides = provides
