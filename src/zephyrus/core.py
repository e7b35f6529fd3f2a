from __future__ import annotations

import sys
from os import getuid
from time import sleep

import zephyrus.utils.shell as shell_module
from zephyrus.model import *
from zephyrus.optimizer import CleanupOrderOptimizer, InfeasibleError, InstallOrderOptimizer
from zephyrus.utils.confirm import confirm
from zephyrus.utils.error_handling import handle_ctrl_c
from zephyrus.utils.logging import logger
from zephyrus.utils.text import *

type ProgressCallback = Callable[[], None]


class Setup:
  """Brings the system into the state described by `configs`.

  A run has two phases. During planning, every manager is asked for the actions needed to reach
  the target state; nothing is changed yet. During execution, the managers are asked again and
  each action is executed as soon as it is produced. Actions that were not predicted during
  planning need an extra confirmation."""
  managers: list[ConfigManager]
  configs: ConfigDict

  def __init__(
    self,
    managers: Iterable[ConfigManager],
    configs: ConfigDict,
    require_root: bool = True,
  ):
    if require_root:
      assert getuid() == 0, "this program must be run as root (or through sudo)"
    self.managers = list(managers)
    self.configs = configs
    self.assert_manager_consistency(self.managers, self.configs)

  def create_model(self) -> ConfigModel:
    merged_configs = self.merge_configs(self.configs)
    optimizer = InstallOrderOptimizer(
      groups = self.get_managed_items_grouped(merged_configs),
      managers = self.managers,
    )
    try:
      steps = optimizer.calc_install_steps()
    except InfeasibleError:
      self.report_circular_dependency(optimizer.find_iis())
      raise SystemExit(1)

    model = ConfigModel(configs = merged_configs, managers = self.managers, steps = steps)
    self.assert_config_items_installable(model)
    return model

  def create_model_unordered(self) -> ConfigModel:
    """A model without install steps. Enough to render files without touching the system."""
    return ConfigModel(configs = self.merge_configs(self.configs), managers = self.managers, steps = [])

  def create_cleanup_steps(self, model: ConfigModel) -> list[CleanupStep]:
    try:
      managers_in_order = CleanupOrderOptimizer(self.managers).calc_cleanup_order()
    except InfeasibleError:
      raise AssertionError("cleanup order could not be determined, check cleanup_order_before / cleanup_order_after of the managers")

    declared = model.items(ManagedConfigItem)
    return [
      CleanupStep(manager = manager, items_to_keep = [item for item in declared if item.__class__ in manager.managed_classes])
      for manager in managers_in_order
    ]

  def iterate_actions(
    self,
    model: ConfigModel,
    phase: Phase,
    cleanup_steps: Sequence[CleanupStep],
    progress: ProgressCallback | None = None,
  ) -> Generator[Action]:
    """All install actions in install order, followed by all cleanup actions. Managers are
    initialized before the first and finalized after the last action."""
    for manager in self.managers:
      manager.initialize(model, phase)
    for install_step in model.steps:
      if progress: progress()
      logger.debug(f"{phase}: {install_step.manager.__class__.__name__} installs {", ".join(str(item) for item in install_step.items_to_install)}")
      yield from install_step.manager.get_install_actions(install_step.items_to_install, model, phase)
    for cleanup_step in cleanup_steps:
      if progress: progress()
      logger.debug(f"{phase}: {cleanup_step.manager.__class__.__name__} cleans up")
      yield from cleanup_step.manager.get_cleanup_actions(cleanup_step.items_to_keep, model, phase)
    for manager in self.managers:
      manager.finalize(model, phase)

  @handle_ctrl_c
  def plan(self, config_summary: bool = False, install_order_summary: bool = False, cleanup_order_summary: bool = False) -> ExecutionPlan:
    logger.clear()
    model = self.create_model()
    cleanup_steps = self.create_cleanup_steps(model)

    sys.stdout.write("calculating actions to perform...")
    sys.stdout.flush()
    actions = list(self.iterate_actions(model, "planning", cleanup_steps, progress = self.print_progress_dot))
    print("\n")

    if config_summary:
      self.print_config_summary(model, actions)
    if install_order_summary:
      self.print_install_order(model, actions)
    if cleanup_order_summary:
      printc(f"{BOLD}Cleanup order:")
      for cleanup_step in cleanup_steps:
        print_listitem(cleanup_step.manager.__class__.__name__)
      print()
    self.print_logged_messages("planning")
    if logger.messages:
      print()

    if not actions:
      printc(f"{GREEN}The system is already up to date.")
      logger.write("info", "no actions required")
    else:
      printc(f"{BOLD}Actions that will be executed (in order):")
      for action in actions:
        printc(f"- {self.color_for_action(action)}{action.description}")
        for info in action.additional_info:
          printc(f"  {info}")
        logger.write("info", f"planned: {action.description}")
      print()

    return ExecutionPlan(expected_actions = actions, model = model)

  @handle_ctrl_c
  def execute(self, plan: ExecutionPlan):
    logger.clear()
    model = plan.model
    for action in self.iterate_actions(model, "execution", self.create_cleanup_steps(model)):
      self.execute_action(action, plan)
    self.print_divider_line()
    logger.echo("success", "execution finished")
    if logger.messages:
      print()
      self.print_logged_messages("execution")

  @handle_ctrl_c
  def run(self, force: bool = False, config_summary: bool = False, install_order_summary: bool = False, cleanup_order_summary: bool = False):
    plan = self.plan(
      config_summary = config_summary,
      install_order_summary = install_order_summary,
      cleanup_order_summary = cleanup_order_summary,
    )
    if not plan.expected_actions:
      return
    if not force:
      confirm("confirm execution")
    self.execute(plan)

  @classmethod
  def execute_action(cls, action: Action, plan: ExecutionPlan):
    cls.print_divider_line()
    printc(f"executing: {cls.color_for_action(action)}{action.description}")
    for info in action.additional_info:
      printc(info)
    logger.write("info", f"executing: {action.description}")
    if not action.was_expected(plan.expected_actions):
      confirm("this action was not predicted during planning - please confirm to continue")
    shell_module.verbose_mode = True
    try:
      action.execute()
    finally:
      shell_module.verbose_mode = False
    sleep(0.05)

  @classmethod
  def report_circular_dependency(cls, iis: Sequence[ManagedConfigItem]):
    print()
    printc(f"{RED}Unable to calculate a consistent installation order.")
    print("Please check the following items, they very likely contain a circular dependency.")
    print()
    printc(f"{BOLD}Inconsistent subset:")
    for item in iis:
      print_listitem(str(item))
    logger.write("error", f"no consistent installation order, inconsistent subset: {", ".join(str(item) for item in iis)}")

  @classmethod
  def print_config_summary(cls, model: ConfigModel, actions: Sequence[Action]):
    printc(f"{BOLD}Configuration summary:")
    for config in model.configs:
      managed = [item for item in config.provides if isinstance(item, ManagedConfigItem)]
      printc(f"{cls.prefix_for_item(actions, *managed)} {config.description}")
    print()

  @classmethod
  def print_install_order(cls, model: ConfigModel, actions: Sequence[Action]):
    printc(f"{BOLD}Installation order:")
    total = 0
    for install_step in model.steps:
      for item in install_step.items_to_install:
        printc(f"{cls.prefix_for_item(actions, item)} {item}")
        total += 1
    printc(f"{total} items total")
    print()

  @classmethod
  def print_logged_messages(cls, phase: Phase):
    if not logger.messages:
      return
    printc(f"{BOLD}Messages logged during {phase}:")
    for message in dict.fromkeys(logger.messages):
      print_listitem(message)

  @classmethod
  def print_progress_dot(cls):
    sys.stdout.write(".")
    sys.stdout.flush()

  @classmethod
  def print_divider_line(cls):
    printc("-" * (get_terminal_size().columns - 1))

  @classmethod
  def get_managed_items_grouped(cls, merged_configs: Sequence[MergedConfig]) -> list[list[ManagedConfigItem]]:
    groups = ([item for item in config.provides if isinstance(item, ManagedConfigItem)] for config in merged_configs)
    return [group for group in groups if group]

  @classmethod
  def assert_config_items_installable(cls, model: ConfigModel):
    """Checks that every item is fully configured according to its manager."""
    for install_step in model.steps:
      for item in install_step.items_to_install:
        try:
          install_step.manager.assert_installable(item, model)
        except AssertionError as e:
          raise AssertionError(f"{install_step.manager.__class__.__name__}: {e}")

  @classmethod
  def assert_manager_consistency(cls, managers: Sequence[ConfigManager], configs: ConfigDict):
    """Every managed item needs exactly one manager."""
    for _, items in cls.iterate_effective_configs(configs):
      for item in items:
        if not isinstance(item, ManagedConfigItem):
          continue
        candidates = [manager for manager in managers if item.__class__ in manager.managed_classes]
        assert candidates, f"no manager found for class {item.__class__.__name__}"
        assert len(candidates) == 1, f"multiple managers found for class {item.__class__.__name__}"

  @classmethod
  def iterate_effective_configs(cls, configs: ConfigDict) -> Generator[tuple[Section, list[ConfigItem]]]:
    for section, items in configs.items():
      if not section.enabled or items is None:
        continue
      if isinstance(items, ConfigItem):
        yield section, [items]
      else:
        yield section, [item for item in items if isinstance(item, ConfigItem)]

  @classmethod
  def merge_configs(cls, configs: ConfigDict) -> list[MergedConfig]:
    """Items with the same identity are merged into one, which then replaces them in every section."""
    merged: dict[ConfigItem, ConfigItem] = {}
    for _, items in cls.iterate_effective_configs(configs):
      for item in items:
        merged[item] = merged[item].merge(item) if item in merged else item
    return [
      MergedConfig(description = section.description, provides = [merged[item] for item in items])
      for section, items in cls.iterate_effective_configs(configs)
    ]

  @classmethod
  def prefix_for_item(cls, actions: Sequence[Action], *items: ManagedConfigItem) -> str:
    changes = {
      change
      for action in actions
      for change, affected in (("install", action.installs), ("update", action.updates), ("remove", action.removes))
      if any(item in affected for item in items)
    }
    if "remove" in changes: return f"{RED}~"
    if "update" in changes: return f"{YELLOW}~"
    if "install" in changes: return f"{GREEN}~"
    return "-"

  @classmethod
  def color_for_action(cls, action: Action) -> str:
    if action.removes:
      return RED
    if action.updates:
      return YELLOW
    if action.installs:
      return GREEN
    return PURPLE
