from __future__ import annotations

import sys
from collections import defaultdict
from typing import Sequence

from pyscipopt import Expr, Model, SCIP_PARAMEMPHASIS, Variable  # type: ignore

from zephyrus.model import ConfigManager, InstallStep, ManagedConfigItem

type ItemGroups = Sequence[Sequence[ManagedConfigItem]]


class InfeasibleError(AssertionError):
  pass


class Restrictions:
  """Constraints learned from previous solver runs: items that must share a position
  and pairs of items that must not."""
  same_position: list[list[ManagedConfigItem]]
  distinct_position: list[tuple[ManagedConfigItem, ManagedConfigItem]]

  def __init__(
    self,
    same_position: list[list[ManagedConfigItem]] | None = None,
    distinct_position: list[tuple[ManagedConfigItem, ManagedConfigItem]] | None = None,
  ):
    self.same_position = same_position or []
    self.distinct_position = distinct_position or []


class InstallOrderOptimizer:
  """Assigns every managed item an integer position. Items at the same position are handled by a
  single manager invocation, so the solver minimizes the number of positions in use."""
  managers: Sequence[ConfigManager]
  groups: ItemGroups

  def __init__(self, groups: ItemGroups, managers: Sequence[ConfigManager]):
    self.groups = groups
    self.managers = managers

  def calc_install_steps(self) -> list[InstallStep]:
    """Solves a relaxed problem first and only adds the position constraints between items of
    different managers that actually collided, repeating until no collisions are left."""
    sys.stdout.write("calculating install order...")
    sys.stdout.flush()
    try:
      restrictions: Restrictions | None = Restrictions()
      positions: dict[ManagedConfigItem, int] = {}
      while restrictions is not None:
        positions = self.solve(self.groups, restrictions)
        restrictions = self.collisions(positions, restrictions)
        sys.stdout.write(".")
        sys.stdout.flush()
    finally:
      print()

    steps: dict[int, list[ManagedConfigItem]] = defaultdict(list)
    for group in self.groups:
      for item in group:
        if item not in steps[positions[item]]:
          steps[positions[item]].append(item)
    return [
      InstallStep(manager = self.manager_for(items[0]), items_to_install = items)
      for position, items in sorted(steps.items())
      if items
    ]

  def solve(
    self,
    groups: ItemGroups,
    restrictions: Restrictions | None = None,
    feasibility_only: bool = False,
  ) -> dict[ManagedConfigItem, int]:
    model = Model("zephyrus-install-order")
    highest_position = model.addVar("highest_position", vtype = "I")

    items: list[ManagedConfigItem] = list(dict.fromkeys(item for group in groups for item in group))
    position: dict[ManagedConfigItem, Variable] = {item: model.addVar(vtype = "I") for item in items}

    # items keep their order within a section
    for group in groups:
      model.addCons(highest_position >= position[group[-1]])
      for idx, earlier in enumerate(group):
        for later in group[idx + 1:]:
          gap = 0 if self.manager_for(earlier) is self.manager_for(later) else 1
          model.addCons(position[later] - position[earlier] >= gap)

    # explicit dependencies must never share a position, since a manager may reorder items within a step
    for item in items:
      for required in item.requires:
        if required in position:
          model.addCons(position[item] - position[required] >= 1)
        elif not feasibility_only:
          raise AssertionError(f"{item}: required item {required} not found")
      for other in self.matching(item, item.after, items):
        model.addCons(position[item] - position[other] >= 1)

    if restrictions is not None:
      for same in restrictions.same_position:
        for item1, item2 in zip(same[:-1], same[1:]):
          model.addCons(position[item1] == position[item2])
      for item1, item2 in restrictions.distinct_position:
        model.addCons(abs(position[item1] - position[item2]) >= 1)

    model.hideOutput(True)
    model.setMinimize()
    model.setObjective(highest_position)
    if feasibility_only:
      model.setEmphasis(SCIP_PARAMEMPHASIS.FEASIBILITY)
    model.optimize()

    if model.getStatus() == "infeasible":
      raise InfeasibleError()

    solution = model.getBestSol()
    return {item: round(solution[position[item]]) for item in items}

  @staticmethod
  def matching(subject: ManagedConfigItem, references, items: Sequence[ManagedConfigItem]) -> list[ManagedConfigItem]:
    result: list[ManagedConfigItem] = []
    for reference in references:
      if isinstance(reference, ManagedConfigItem):
        if reference in items:
          result.append(reference)
      else:
        result.extend(other for other in items if other != subject and reference(other))
    return result

  def collisions(self, positions: dict[ManagedConfigItem, int], restrictions: Restrictions) -> Restrictions | None:
    """Returns extended restrictions if items of different managers ended up at the same position."""
    by_position: dict[int, list[ManagedConfigItem]] = defaultdict(list)
    for item, pos in positions.items():
      by_position[pos].append(item)

    same_position: list[list[ManagedConfigItem]] = []
    distinct_position = list(restrictions.distinct_position)
    collided = False
    for items_at_position in by_position.values():
      by_manager: dict[int, list[ManagedConfigItem]] = defaultdict(list)
      for item in items_at_position:
        by_manager[id(self.manager_for(item))].append(item)
      subgroups = list(by_manager.values())
      same_position.extend(subgroups)
      for first, second in zip(subgroups[:-1], subgroups[1:]):
        distinct_position.append((first[0], second[0]))
        collided = True

    return Restrictions(same_position, distinct_position) if collided else None

  def find_iis(self) -> list[ManagedConfigItem]:
    """Shrinks the item set as long as it stays infeasible, first by whole item classes,
    then item by item. What remains is an irreducible infeasible subset."""
    sys.stdout.write("searching for conflicting items...")
    sys.stdout.flush()
    groups = self.groups

    for item_class in dict.fromkeys(item.__class__ for group in groups for item in group):
      reduced = self.without(groups, lambda item: item.__class__ == item_class)
      if not self.is_feasible(reduced):
        groups = reduced
      sys.stdout.write(".")
      sys.stdout.flush()

    for candidate in [item for group in groups for item in group]:
      reduced = self.without(groups, lambda item: item == candidate)
      if not self.is_feasible(reduced):
        groups = reduced
        sys.stdout.write(".")
        sys.stdout.flush()

    print()
    return list(dict.fromkeys(item for group in groups for item in group))

  @staticmethod
  def without(groups: ItemGroups, predicate) -> ItemGroups:
    result: list[list[ManagedConfigItem]] = []
    for group in groups:
      remaining = [item for item in group if not predicate(item)]
      if remaining:
        result.append(remaining)
    return result

  def is_feasible(self, groups: ItemGroups) -> bool:
    try:
      self.solve(groups, feasibility_only = True)
      return True
    except InfeasibleError:
      return False

  def manager_for(self, item: ManagedConfigItem) -> ConfigManager:
    for manager in self.managers:
      if item.__class__ in manager.managed_classes:
        return manager
    raise AssertionError(f"no manager found for {item}")


class CleanupOrderOptimizer:
  """Orders managers by `cleanup_order`, deviating from it only as far as
  `cleanup_order_before`/`cleanup_order_after` demand."""
  managers: Sequence[ConfigManager]

  def __init__(self, managers: Sequence[ConfigManager]):
    self.managers = managers

  def calc_cleanup_order(self) -> list[ConfigManager]:
    classes = sorted((manager.__class__ for manager in self.managers), key = lambda cls: cls.cleanup_order)
    model = Model("zephyrus-cleanup-order")
    deviation = Expr()

    position: dict[type[ConfigManager], Variable] = {}
    for idx, cls in enumerate(classes):
      position[cls] = model.addVar(vtype = "I", lb = None)
      distance = model.addVar(vtype = "C")
      model.addCons(idx - position[cls] <= distance)
      model.addCons(position[cls] - idx <= distance)
      deviation += distance

    for cls in classes:
      for other in cls.cleanup_order_before:
        if other in position:
          model.addCons(position[cls] + 1 <= position[other])
      for other in cls.cleanup_order_after:
        if other in position:
          model.addCons(position[other] + 1 <= position[cls])

    model.hideOutput(True)
    model.setMinimize()
    model.setObjective(deviation)
    model.optimize()

    if model.getStatus() == "infeasible":
      raise InfeasibleError()

    solution = model.getBestSol()
    classes.sort(key = lambda cls: round(solution[position[cls]]))
    return sorted(self.managers, key = lambda manager: classes.index(manager.__class__))
