from __future__ import annotations

from typing import Generator, Sequence

from zephyrus.items.package import ConflictingPackage, Package
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import command_exists, shell, shell_output, shell_retry


class PackageState(ConfigItemState):
  def sha256(self) -> str:
    return "-"


class AurHelper:
  """An AUR helper such as yay. AUR helpers refuse to run as root, so `user` should be set
  to the (sudo) user that owns the build directory."""
  command: str
  user: str | None
  bootstrap_url: str | None

  def __init__(self, command: str = "yay", user: str | None = None, bootstrap_url: str | None = "https://aur.archlinux.org/yay-bin.git"):
    self.command = command
    self.user = user
    self.bootstrap_url = bootstrap_url


class PacmanPackageManager(ConfigManager[Package | ConflictingPackage, PackageState]):
  managed_classes = [Package, ConflictingPackage]
  cleanup_order = 70
  aur_helper: AurHelper | None
  keep_unmanaged_packages: bool
  prune_unneeded: bool
  attempts: int
  retry_delay: float
  managed_packages_store: JsonCollection[str]
  explicit_packages: set[str]
  installed_packages: set[str]

  def __init__(
    self,
    aur_helper: AurHelper | None = None,
    keep_unmanaged_packages: bool = True,
    prune_unneeded: bool = False,
    attempts: int = 3,
    retry_delay: float = 5,
  ):
    super().__init__()
    store = JsonStore(state_file("PacmanPackageManager"))
    self.managed_packages_store = store.collection("managed_packages")
    self.aur_helper = aur_helper
    self.keep_unmanaged_packages = keep_unmanaged_packages
    self.prune_unneeded = prune_unneeded
    self.attempts = attempts
    self.retry_delay = retry_delay
    self.explicit_packages = set()
    self.installed_packages = set()

  def initialize(self, model: ConfigModel, phase: Phase):
    self.refresh_package_lists()

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_packages_store.replace_all([item.name for item in model.items(Package)])

  def assert_installable(self, item: Package | ConflictingPackage, model: ConfigModel):
    if isinstance(item, Package) and item.aur:
      assert self.aur_helper is not None, f"{item} requires an AUR helper"
    if isinstance(item, ConflictingPackage):
      assert not model.contains(Package(item.name)), f"{item} is also declared as Package"

  def get_state_current(self, item: Package | ConflictingPackage) -> PackageState | None:
    if isinstance(item, ConflictingPackage):
      return PackageState() if item.name not in self.installed_packages else None
    return PackageState() if item.name in self.explicit_packages else None

  def get_state_target(self, item: Package | ConflictingPackage, model: ConfigModel, phase: Phase) -> PackageState:
    return PackageState()

  def get_install_actions(self, items_to_check: Sequence[Package | ConflictingPackage], model: ConfigModel, phase: Phase) -> Generator[Action]:
    conflicts: list[ConflictingPackage] = []
    to_mark: list[Package] = []
    from_repo: list[Package] = []
    from_aur: list[Package] = []

    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue
      if isinstance(item, ConflictingPackage):
        conflicts.append(item)
      elif item.name in self.installed_packages:
        to_mark.append(item)
      elif item.aur:
        from_aur.append(item)
      else:
        from_repo.append(item)

    if conflicts:
      conflicts.sort(key = lambda x: x.name)
      yield Action(
        removes = conflicts,
        description = f"remove conflicting package(s): {" ".join(item.name for item in conflicts)}",
        execute = lambda: self.remove_conflicts(conflicts),
      )

    if to_mark:
      to_mark.sort(key = lambda x: x.name)
      yield Action(
        updates = to_mark,
        description = f"mark package(s) explicitly installed: {", ".join(item.name for item in to_mark)}",
        execute = lambda: self.mark_explicit(to_mark),
      )

    if from_repo:
      if phase == "planning":
        logger.info("When installing new packages, Arch always needs to do a full system update (partial updates are unsupported).")
      from_repo.sort(key = lambda x: x.name)
      yield Action(
        installs = from_repo,
        description = f"install package(s): {" ".join(item.name for item in from_repo)}",
        additional_info = f"up to {self.attempts} attempts, refreshing the package database before each retry",
        execute = lambda: self.install_from_repo(from_repo),
      )

    if from_aur:
      assert self.aur_helper is not None
      helper = self.aur_helper
      if not command_exists(helper.command):
        yield Action(
          description = f"bootstrap AUR helper {helper.command} from {helper.bootstrap_url}",
          execute = lambda: self.bootstrap_aur_helper(helper),
        )
      from_aur.sort(key = lambda x: x.name)
      yield Action(
        installs = from_aur,
        description = f"install AUR package(s): {" ".join(item.name for item in from_aur)}",
        additional_info = f"using {helper.command}" + (f" as user {helper.user}" if helper.user else ""),
        execute = lambda: self.install_from_aur(helper, from_aur),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[Package | ConflictingPackage], model: ConfigModel, phase: Phase) -> Generator[Action]:
    items_to_remove = [item for item in self.removable_packages() if item not in items_to_keep]
    if items_to_remove:
      items_to_remove.sort(key = lambda x: x.name)
      yield Action(
        removes = items_to_remove,
        description = f"mark package(s) non-explicitly installed: {", ".join(item.name for item in items_to_remove)}",
        execute = lambda: self.mark_dependency(items_to_remove),
      )
    if self.prune_unneeded and self.unneeded_packages():
      yield Action(
        description = "prune unneeded pacman packages",
        execute = self.prune,
      )

  def removable_packages(self) -> list[Package]:
    managed = self.managed_packages_store.elements()
    return [
      Package(name) for name in sorted(self.explicit_packages)
      if not self.keep_unmanaged_packages or name in managed
    ]

  def install_from_repo(self, items: list[Package]):
    shell_retry(
      f"pacman -Syu --needed --noconfirm --asexplicit {" ".join(item.name for item in items)}",
      attempts = self.attempts,
      delay = self.retry_delay,
      before_retry = lambda: shell("pacman -Sy"),
    )
    self.managed_packages_store.add_all([item.name for item in items])
    self.refresh_package_lists()

  def install_from_aur(self, helper: AurHelper, items: list[Package]):
    shell_retry(
      f"{helper.command} -S --needed --noconfirm --asexplicit {" ".join(item.name for item in items)}",
      attempts = self.attempts,
      delay = self.retry_delay,
      before_retry = lambda: shell("pacman -Sy"),
      user = helper.user,
    )
    self.managed_packages_store.add_all([item.name for item in items])
    self.refresh_package_lists()

  def bootstrap_aur_helper(self, helper: AurHelper):
    assert helper.bootstrap_url is not None, f"{helper.command} is missing and no bootstrap url is configured"
    shell("pacman -S --needed --noconfirm git base-devel")
    builddir = shell_output("mktemp -d", user = helper.user)
    shell(f"git clone {helper.bootstrap_url} {builddir}/{helper.command}", user = helper.user)
    shell(f"cd {builddir}/{helper.command} && makepkg -si --noconfirm", user = helper.user)
    shell(f"rm -rf {builddir}", user = helper.user)

  def remove_conflicts(self, items: list[ConflictingPackage]):
    installed = [item.name for item in items if item.name in self.installed_packages]
    if installed:
      shell(f"pacman -Rns --noconfirm {" ".join(installed)}")
    self.refresh_package_lists()

  def mark_explicit(self, items: list[Package]):
    shell(f"pacman -D --asexplicit {" ".join(item.name for item in items)}")
    self.managed_packages_store.add_all([item.name for item in items])
    self.refresh_package_lists()

  def mark_dependency(self, items: list[Package]):
    shell(f"pacman -D --asdeps {" ".join(item.name for item in items)}")
    self.managed_packages_store.remove_all([item.name for item in items])
    self.refresh_package_lists()

  def unneeded_packages(self) -> list[str]:
    return parse_package_list(shell_output("pacman -Qdttq", check = False))

  def prune(self):
    unneeded = self.unneeded_packages()
    if unneeded:
      shell(f"pacman -Rns --noconfirm {" ".join(unneeded)}")
    else:
      print("no unneeded packages found")

  def refresh_package_lists(self):
    self.explicit_packages = set(parse_package_list(shell_output("pacman -Qqe", check = False)))
    self.installed_packages = set(parse_package_list(shell_output("pacman -Qq", check = False)))


def parse_package_list(output: str) -> list[str]:
  if "there is nothing to do" in output:
    return []
  return [line.strip() for line in output.splitlines() if line.strip()]
