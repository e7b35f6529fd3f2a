from __future__ import annotations

from typing import Generator, Sequence

from zephyrus.items.package import ConflictingPackage, Package
from zephyrus.managers.pacman import PackageState, parse_package_list
from zephyrus.model import Action, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file
from zephyrus.utils.shell import shell, shell_output, shell_retry

RPM_QUERY = "rpm -qa --qf '%{NAME}\\n%{NAME}.%{ARCH}\\n'"


class DnfPackageManager(ConfigManager[Package | ConflictingPackage, PackageState]):
  """Package handling for Fedora. Packages flagged as `aur` are expected to come from a COPR repository."""
  managed_classes = [Package, ConflictingPackage]
  cleanup_order = 70
  attempts: int
  retry_delay: float
  managed_packages_store: JsonCollection[str]
  installed_packages: set[str]

  def __init__(self, attempts: int = 3, retry_delay: float = 5):
    super().__init__()
    store = JsonStore(state_file("DnfPackageManager"))
    self.managed_packages_store = store.collection("managed_packages")
    self.attempts = attempts
    self.retry_delay = retry_delay
    self.installed_packages = set()

  def initialize(self, model: ConfigModel, phase: Phase):
    self.refresh_package_list()

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_packages_store.replace_all([item.name for item in model.items(Package)])

  def assert_installable(self, item: Package | ConflictingPackage, model: ConfigModel):
    if isinstance(item, ConflictingPackage):
      assert not model.contains(Package(item.name)), f"{item} is also declared as Package"

  def get_state_current(self, item: Package | ConflictingPackage) -> PackageState | None:
    installed = item.name in self.installed_packages
    if isinstance(item, ConflictingPackage):
      installed = not installed
    return PackageState() if installed else None

  def get_state_target(self, item: Package | ConflictingPackage, model: ConfigModel, phase: Phase) -> PackageState:
    return PackageState()

  def get_install_actions(self, items_to_check: Sequence[Package | ConflictingPackage], model: ConfigModel, phase: Phase) -> Generator[Action]:
    changed = [item for item in items_to_check if self.get_state_current(item) is None]
    conflicts = sorted((item for item in changed if isinstance(item, ConflictingPackage)), key = lambda x: x.name)
    packages = sorted((item for item in changed if isinstance(item, Package)), key = lambda x: x.name)

    if conflicts:
      yield Action(
        removes = conflicts,
        description = f"remove conflicting package(s): {" ".join(item.name for item in conflicts)}",
        execute = lambda: self.remove(conflicts),
      )

    if packages:
      yield Action(
        installs = packages,
        description = f"install package(s): {" ".join(item.name for item in packages)}",
        additional_info = f"up to {self.attempts} attempts, refreshing the metadata cache before each retry",
        execute = lambda: self.install(packages),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[Package | ConflictingPackage], model: ConfigModel, phase: Phase) -> Generator[Action]:
    items_to_remove = [
      Package(name) for name in self.managed_packages_store.elements()
      if Package(name) not in items_to_keep and name in self.installed_packages
    ]
    if items_to_remove:
      yield Action(
        removes = items_to_remove,
        description = f"mark package(s) as dependency: {", ".join(item.name for item in items_to_remove)}",
        additional_info = "they will be removed by the next 'dnf autoremove' unless something depends on them",
        execute = lambda: self.mark_dependency(items_to_remove),
      )

  def install(self, items: list[Package]):
    shell_retry(
      f"dnf install -y {" ".join(item.name for item in items)}",
      attempts = self.attempts,
      delay = self.retry_delay,
      before_retry = lambda: shell("dnf makecache"),
    )
    self.managed_packages_store.add_all([item.name for item in items])
    self.refresh_package_list()

  def remove(self, items: list[ConflictingPackage]):
    shell(f"dnf remove -y {" ".join(item.name for item in items)}")
    self.refresh_package_list()

  def mark_dependency(self, items: list[Package]):
    shell(f"dnf mark dependency {" ".join(item.name for item in items)}")
    self.managed_packages_store.remove_all([item.name for item in items])

  def refresh_package_list(self):
    """Every installed package is listed by name and by name.arch, so `foo.i686` matches as well."""
    self.installed_packages = set(parse_package_list(shell_output(RPM_QUERY, check = False)))
