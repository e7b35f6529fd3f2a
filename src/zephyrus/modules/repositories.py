from zephyrus import *
from zephyrus.context import SystemContext

ASUS_LINUX_KEY = "8F654886F17D497FEFE3DB448B15A6B0E9A3FA35"
ASUS_LINUX_SERVER = "https://arch.asus-linux.org"
ASUS_LINUX_COPR = "lukenukem/asus-linux"


def asus_linux_repo(ctx: SystemContext) -> ConfigDict:
  if ctx.arch:
    return {
      Section("asus-linux.org package repository (g14)"): (
        PacmanKey(ASUS_LINUX_KEY, "keyserver.ubuntu.com"),
        PacmanRepo("g14", ASUS_LINUX_SERVER, requires = PacmanKey(ASUS_LINUX_KEY, "keyserver.ubuntu.com")),
      )
    }
  return {
    Section(f"asus-linux COPR repository ({ASUS_LINUX_COPR})"): (
      CoprRepo(ASUS_LINUX_COPR),
    )
  }


def asus_repo_item(ctx: SystemContext) -> ManagedConfigItem:
  """The repository item the ASUS packages have to wait for."""
  return PacmanRepo("g14", ASUS_LINUX_SERVER) if ctx.arch else CoprRepo(ASUS_LINUX_COPR)
