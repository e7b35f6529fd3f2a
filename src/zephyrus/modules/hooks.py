from zephyrus import *
from zephyrus.context import SystemContext
from zephyrus.utils.shell import shell


def post_hooks(ctx: SystemContext) -> ConfigDict:
  return {
    Section("reload rules, rebuild initramfs and boot configuration after changes"): (
      PostHook(
        name = "reload-udev-rules",
        execute = lambda: shell("udevadm control --reload-rules && udevadm trigger"),
        trigger = lambda item: is_file_below(item, "/etc/udev/rules.d/"),
      ),
      PostHook(
        name = "reload-systemd-units",
        execute = lambda: shell("systemctl daemon-reload"),
        trigger = lambda item: is_file_below(item, "/etc/systemd/system/"),
      ),
      PostHook(
        name = "rebuild-initramfs",
        execute = lambda: shell(ctx.distro.initramfs_command),
        trigger = lambda item: (
          is_file_below(item, "/etc/modprobe.d/", "/etc/modules-load.d/")
          or (isinstance(item, Package) and item.name in ctx.distro.packages(ctx.variant.nvidia_driver))
        ),
      ),
      PostHook(
        name = "regenerate-grub-config",
        execute = lambda: shell(ctx.distro.grub_command),
        trigger = lambda item: isinstance(item, KernelParameter),
      ),
    )
  }


def is_file_below(item: ManagedConfigItem, *directories: str) -> bool:
  return isinstance(item, File) and item.filename.startswith(directories)
