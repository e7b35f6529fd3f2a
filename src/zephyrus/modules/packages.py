from zephyrus import *
from zephyrus.context import SystemContext

CORE_PACKAGES = [
  "linux-headers", "mesa", "vulkan-radeon", "xf86-video-amdgpu",
  "mesa-utils", "vulkan-tools", "base-devel", "git", "wget", "curl",
]

CONFLICTING_PACKAGES = ["xf86-video-nouveau", "laptop-mode-tools", "cpufrequtils"]


def base_packages(ctx: SystemContext) -> ConfigDict:
  return {
    Section("core packages: kernel headers, AMD graphics stack, build tools"): (
      *Packages(*ctx.distro.packages(*CORE_PACKAGES)),
    ),
    Section("remove packages that conflict with the hybrid graphics and power setup"): (
      *ConflictingPackages(*ctx.distro.packages(*CONFLICTING_PACKAGES)),
    ),
  }


def additional_packages(ctx: SystemContext) -> ConfigDict:
  names = ctx.preferences.additional_packages
  return {
    Section("additional packages from preferences.conf", enabled = bool(names)): (
      *Packages(*names),
    )
  }
