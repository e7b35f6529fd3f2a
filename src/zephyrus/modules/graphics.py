from zephyrus import *
from zephyrus.context import SystemContext
from zephyrus.templates import *

NVIDIA_PACKAGES = [
  "nvidia-utils", "lib32-nvidia-utils", "nvidia-prime",
  "nvidia-settings", "opencl-nvidia", "lib32-opencl-nvidia",
]

MODULES_LOAD = Option[str]("modules-load")
NVIDIA_MODPROBE_OPTIONS = Option[str]("modprobe/nvidia")


def graphics(ctx: SystemContext) -> ConfigDict:
  amd_bus_id, nvidia_bus_id = ctx.bus_ids
  driver = ctx.variant.nvidia_driver
  return {
    Section(f"NVIDIA driver ({driver}) and PRIME tools"): (
      *Packages(*ctx.distro.packages(driver, *NVIDIA_PACKAGES)),
    ),

    Section("hybrid Xorg layout: AMD iGPU primary, NVIDIA dGPU for offload"): (
      File("/etc/X11/xorg.conf.d/10-hybrid.conf", content = xorg_hybrid(amd_bus_id, nvidia_bus_id)),
    ),

    Section("kernel modules: nvidia options, nouveau blacklist, early loading"): (
      Option[str]("modules-load", ["amdgpu", "nvidia", "nvidia_modeset", "nvidia_uvm", "nvidia_drm"]),
      Option[str]("modprobe/nvidia"),
      File("/etc/modprobe.d/nvidia.conf", content = lambda model: modprobe_nvidia(
        dynamic_power_management = ctx.preferences.nvidia_power_management,
        extra_options = model.item(NVIDIA_MODPROBE_OPTIONS).distinct(),
      )),
      File("/etc/modprobe.d/blacklist-nouveau.conf", content = modprobe_blacklist_nouveau()),
      File("/etc/modules-load.d/zephyrus.conf", content = lambda model: modules_load(
        *model.item(MODULES_LOAD).distinct(),
      )),
    ),

    Section("udev rules for NVIDIA runtime power management", enabled = ctx.preferences.nvidia_power_management): (
      File("/etc/udev/rules.d/80-nvidia-off.rules", content = udev_nvidia_off()),
    ),

    Section("udev rules for NVIDIA auxiliary devices"): (
      File("/etc/udev/rules.d/81-nvidia-switching.rules", content = udev_nvidia_switching()),
    ),
  }


def nvidia_suspend(ctx: SystemContext) -> ConfigDict:
  """bbswitch based power-off of the dGPU around suspend. bbswitch is only packaged for Arch."""
  return {
    Section("NVIDIA dGPU power-off during suspend (bbswitch)", enabled = ctx.arch): (
      Package("bbswitch"),
      Option[str]("modules-load", "bbswitch"),
      File("/etc/modprobe.d/bbswitch.conf", content = modprobe_bbswitch()),
      File("/etc/systemd/system/zephyrus-nvidia-suspend.service", content = suspend_service("suspend")),
      File("/etc/systemd/system/zephyrus-nvidia-resume.service", content = suspend_service("resume")),
      SystemdUnit("zephyrus-nvidia-suspend.service"),
      SystemdUnit("zephyrus-nvidia-resume.service"),
    )
  }
