from zephyrus import *
from zephyrus.context import SystemContext
from zephyrus.modules.repositories import asus_repo_item
from zephyrus.templates import *

# asusctl knows the fan profiles as quiet/balanced/performance
PLATFORM_PROFILES = {"silent": "quiet", "balanced": "balanced", "performance": "performance"}


def asus_tools(ctx: SystemContext) -> ConfigDict:
  preferences = ctx.preferences
  repo = asus_repo_item(ctx)
  platform_profile = PLATFORM_PROFILES[preferences.fan_profile]
  return {
    Section("ASUS hardware control: asusctl, supergfxctl, switcheroo-control", enabled = preferences.enable_asusctl): (
      *(Package(name, requires = repo) for name in ctx.distro.packages("asusctl", "supergfxctl")),
      Package("switcheroo-control"),
      File("/etc/udev/rules.d/82-gpu-power-switch.rules", content = udev_gpu_power_switch()),
      File("/etc/udev/rules.d/83-asus-hardware.rules", content = udev_asus_hardware()),
      File("/etc/systemd/system/asus-hardware.service", content = asus_hardware_service(
        platform_profile = platform_profile.capitalize(),
        keyboard_brightness = preferences.keyboard_brightness,
      )),
      SystemdUnit("supergfxd.service"),
      SystemdUnit("asusd.service"),
      SystemdUnit("switcheroo-control.service"),
      SystemdUnit("asus-hardware.service"),
      UserGroupAssignment(ctx.user, "input") if ctx.user != "root" else None,
    ),

    Section("ASUS runtime settings: GPU mode, fan profile, keyboard backlight", enabled = preferences.enable_asusctl): (
      GpuMode(preferences.gpu_mode, requires = SystemdUnit("supergfxd.service")),
      PlatformProfile(platform_profile, requires = SystemdUnit("asusd.service")),
      KeyboardBrightness(preferences.keyboard_brightness, requires = SystemdUnit("asusd.service")),
    ),

    Section("ROG Control Center", enabled = preferences.enable_asusctl and preferences.enable_rog_control): (
      *(Package(name, requires = repo) for name in ctx.distro.packages("rog-control-center")),
      File("/usr/local/share/applications/rog-control-center.desktop", content = rog_control_center_desktop()),
    ),
  }
