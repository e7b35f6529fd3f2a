from zephyrus import *
from zephyrus.context import SystemContext
from zephyrus.templates import *

POWER_TOOLS = ["powertop", "cpupower", "acpi_call"]

POWER_MANAGER_UNITS = {
  "tlp": "tlp.service",
  "auto-cpufreq": "auto-cpufreq.service",
  "power-profiles-daemon": "power-profiles-daemon.service",
}

CONFLICTING_UNITS = ["laptop-mode.service", "cpufrequtils.service", "thermald.service"]


def power(ctx: SystemContext) -> ConfigDict:
  preferences = ctx.preferences
  manager = preferences.power_manager
  other_units = [unit for name, unit in POWER_MANAGER_UNITS.items() if name != manager]
  return {
    Section("power tools (powertop, cpupower, acpi_call)"): (
      *Packages(*ctx.distro.packages(*POWER_TOOLS)),
      Option[str]("modules-load", "acpi_call") if ctx.arch else None,
    ),

    Section("NVIDIA power management for s2idle", enabled = preferences.nvidia_power_management): (
      Option[str]("modprobe/nvidia", "options nvidia NVreg_EnableS0ixPowerManagement=1"),
    ),

    Section("disable services that conflict with the power setup"): (
      *DisabledUnits(*CONFLICTING_UNITS, *other_units),
    ),

    **tlp(ctx, enabled = manager == "tlp"),
    **auto_cpufreq(ctx, enabled = manager == "auto-cpufreq"),
    **power_profiles_daemon(ctx, enabled = manager == "power-profiles-daemon"),
  }


def tlp(ctx: SystemContext, enabled: bool) -> ConfigDict:
  preferences = ctx.preferences
  return {
    Section("power management with TLP", enabled = enabled): (
      *Packages("tlp", "tlp-rdw"),
      File("/etc/tlp.conf", content = tlp_conf(
        governor = preferences.governor,
        battery_power_saving = preferences.battery_power_saving,
        nvidia_power_management = preferences.nvidia_power_management,
      )),
      SystemdUnit("tlp.service"),
      MaskedUnit("systemd-rfkill.service"),
      MaskedUnit("systemd-rfkill.socket"),
    )
  }


def auto_cpufreq(ctx: SystemContext, enabled: bool) -> ConfigDict:
  preferences = ctx.preferences
  return {
    Section("power management with auto-cpufreq", enabled = enabled): (
      Package("auto-cpufreq", aur = True),
      File("/etc/auto-cpufreq.conf", content = auto_cpufreq_conf(
        governor = preferences.governor,
        battery_power_saving = preferences.battery_power_saving,
      )),
      SystemdUnit("auto-cpufreq.service"),
    )
  }


def power_profiles_daemon(ctx: SystemContext, enabled: bool) -> ConfigDict:
  preferences = ctx.preferences
  return {
    Section("power management with power-profiles-daemon", enabled = enabled): (
      Package("power-profiles-daemon"),
      SystemdUnit("power-profiles-daemon.service"),
      PowerProfile(preferences.power_profile, requires = SystemdUnit("power-profiles-daemon.service")),
      File("/etc/systemd/system/power-management.service", content = power_management_service(preferences.governor)),
      SystemdUnit("power-management.service"),
    )
  }
