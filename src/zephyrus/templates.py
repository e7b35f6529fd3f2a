from __future__ import annotations

import sys
from inspect import cleandoc
from pathlib import Path
from string import Template

from zephyrus.hardware import Hardware
from zephyrus.preferences import Preferences
from zephyrus.variants import bus_ids, variant_for

TEMPLATE_SUFFIX = ".template"


class TemplateError(AssertionError):
  pass


def template_context(hardware: Hardware, preferences: Preferences) -> dict[str, str]:
  """Names available as `${name}` in user templates."""
  variant = variant_for(hardware)
  amd_bus_id, nvidia_bus_id = bus_ids(hardware)
  return {
    **preferences.context(),
    "laptop_model": hardware.laptop_model,
    "cpu_model": hardware.cpu_model,
    "amd_gpu": hardware.amd_gpu,
    "nvidia_gpu": hardware.nvidia_gpu,
    "amd_bus_id": amd_bus_id,
    "nvidia_bus_id": nvidia_bus_id,
    "variant": variant.name,
    "variant_description": variant.description,
    "nvidia_driver": variant.nvidia_driver,
  }


def render_template(text: str, context: dict[str, str], name: str = "template") -> str:
  try:
    return Template(text).substitute(context)
  except KeyError as e:
    raise TemplateError(f"{name}: unknown placeholder ${{{e.args[0]}}}")
  except ValueError as e:
    raise TemplateError(f"{name}: {e}")


def find_user_templates(templates_dir: Path) -> dict[str, Path]:
  """Maps target paths to template files: `<dir>/etc/foo.conf.template` installs as `/etc/foo.conf`."""
  if not templates_dir.is_dir():
    return {}
  return {
    "/" + str(template.relative_to(templates_dir))[:-len(TEMPLATE_SUFFIX)]: template
    for template in sorted(templates_dir.rglob(f"*{TEMPLATE_SUFFIX}"))
    if template.is_file()
  }


def render_user_templates(templates_dir: Path, context: dict[str, str]) -> dict[str, str]:
  return {
    target: render_template(template.read_text(encoding = "utf-8"), context, str(template))
    for target, template in find_user_templates(templates_dir).items()
  }


def xorg_hybrid(amd_bus_id: str, nvidia_bus_id: str) -> str:
  return cleandoc(f'''
    # Hybrid graphics: the AMD iGPU drives the display, the NVIDIA dGPU is
    # available for PRIME render offload.
    Section "ServerLayout"
        Identifier "layout"
        Screen 0 "amdgpu"
        Inactive "nvidia"
        Option "AllowNVIDIAGPUScreens"
    EndSection

    Section "Device"
        Identifier "amdgpu"
        Driver "amdgpu"
        BusID "{amd_bus_id}"
        Option "TearFree" "true"
        Option "VariableRefresh" "true"
    EndSection

    Section "Screen"
        Identifier "amdgpu"
        Device "amdgpu"
    EndSection

    Section "Device"
        Identifier "nvidia"
        Driver "nvidia"
        BusID "{nvidia_bus_id}"
    EndSection

    Section "Screen"
        Identifier "nvidia"
        Device "nvidia"
    EndSection
  ''') + "\n"


def tlp_conf(governor: str, battery_power_saving: bool, nvidia_power_management: bool) -> str:
  battery_governor = "powersave" if battery_power_saving else governor
  return cleandoc(f'''
    # TLP configuration for the ASUS ROG Zephyrus G14
    TLP_ENABLE=1
    TLP_DEFAULT_MODE=AC
    TLP_PERSISTENT_DEFAULT=0

    CPU_SCALING_GOVERNOR_ON_AC={governor}
    CPU_SCALING_GOVERNOR_ON_BAT={battery_governor}
    CPU_ENERGY_PERF_POLICY_ON_AC=balance_performance
    CPU_ENERGY_PERF_POLICY_ON_BAT={"power" if battery_power_saving else "balance_power"}
    CPU_BOOST_ON_AC=1
    CPU_BOOST_ON_BAT={0 if battery_power_saving else 1}

    PLATFORM_PROFILE_ON_AC=balanced
    PLATFORM_PROFILE_ON_BAT={"low-power" if battery_power_saving else "balanced"}

    RADEON_DPM_PERF_LEVEL_ON_AC=auto
    RADEON_DPM_PERF_LEVEL_ON_BAT={"low" if battery_power_saving else "auto"}
    AMDGPU_ABM_LEVEL_ON_AC=0
    AMDGPU_ABM_LEVEL_ON_BAT={3 if battery_power_saving else 0}

    RUNTIME_PM_ON_AC=auto
    RUNTIME_PM_ON_BAT=auto
    RUNTIME_PM_DRIVER_DENYLIST="mei_me{"" if nvidia_power_management else " nvidia"}"

    PCIE_ASPM_ON_AC=default
    PCIE_ASPM_ON_BAT={"powersupersave" if battery_power_saving else "default"}

    USB_AUTOSUSPEND=1
    USB_EXCLUDE_BTUSB=1

    WIFI_PWR_ON_AC=off
    WIFI_PWR_ON_BAT=on

    SOUND_POWER_SAVE_ON_AC=0
    SOUND_POWER_SAVE_ON_BAT=1

    START_CHARGE_THRESH_BAT0=0
    STOP_CHARGE_THRESH_BAT0=80
  ''') + "\n"


def auto_cpufreq_conf(governor: str, battery_power_saving: bool) -> str:
  return cleandoc(f'''
    # auto-cpufreq configuration for the ASUS ROG Zephyrus G14
    [charger]
    governor = {governor}
    energy_performance_preference = balance_performance
    turbo = auto

    [battery]
    governor = {"powersave" if battery_power_saving else governor}
    energy_performance_preference = {"power" if battery_power_saving else "balance_power"}
    turbo = {"never" if battery_power_saving else "auto"}
    enable_thresholds = true
    start_threshold = 20
    stop_threshold = 80
  ''') + "\n"


def udev_nvidia_off() -> str:
  return cleandoc('''
    # Let the NVIDIA dGPU power down when idle (runtime D3)
    ACTION=="bind", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x030000", TEST=="power/control", ATTR{power/control}="auto"
    ACTION=="bind", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x030200", TEST=="power/control", ATTR{power/control}="auto"

    # Keep the dGPU powered while no driver is bound
    ACTION=="unbind", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x030000", TEST=="power/control", ATTR{power/control}="on"
    ACTION=="unbind", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x030200", TEST=="power/control", ATTR{power/control}="on"
  ''') + "\n"


def udev_nvidia_switching() -> str:
  return cleandoc('''
    # Remove the NVIDIA USB xHCI and UCSI functions, they keep the dGPU awake
    ACTION=="add", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x0c0330", ATTR{power/control}="auto", ATTR{remove}="1"
    ACTION=="add", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x0c8000", ATTR{power/control}="auto", ATTR{remove}="1"

    # Enable runtime PM for the NVIDIA HDMI audio function
    ACTION=="add", SUBSYSTEM=="pci", ATTR{vendor}=="0x10de", ATTR{class}=="0x040300", ATTR{power/control}="auto"
  ''') + "\n"


def udev_gpu_power_switch() -> str:
  return cleandoc('''
    # Prefer the integrated GPU on battery, let switcheroo decide on AC
    SUBSYSTEM=="power_supply", ATTR{online}=="0", RUN+="/usr/bin/switcherooctl switch integrated"
    SUBSYSTEM=="power_supply", ATTR{online}=="1", RUN+="/usr/bin/switcherooctl switch auto"
  ''') + "\n"


def udev_asus_hardware() -> str:
  return cleandoc('''
    # Members of the input group may change the keyboard backlight
    ACTION=="add", SUBSYSTEM=="leds", KERNEL=="asus::kbd_backlight", RUN+="/bin/chgrp input /sys/class/leds/%k/brightness", RUN+="/bin/chmod g+w /sys/class/leds/%k/brightness"
  ''') + "\n"


def modprobe_nvidia(dynamic_power_management: bool, extra_options: list[str]) -> str:
  lines = [
    f"options nvidia NVreg_DynamicPowerManagement={"0x02" if dynamic_power_management else "0x00"}",
    "options nvidia NVreg_PreserveVideoMemoryAllocations=1",
    "options nvidia-drm modeset=1 fbdev=1",
    *extra_options,
  ]
  return "\n".join(lines) + "\n"


def modprobe_bbswitch() -> str:
  return "options bbswitch load_state=0 unload_state=1\n"


def modprobe_blacklist_nouveau() -> str:
  return "blacklist nouveau\noptions nouveau modeset=0\n"


def modules_load(*modules: str) -> str:
  return "\n".join(modules) + "\n"


def suspend_service(action: str) -> str:
  command = f"{sys.executable} -m zephyrus nvidia-suspend {action}"
  if action == "suspend":
    return cleandoc(f'''
      [Unit]
      Description=Power down the NVIDIA dGPU before suspend
      Before=sleep.target

      [Service]
      Type=oneshot
      ExecStart={command}

      [Install]
      WantedBy=sleep.target
    ''') + "\n"
  return cleandoc(f'''
    [Unit]
    Description=Restore the NVIDIA dGPU after resume
    After=suspend.target hibernate.target hybrid-sleep.target suspend-then-hibernate.target

    [Service]
    Type=oneshot
    ExecStart={command}

    [Install]
    WantedBy=suspend.target hibernate.target hybrid-sleep.target suspend-then-hibernate.target
  ''') + "\n"


def power_management_service(governor: str) -> str:
  return cleandoc(f'''
    [Unit]
    Description=Apply CPU governor preference
    After=multi-user.target

    [Service]
    Type=oneshot
    RemainAfterExit=true
    ExecStart=/usr/bin/cpupower frequency-set -g {governor}

    [Install]
    WantedBy=multi-user.target
  ''') + "\n"


def asus_hardware_service(platform_profile: str, keyboard_brightness: str) -> str:
  return cleandoc(f'''
    [Unit]
    Description=Apply ASUS platform profile and keyboard backlight
    After=asusd.service
    Requires=asusd.service

    [Service]
    Type=oneshot
    RemainAfterExit=true
    ExecStart=/usr/bin/asusctl profile -P {platform_profile}
    ExecStart=/usr/bin/asusctl -k {keyboard_brightness}

    [Install]
    WantedBy=multi-user.target
  ''') + "\n"


def rog_control_center_desktop() -> str:
  return cleandoc('''
    [Desktop Entry]
    Name=ROG Control Center
    Comment=ASUS ROG laptop control center
    Exec=rog-control-center
    Icon=rog-control-center
    Terminal=false
    Type=Application
    Categories=System;Settings;
    Keywords=asus;rog;control;hardware;
  ''') + "\n"
