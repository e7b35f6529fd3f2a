from __future__ import annotations

from typing import Literal

type DistroName = Literal["arch", "fedora"]


class Distro:
  """Differences between the supported distributions: package names and boot tooling."""
  name: DistroName
  initramfs_command: str
  grub_command: str
  package_names: dict[str, str | None]

  def __init__(self, name: DistroName, initramfs_command: str, grub_command: str, package_names: dict[str, str | None] | None = None):
    self.name = name
    self.initramfs_command = initramfs_command
    self.grub_command = grub_command
    self.package_names = package_names or {}

  def package(self, arch_name: str) -> str | None:
    """Translates an Arch package name. None means the package does not exist (or is not needed) here."""
    return self.package_names.get(arch_name, arch_name)

  def packages(self, *arch_names: str) -> list[str]:
    return [name for name in (self.package(arch_name) for arch_name in arch_names) if name is not None]

  def __repr__(self):
    return f"Distro({self.name!r})"


ARCH = Distro(
  name = "arch",
  initramfs_command = "mkinitcpio -P",
  grub_command = "grub-mkconfig -o /boot/grub/grub.cfg",
)

FEDORA = Distro(
  name = "fedora",
  initramfs_command = "dracut --regenerate-all --force",
  grub_command = "grub2-mkconfig -o /boot/grub2/grub.cfg",
  package_names = {
    "linux-headers": "kernel-devel",
    "mesa": "mesa-dri-drivers",
    "vulkan-radeon": "mesa-vulkan-drivers",
    "xf86-video-amdgpu": "xorg-x11-drv-amdgpu",
    "mesa-utils": "mesa-demos",
    "base-devel": "make",
    "nvidia": "akmod-nvidia",
    "nvidia-open": "akmod-nvidia",
    "nvidia-utils": "xorg-x11-drv-nvidia-cuda",
    "lib32-nvidia-utils": "xorg-x11-drv-nvidia-libs.i686",
    "nvidia-prime": None,
    "nvidia-settings": "nvidia-settings",
    "opencl-nvidia": "xorg-x11-drv-nvidia-cuda-libs",
    "lib32-opencl-nvidia": None,
    "acpi_call": None,
    "bbswitch": None,
    "cpupower": "kernel-tools",
    "xf86-video-nouveau": "xorg-x11-drv-nouveau",
    "rog-control-center": "asusctl-rog-gui",
    "cpufrequtils": None,
  },
)


def parse_os_release(content: str) -> dict[str, str]:
  result: dict[str, str] = {}
  for line in content.splitlines():
    key, sep, value = line.partition("=")
    if sep:
      result[key.strip()] = value.strip().strip('"')
  return result


def distro_from_os_release(content: str) -> Distro:
  release = parse_os_release(content)
  ids = [release.get("ID", ""), *release.get("ID_LIKE", "").split()]
  if "arch" in ids:
    return ARCH
  if "fedora" in ids:
    return FEDORA
  raise AssertionError(f"unsupported distribution: {release.get("PRETTY_NAME", release.get("ID", "unknown"))}")


def detect_distro(os_release: str = "/etc/os-release") -> Distro:
  with open(os_release, encoding = "utf-8") as fh:
    return distro_from_os_release(fh.read())
