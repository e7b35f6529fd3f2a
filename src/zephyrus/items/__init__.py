from zephyrus.items.file import File
from zephyrus.items.hooks import PostHook, PostHookScope
from zephyrus.items.kernel import KernelParameter, KernelParameters
from zephyrus.items.option import Option
from zephyrus.items.package import ConflictingPackage, ConflictingPackages, Package, Packages
from zephyrus.items.repository import CoprRepo, PacmanKey, PacmanRepo
from zephyrus.items.systemd import DisabledUnit, DisabledUnits, MaskedUnit, SystemdUnit, SystemdUnits
from zephyrus.items.tool_setting import GpuMode, KeyboardBrightness, PlatformProfile, PowerProfile, ToolSetting
from zephyrus.items.user_group import UserGroupAssignment
