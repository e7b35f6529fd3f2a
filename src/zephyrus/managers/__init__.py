from zephyrus.managers.dnf import DnfPackageManager
from zephyrus.managers.file import FileManager
from zephyrus.managers.hooks import PostHookManager
from zephyrus.managers.kernel import KernelParameterManager
from zephyrus.managers.pacman import AurHelper, PacmanPackageManager
from zephyrus.managers.repository import CoprRepoManager, PacmanKeyManager, PacmanRepoManager
from zephyrus.managers.systemd import SystemdUnitManager
from zephyrus.managers.tool_setting import ToolSettingManager
from zephyrus.managers.user_group import UserGroupManager
