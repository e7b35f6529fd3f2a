from zephyrus.modules.asus import asus_tools
from zephyrus.modules.graphics import graphics, nvidia_suspend
from zephyrus.modules.hooks import post_hooks
from zephyrus.modules.kernel import kernel_parameters
from zephyrus.modules.packages import additional_packages, base_packages
from zephyrus.modules.power import power
from zephyrus.modules.repositories import asus_linux_repo
from zephyrus.modules.user_templates import user_templates
