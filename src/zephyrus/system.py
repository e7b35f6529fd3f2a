from zephyrus.context import SystemContext
from zephyrus.model import ConfigDict
from zephyrus.modules import *


# Complete configuration of an ASUS ROG Zephyrus G14 with hybrid AMD/NVIDIA graphics
def zephyrus_g14(ctx: SystemContext) -> ConfigDict:
  return {
    **asus_linux_repo(ctx),
    **base_packages(ctx),
    **graphics(ctx),
    **nvidia_suspend(ctx),
    **power(ctx),
    **kernel_parameters(ctx),
    **asus_tools(ctx),
    **additional_packages(ctx),
    **user_templates(ctx),
    **post_hooks(ctx),
  }
