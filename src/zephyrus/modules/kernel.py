from zephyrus import *
from zephyrus.context import SystemContext

DEFAULT_KERNEL_PARAMS = ["amd_pstate=active", "amdgpu.ppfeaturemask=0xffffffff", "nvidia-drm.modeset=1"]


def kernel_parameters(ctx: SystemContext) -> ConfigDict:
  return {
    Section(f"kernel parameters for {ctx.variant.description}"): (
      *effective_kernel_parameters(DEFAULT_KERNEL_PARAMS, ctx.variant.kernel_params, ctx.preferences.custom_kernel_params),
    )
  }


def effective_kernel_parameters(*token_lists: list[str]) -> list[KernelParameter]:
  """Later lists override parameters of the same name from earlier ones, so custom parameters win."""
  by_name: dict[str, KernelParameter] = {}
  for tokens in token_lists:
    for parameter in KernelParameters(*tokens):
      by_name[parameter.name] = parameter
  return list(by_name.values())
