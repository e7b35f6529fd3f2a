from zephyrus import *
from zephyrus.context import SystemContext
from zephyrus.templates import render_user_templates, template_context


def user_templates(ctx: SystemContext) -> ConfigDict:
  rendered = render_user_templates(ctx.templates_dir, template_context(ctx.hardware, ctx.preferences))
  return {
    Section(f"user templates from {ctx.templates_dir}", enabled = bool(rendered)): (
      *(File(target, content = content) for target, content in rendered.items()),
    )
  }
