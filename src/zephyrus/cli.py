from __future__ import annotations

import argparse
import sys
from os import getuid
from pathlib import Path
from subprocess import CalledProcessError
from typing import Callable, Sequence

from zephyrus import gpu
from zephyrus.backup import BackupStore, tracked_paths
from zephyrus.context import SystemContext
from zephyrus.core import Setup
from zephyrus.diagnostics import *
from zephyrus.hardware import Hardware, hardware_cache_path, load_or_detect
from zephyrus.items import File, Package
from zephyrus.managers import AurHelper
from zephyrus.model import ConfigModel
from zephyrus.preferences import init_preferences, preferences_path
from zephyrus.presets import ManagerPresets
from zephyrus.suspend import SuspendHandler
from zephyrus.system import zephyrus_g14
from zephyrus.troubleshoot import *
from zephyrus.utils.confirm import ask, confirm
from zephyrus.utils.error_handling import handle_ctrl_c, report_errors
from zephyrus.utils.logging import logfile_name, logger
from zephyrus.utils.text import *
from zephyrus.validation import validate_file
from zephyrus.variants import bus_ids, variant_for


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog = "zephyrus",
    description = "Setup automation for the ASUS ROG Zephyrus G14 with hybrid AMD/NVIDIA graphics",
  )
  commands = parser.add_subparsers(dest = "command", required = True)

  setup = commands.add_parser("setup", help = "install packages and configuration files")
  setup.add_argument("--dry-run", action = "store_true", help = "only show the actions that would be executed")
  setup.add_argument("--verbose", action = "store_true", help = "show debug output")
  setup.add_argument("--force", action = "store_true", help = "do not ask for confirmation")
  setup.add_argument("--no-backup", action = "store_true", help = "skip the pre-setup backup")
  setup.add_argument("--log-dir", type = Path, default = None, help = "write a timestamped log file into this directory")
  setup.add_argument("--summary", action = "store_true", help = "print configuration, install order and cleanup order")
  setup.add_argument("--refresh-hardware", action = "store_true", help = "detect hardware instead of using the cached result")

  commands.add_parser("detect-hardware", help = "detect hardware and update the cache")
  commands.add_parser("show-hardware", help = "show the cached hardware configuration")

  init = commands.add_parser("init-preferences", help = "create preferences.conf with default values")
  init.add_argument("--force", action = "store_true", help = "overwrite an existing file")
  commands.add_parser("show-preferences", help = "print preferences.conf")

  generate = commands.add_parser("generate", help = "render all configuration files into a directory for review")
  generate.add_argument("output_dir", type = Path)

  validate = commands.add_parser("validate", help = "validate configuration files")
  validate.add_argument("paths", nargs = "*", help = "files to validate (default: all managed files)")

  backup = commands.add_parser("backup", help = "manage configuration backups")
  backup_commands = backup.add_subparsers(dest = "backup_command", required = True)
  backup_create = backup_commands.add_parser("create", help = "back up all files the setup touches")
  backup_create.add_argument("--description", default = "manual backup")
  backup_commands.add_parser("list", help = "list backups")
  for name, help_text in [("restore", "restore a backup"), ("delete", "delete a backup")]:
    subcommand = backup_commands.add_parser(name, help = help_text)
    subcommand.add_argument("name")
    subcommand.add_argument("--force", action = "store_true", help = "do not ask for confirmation")
  backup_validate = backup_commands.add_parser("validate", help = "check a backup for completeness")
  backup_validate.add_argument("name")

  test = commands.add_parser("test", help = "run hardware and configuration diagnostics")
  test.add_argument("--power-sample", type = float, default = 0, metavar = "SECONDS", help = "sample the battery power draw")
  test.add_argument("--stress", default = None, metavar = "COMMAND", help = "command to run while sampling")

  troubleshoot = commands.add_parser("troubleshoot", help = "diagnose common problems, analyze logs and apply fixes")
  troubleshoot.add_argument("--fix", action = "store_true", help = "back up, then apply the automatic fixes")
  troubleshoot.add_argument("--force", action = "store_true", help = "do not ask for confirmation")
  troubleshoot.add_argument(
    "--report", type = Path, nargs = "?", const = Path(REPORT_DIR), default = None, metavar = "DIR",
    help = f"write a system report into DIR (default: {REPORT_DIR})",
  )
  troubleshoot.add_argument("--log-dir", type = Path, default = None, help = "analyze the setup logs in this directory instead of the journal")

  gpu_parser = commands.add_parser("gpu", help = "GPU status, mode switching and PRIME offload")
  gpu_commands = gpu_parser.add_subparsers(dest = "gpu_command", required = True)
  gpu_commands.add_parser("status", help = "show GPU mode and dGPU power state")
  gpu_switch = gpu_commands.add_parser("switch", help = "switch the GPU mode")
  gpu_switch.add_argument("mode", choices = ["integrated", "hybrid", "discrete"])
  gpu_run = gpu_commands.add_parser("run", help = "run a program on the NVIDIA dGPU")
  gpu_run.add_argument("program", nargs = argparse.REMAINDER)

  suspend = commands.add_parser("nvidia-suspend", help = "dGPU power handling around suspend (used by systemd)")
  suspend.add_argument("action", choices = ["suspend", "resume"])

  return parser


def managers_for(ctx: SystemContext):
  return ManagerPresets.for_distro(ctx.distro, AurHelper(user = ctx.user))


def rendered_model(ctx: SystemContext) -> ConfigModel:
  """The merged system definition, without install order. Needs neither root nor solver."""
  return Setup(managers_for(ctx), zephyrus_g14(ctx), require_root = False).create_model_unordered()


def check_compatibility(ctx: SystemContext, force: bool):
  for warning in ctx.hardware.compatibility_warnings():
    logger.echo("warn", warning)
  if not ctx.hardware.hybrid_graphics and not force:
    confirm("hybrid AMD/NVIDIA graphics not detected, continue anyway?", default = False)


def cmd_setup(args: argparse.Namespace) -> int:
  logger.verbose = args.verbose
  if args.log_dir is not None:
    logger.attach_file(logfile_name(args.log_dir))
  ctx = SystemContext.detect(refresh_hardware = args.refresh_hardware)
  logger.echo("info", f"{ctx.distro.name}, {ctx.variant.description} ({ctx.variant.name})")
  check_compatibility(ctx, args.force)

  setup = Setup(managers_for(ctx), zephyrus_g14(ctx))
  plan = setup.plan(
    config_summary = args.summary,
    install_order_summary = args.summary,
    cleanup_order_summary = args.summary,
  )
  if args.dry_run or not plan.expected_actions:
    return 0
  if not args.force:
    confirm("confirm execution")

  store = BackupStore()
  backup = None
  if not args.no_backup:
    backup = store.create("pre-setup", tracked_paths(file.filename for file in plan.model.items(File)))

  try:
    setup.execute(plan)
  except (AssertionError, CalledProcessError, OSError) as e:
    logger.echo("error", f"setup failed: {e}")
    if backup is not None and ask(f"restore the pre-setup backup {backup.name}?", default = True):
      store.restore(backup.name)
    return 1
  logger.echo("success", "setup finished, a reboot is recommended")
  return 0


def print_hardware(hardware: Hardware):
  amd_bus_id, nvidia_bus_id = bus_ids(hardware)
  variant = variant_for(hardware)
  rows = [
    ("Laptop model", hardware.laptop_model or "unknown"),
    ("CPU", hardware.cpu_model or "unknown"),
    ("AMD GPU", hardware.amd_gpu or "not detected"),
    ("NVIDIA GPU", hardware.nvidia_gpu or "not detected"),
    ("AMD bus id", amd_bus_id),
    ("NVIDIA bus id", nvidia_bus_id),
    ("Battery", "yes" if hardware.has_battery else "no"),
    ("amd-pstate", "supported" if hardware.amd_pstate_supported else "not supported"),
    ("bbswitch", "supported" if hardware.bbswitch_supported else "not supported"),
    ("Variant", f"{variant.name} ({variant.description})"),
  ]
  for label, value in rows:
    printc(f"{BOLD}{ljust(label + ":", 16)}{ENDC}{value}")
  for warning in hardware.compatibility_warnings():
    logger.echo("warn", warning)


def cmd_detect_hardware(args: argparse.Namespace) -> int:
  hardware = load_or_detect(refresh = True)
  print_hardware(hardware)
  logger.echo("success", f"hardware configuration saved to {hardware_cache_path()}")
  return 0


def cmd_show_hardware(args: argparse.Namespace) -> int:
  path = hardware_cache_path()
  if not path.is_file():
    logger.echo("error", f"{path} not found, run `zephyrus detect-hardware` first")
    return 1
  print_hardware(Hardware.load(path))
  return 0


def cmd_init_preferences(args: argparse.Namespace) -> int:
  path = preferences_path()
  if init_preferences(overwrite = args.force, path = path):
    logger.echo("success", f"preferences written to {path}")
  else:
    logger.echo("warn", f"{path} already exists, use --force to overwrite it")
  return 0


def cmd_show_preferences(args: argparse.Namespace) -> int:
  path = preferences_path()
  if not path.is_file():
    logger.echo("error", f"{path} not found, run `zephyrus init-preferences` first")
    return 1
  print(path.read_text(encoding = "utf-8"), end = "")
  return 0


def cmd_generate(args: argparse.Namespace) -> int:
  model = rendered_model(SystemContext.detect())
  output_dir: Path = args.output_dir
  failed = False
  for file in model.items(File):
    assert file.content is not None
    target = output_dir / file.filename.lstrip("/")
    target.parent.mkdir(parents = True, exist_ok = True)
    target.write_bytes(file.content(model))
    issues = validate_file(str(target)) if file.validate else []
    for issue in issues:
      logger.echo("error" if issue.severity == "error" else "warn", f"{file.filename}: {issue.message}")
    failed = failed or any(issue.severity == "error" for issue in issues)
    print_listitem(f"{file.filename} -> {target}")
  logger.echo("success", f"configuration files written to {output_dir}")
  return 1 if failed else 0


def cmd_validate(args: argparse.Namespace) -> int:
  paths = args.paths or [file.filename for file in rendered_model(SystemContext.detect()).items(File)]
  errors = 0
  for path in paths:
    if not Path(path).is_file():
      logger.echo("warn", f"{path}: not found")
      continue
    issues = validate_file(path)
    if not issues:
      logger.echo("success", f"{path}: ok")
    for issue in issues:
      logger.echo("error" if issue.severity == "error" else "warn", f"{path}: {issue.message}")
      errors += issue.severity == "error"
  return 1 if errors else 0


def cmd_backup(args: argparse.Namespace) -> int:
  store = BackupStore()
  if args.backup_command == "create":
    paths = tracked_paths(file.filename for file in rendered_model(SystemContext.detect()).items(File))
    store.create(args.description, paths)
  elif args.backup_command == "list":
    backups = store.backups()
    if not backups:
      print("no backups found")
    for backup in backups:
      print_listitem(f"{backup.name}  {backup.created}  {len(backup.files)} files  {backup.description}")
  elif args.backup_command == "validate":
    problems = store.validate(args.name)
    for problem in problems:
      logger.echo("error", problem)
    if problems:
      return 1
    logger.echo("success", f"backup {args.name} is valid")
  elif args.backup_command == "restore":
    if not args.force:
      confirm(f"restore backup {args.name}? current files are kept as .pre-restore copies")
    store.restore(args.name)
  elif args.backup_command == "delete":
    if not args.force:
      confirm(f"delete backup {args.name}?", default = False)
    store.delete(args.name)
  return 0


def diagnostic_checks(ctx: SystemContext, model: ConfigModel) -> list[Callable[[], CheckResult]]:
  power_unit = {"tlp": "tlp.service", "auto-cpufreq": "auto-cpufreq.service"}.get(
    ctx.preferences.power_manager, "power-profiles-daemon.service",
  )
  return [
    lambda: check_packages(ctx.distro, [package.name for package in model.items(Package)]),
    lambda: check_gpus(),
    lambda: check_kernel_modules(bbswitch = ctx.hardware.bbswitch_supported),
    lambda: check_xorg_config(),
    lambda: check_services([power_unit]),
    lambda: check_nvidia_power_state(),
    lambda: check_asus_tools(),
    lambda: check_display(),
    lambda: check_prime_offload(),
    lambda: check_cpu_scaling(),
  ]


def cmd_test(args: argparse.Namespace) -> int:
  ctx = SystemContext.detect()
  results = run_checks(diagnostic_checks(ctx, rendered_model(ctx)))
  exitcode = print_summary(results)
  if args.power_sample > 0:
    samples = PowerSampler(duration = args.power_sample).sample(args.stress)
    logger.echo("info", power_summary(samples))
  return exitcode


def cmd_troubleshoot(args: argparse.Namespace) -> int:
  if args.fix:
    assert getuid() == 0, "troubleshoot --fix must be run as root (or through sudo)"
  ctx = SystemContext.detect()
  model = rendered_model(ctx)
  results = run_checks([
    *diagnostic_checks(ctx, model),
    check_nouveau,
    check_power_conflict,
    check_memory,
  ])
  exitcode = print_summary(results)

  if args.log_dir is not None:
    files = log_files(args.log_dir)
    logger.echo("info", f"analyzing {len(files)} log files in {args.log_dir}")
    text = "\n".join(path.read_text(encoding = "utf-8", errors = "replace") for path in files)
  else:
    logger.echo("info", "analyzing the journal of the current boot")
    text = journal_text()
  matches = analyze_log(text)
  print_matches(matches)

  if args.report is not None:
    write_report(args.report, system_report(results, matches))

  if args.fix:
    if not args.force:
      confirm("apply the automatic fixes? a backup is created first")
    troubleshooter = Troubleshooter(ctx.distro, BackupStore(), SuspendHandler())
    exitcode = print_fix_summary(troubleshooter.fix(tracked_paths(file.filename for file in model.items(File))))
  return exitcode


def cmd_gpu(args: argparse.Namespace) -> int:
  if args.gpu_command == "status":
    for label, value in gpu.status().items():
      printc(f"{BOLD}{ljust(label + ":", 12)}{ENDC}{value}")
  elif args.gpu_command == "switch":
    gpu.switch(args.mode)
  elif args.gpu_command == "run":
    gpu.run(args.program)
  return 0


def cmd_nvidia_suspend(args: argparse.Namespace) -> int:
  handler = SuspendHandler()
  if args.action == "suspend":
    handler.suspend()
  else:
    handler.resume()
  return 0


COMMANDS = {
  "setup": cmd_setup,
  "detect-hardware": cmd_detect_hardware,
  "show-hardware": cmd_show_hardware,
  "init-preferences": cmd_init_preferences,
  "show-preferences": cmd_show_preferences,
  "generate": cmd_generate,
  "validate": cmd_validate,
  "backup": cmd_backup,
  "test": cmd_test,
  "troubleshoot": cmd_troubleshoot,
  "gpu": cmd_gpu,
  "nvidia-suspend": cmd_nvidia_suspend,
}


@handle_ctrl_c
@report_errors
def main(argv: Sequence[str] | None = None) -> int:
  args = build_parser().parse_args(argv)
  return COMMANDS[args.command](args)


if __name__ == "__main__":
  sys.exit(main())
