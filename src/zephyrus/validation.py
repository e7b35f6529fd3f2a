from __future__ import annotations

import os
import re
from typing import Callable, Literal

from zephyrus.utils.logging import logger

type Severity = Literal["error", "warning"]
type FileKind = Literal["xorg", "tlp", "systemd", "udev"]

VALID_GOVERNORS = ("powersave", "performance", "ondemand", "schedutil", "conservative", "userspace")

UDEV_MATCH_KEYS = (
  "ACTION", "DEVPATH", "KERNEL", "KERNELS", "NAME", "SYMLINK", "SUBSYSTEM", "SUBSYSTEMS", "DRIVER", "DRIVERS",
  "ATTR", "ATTRS", "SYSCTL", "ENV", "CONST", "TAG", "TAGS", "TEST", "PROGRAM", "RESULT", "LABEL", "GOTO",
  "RUN", "IMPORT", "OPTIONS", "OWNER", "GROUP", "MODE", "SECLABEL",
)


class ValidationError(AssertionError):
  pass


class Issue:
  severity: Severity
  message: str

  def __init__(self, severity: Severity, message: str):
    self.severity = severity
    self.message = message

  def __str__(self):
    return f"{self.severity}: {self.message}"

  def __repr__(self):
    return f"Issue({self.severity!r}, {self.message!r})"


def file_kind(path: str) -> FileKind | None:
  name = os.path.basename(path)
  if "xorg.conf" in path:
    return "xorg"
  if name == "tlp.conf" or "/tlp.d/" in path:
    return "tlp"
  if name.endswith((".service", ".timer", ".target", ".socket")):
    return "systemd"
  if name.endswith(".rules") and "rules.d" in path:
    return "udev"
  return None


def validate_xorg(content: str) -> list[Issue]:
  issues: list[Issue] = []
  sections = re.findall(r'^\s*Section\s+"(\w+)"', content, re.MULTILINE)
  if "Device" not in sections:
    issues.append(Issue("error", 'missing Section "Device"'))
  for section in ("ServerLayout", "Screen"):
    if section not in sections:
      issues.append(Issue("warning", f'missing Section "{section}"'))
  drivers = re.findall(r'^\s*Driver\s+"(\w+)"', content, re.MULTILINE)
  for driver in ("amdgpu", "nvidia"):
    if driver not in drivers:
      issues.append(Issue("warning", f"driver {driver} is not configured"))
  if len(re.findall(r'^\s*BusID\s+"', content, re.MULTILINE)) < 2:
    issues.append(Issue("warning", "less than two BusID entries found (hybrid setup needs one per GPU)"))
  return issues


def validate_tlp(content: str) -> list[Issue]:
  issues: list[Issue] = []
  settings = parse_assignments(content)
  if "TLP_ENABLE" not in settings:
    issues.append(Issue("error", "TLP_ENABLE is not set"))
  for key in ("CPU_SCALING_GOVERNOR_ON_AC", "CPU_SCALING_GOVERNOR_ON_BAT"):
    value = settings.get(key)
    if value is not None and value not in VALID_GOVERNORS:
      issues.append(Issue("error", f"{key} has invalid governor '{value}'"))
  return issues


def validate_systemd(content: str, path: str = "") -> list[Issue]:
  issues: list[Issue] = []
  sections = re.findall(r"^\[(\w+)]", content, re.MULTILINE)
  if "Unit" not in sections:
    issues.append(Issue("error", "missing [Unit] section"))
  if path.endswith(".service") and "Service" not in sections:
    issues.append(Issue("error", "missing [Service] section"))
  if "Install" not in sections:
    issues.append(Issue("warning", "missing [Install] section (unit cannot be enabled)"))
  return issues


def validate_udev(content: str) -> list[Issue]:
  issues: list[Issue] = []
  for number, line in enumerate(content.replace("\\\n", " ").splitlines(), start = 1):
    line = line.strip()
    if not line or line.startswith("#"):
      continue
    key = re.match(r"[A-Z_]+", line)
    if key is None or key.group(0) not in UDEV_MATCH_KEYS:
      issues.append(Issue("error", f"line {number} does not start with a udev key: {line}"))
  return issues


def parse_assignments(content: str) -> dict[str, str]:
  result: dict[str, str] = {}
  for line in content.splitlines():
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
      continue
    key, value = line.split("=", 1)
    result[key.strip()] = value.strip().strip('"')
  return result


VALIDATORS: dict[FileKind, Callable[[str, str], list[Issue]]] = {
  "xorg": lambda content, path: validate_xorg(content),
  "tlp": lambda content, path: validate_tlp(content),
  "systemd": validate_systemd,
  "udev": lambda content, path: validate_udev(content),
}


def validate(path: str, content: str) -> list[Issue]:
  """Validates the content of a configuration file. Files of unknown kind produce no issues."""
  kind = file_kind(path)
  return VALIDATORS[kind](content, path) if kind is not None else []


def validate_file(path: str) -> list[Issue]:
  with open(path, encoding = "utf-8") as fh:
    return validate(path, fh.read())


def assert_valid(path: str, content: str):
  """Logs warnings and raises a ValidationError if the content contains errors."""
  issues = validate(path, content)
  for issue in issues:
    if issue.severity == "warning":
      logger.warn(f"{path}: {issue.message}")
  errors = [issue.message for issue in issues if issue.severity == "error"]
  if errors:
    raise ValidationError(f"{path} is invalid: {"; ".join(errors)}")
