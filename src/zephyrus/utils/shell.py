from __future__ import annotations

from inspect import cleandoc
from os import environ
from subprocess import CalledProcessError, Popen, run
from time import sleep
from typing import Callable

from zephyrus.utils.logging import logger

verbose_mode: bool = False


class ShellRetryError(AssertionError):
  pass


def shell(command: str, check: bool = True, executable: str = "/bin/sh", user: str | None = None):
  if verbose_mode:
    lines = cleandoc(command).split("\n")
    for idx, line in enumerate(lines):
      prefix = "$" if idx == 0 else " "
      print(f"{prefix} {line}")
  with Popen(
    command,
    shell = True,
    executable = executable,
    user = user,
    env = env_for_user(user) if user else None,
  ) as process:
    exitcode = process.wait()
    assert exitcode == 0 or not check, f"command failed: {command}"


def shell_output(command: str, check: bool = True, executable: str = "/bin/sh", user: str | None = None) -> str:
  logger.debug(f"running: {command}")
  return run(
    command,
    executable = executable,
    check = check,
    shell = True,
    capture_output = True,
    universal_newlines = True,
    user = user,
    env = env_for_user(user) if user else None,
  ).stdout.strip()


def shell_success(command: str, executable: str = "/bin/sh", user: str | None = None) -> bool:
  logger.debug(f"running: {command}")
  try:
    run(
      command,
      executable = executable,
      check = True,
      shell = True,
      capture_output = True,
      universal_newlines = True,
      user = user,
      env = env_for_user(user) if user else None,
    )
    return True
  except CalledProcessError:
    return False


def shell_retry(
  command: str,
  attempts: int = 3,
  delay: float = 5,
  before_retry: Callable[[], None] | None = None,
  user: str | None = None,
):
  """Runs a command up to `attempts` times, sleeping `delay` seconds between attempts.
  `before_retry` is invoked before every repeated attempt (e.g. to refresh a package database)."""
  for attempt in range(1, attempts + 1):
    try:
      shell(command, user = user)
      return
    except AssertionError:
      logger.echo("warn", f"command failed (attempt {attempt}/{attempts}): {command}")
      if attempt == attempts:
        break
      sleep(delay)
      if before_retry is not None:
        before_retry()
  raise ShellRetryError(f"command failed after {attempts} attempts: {command}")


def command_exists(name: str) -> bool:
  return shell_success(f"command -v {name}")


def env_for_user(user: str) -> dict[str, str]:
  user_homes: dict[str, str] = dict([line.split(":") for line in shell_output("getent passwd | cut -d: -f1,6").splitlines()])
  home = user_homes.get(user, None)
  result = {**environ, "USER": user}
  if home:
    result["HOME"] = home
  return result
