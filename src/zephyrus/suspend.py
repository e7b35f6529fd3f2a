from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from time import sleep
from typing import Generator

from zephyrus.diagnostics import BBSWITCH, parse_lsmod
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import shell, shell_output, shell_retry

# in unload order; loading happens in reverse
NVIDIA_MODULES = ["nvidia_uvm", "nvidia_drm", "nvidia_modeset", "nvidia"]

STATE_FILE = "/run/zephyrus/nvidia-pre-suspend-state"
LOCK_FILE = "/run/zephyrus/nvidia-suspend.lock"


class SuspendError(AssertionError):
  pass


class SuspendHandler:
  """Powers the NVIDIA dGPU off via bbswitch before suspend and restores the previous state on resume."""
  bbswitch: Path
  state_file: Path
  lock_file: Path
  attempts: int
  delay: float

  def __init__(
    self,
    bbswitch: str | Path = BBSWITCH,
    state_file: str | Path = STATE_FILE,
    lock_file: str | Path = LOCK_FILE,
    attempts: int = 3,
    delay: float = 2,
  ):
    self.bbswitch = Path(bbswitch)
    self.state_file = Path(state_file)
    self.lock_file = Path(lock_file)
    self.attempts = attempts
    self.delay = delay

  def read_state(self) -> str | None:
    try:
      content = self.bbswitch.read_text().strip()
    except OSError:
      return None
    return content.split()[-1].upper() if content else None

  def write_state(self, value: str):
    """Writes ON/OFF to bbswitch and verifies that the dGPU followed."""
    for attempt in range(1, self.attempts + 1):
      self.bbswitch.write_text(value)
      if self.read_state() == value:
        logger.echo("info", f"dGPU is {value}")
        return
      logger.echo("warn", f"dGPU did not switch {value} (attempt {attempt}/{self.attempts})")
      if attempt < self.attempts:
        sleep(self.delay)
    raise SuspendError(f"could not switch the dGPU {value} after {self.attempts} attempts")

  @staticmethod
  def loaded_modules() -> set[str]:
    return parse_lsmod(shell_output("lsmod", check = False))

  def unload_modules(self):
    loaded = self.loaded_modules()
    for module in NVIDIA_MODULES:
      if module in loaded:
        shell_retry(f"modprobe -r {module}", attempts = self.attempts, delay = self.delay)

  def load_modules(self):
    for module in reversed(NVIDIA_MODULES):
      shell(f"modprobe {module}")

  @contextmanager
  def lock(self) -> Generator[None]:
    self.lock_file.parent.mkdir(parents = True, exist_ok = True)
    with open(self.lock_file, "w") as fh:
      try:
        fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
      except BlockingIOError:
        raise SuspendError(f"another suspend/resume handler is running ({self.lock_file})")
      try:
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        yield
      finally:
        fcntl.flock(fh, fcntl.LOCK_UN)

  def suspend(self):
    with self.lock():
      state = self.read_state()
      if state is None:
        logger.echo("warn", f"{self.bbswitch} not available, leaving the dGPU alone")
        return
      self.state_file.parent.mkdir(parents = True, exist_ok = True)
      self.state_file.write_text(f"{state}\n")
      logger.echo("info", f"recorded dGPU state before suspend: {state}")
      if state == "ON":
        self.unload_modules()
        self.write_state("OFF")

  def resume(self):
    with self.lock():
      if not self.state_file.is_file():
        logger.echo("info", "no dGPU state recorded before suspend, nothing to restore")
        return
      recorded = self.state_file.read_text().strip()
      self.state_file.unlink()
      if recorded == "ON":
        self.write_state("ON")
        self.load_modules()
