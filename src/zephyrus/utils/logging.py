from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Literal

from zephyrus.utils.text import BLUE, GREEN, RED, YELLOW, printc, strip_colors

type LogLevel = Literal["debug", "info", "warn", "error", "success"]


class Logger:
  """Collects messages that are shown to the user after planning/execution. Messages can
  additionally be mirrored into a timestamped log file and echoed immediately."""
  messages: list[str]
  verbose: bool
  logfile: Path | None

  def __init__(self):
    self.messages = []
    self.verbose = False
    self.logfile = None

  def clear(self):
    self.messages = []

  def attach_file(self, logfile: str | Path):
    self.logfile = Path(logfile)
    self.logfile.parent.mkdir(parents = True, exist_ok = True)
    self.logfile.touch()

  def info(self, message: str):
    self.messages.append(message)
    self.write("info", message)

  def warn(self, message: str):
    self.messages.append(f"{YELLOW}{message}")
    self.write("warn", message)

  def error(self, message: str):
    self.messages.append(f"{RED}{message}")
    self.write("error", message)

  def debug(self, message: str):
    if self.verbose:
      printc(f"[DEBUG] {message}")
    self.write("debug", message)

  def echo(self, level: LogLevel, message: str):
    """Prints a message right away (instead of collecting it)."""
    prefix = {
      "debug": "[DEBUG]",
      "info": f"{BLUE}[INFO]",
      "warn": f"{YELLOW}[WARN]",
      "error": f"{RED}[ERROR]",
      "success": f"{GREEN}[SUCCESS]",
    }[level]
    if level != "debug" or self.verbose:
      printc(f"{prefix}\033[0m {message}")
    self.write(level, message)

  def write(self, level: LogLevel, message: str):
    if self.logfile is None:
      return
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    with open(self.logfile, "a", encoding = "utf-8") as fh:
      fh.write(f"[{timestamp}] [{level.upper()}] {strip_colors(message)}\n")


def logfile_name(log_dir: str | Path, prefix: str = "setup") -> Path:
  return Path(log_dir) / f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


logger = Logger()
