from __future__ import annotations

from shutil import get_terminal_size as _get_terminal_size
from os import terminal_size

BLUE = '\033[0;34m'
CYAN = '\033[0;36m'
GREEN = '\033[0;32m'
YELLOW = '\033[1;33m'
RED = '\033[0;31m'
PURPLE = '\033[0;35m'
BOLD = '\033[1m'
UNDERLINE = '\033[4m'
ENDC = '\033[0m'

COLORS = [BLUE, CYAN, GREEN, YELLOW, RED, PURPLE, BOLD, UNDERLINE, ENDC]


def printc(line: str):
  print(f"{ENDC}{line}{ENDC}")


def print_listitem(line: str):
  printc(f"- {line}")


def strip_colors(line: str) -> str:
  result = line
  for x in COLORS:
    result = result.replace(x, "")
  return result


def ljust(line: str, width: int) -> str:
  return line + (width - max(0, len(strip_colors(line)))) * " "


def get_terminal_size() -> terminal_size:
  return _get_terminal_size(fallback = (100, 24))
