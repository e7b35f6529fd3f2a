from __future__ import annotations

from sys import exit


def confirm(message: str, default: bool = True):
  """Asks until the user answers; a negative answer ends the program."""
  if not ask(message, default):
    print("execution cancelled")
    exit(1)
  return True


def ask(message: str, default: bool = True) -> bool:
  hint = "[Y/n]" if default else "[y/N]"
  while True:
    answer = input(f'{message}: {hint} ').strip().lower()
    if answer == '':
      return default
    if answer in ('y', 'yes'):
      return True
    if answer in ('n', 'no'):
      return False
    print("please answer yes or no")
