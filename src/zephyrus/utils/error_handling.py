from functools import wraps
from subprocess import CalledProcessError
from typing import Any, Callable, TypeVar, cast

from zephyrus.utils.logging import logger

FuncT = TypeVar("FuncT", bound = Callable[..., Any])


def handle_ctrl_c(func: FuncT) -> FuncT:
  @wraps(func)
  def wrapped(*args: Any, **kwargs: Any) -> Any:
    try:
      return func(*args, **kwargs)
    except KeyboardInterrupt:
      print()
      raise SystemExit("process interrupted by user")

  return cast(FuncT, wrapped)


def report_errors(func: Callable[..., int]) -> Callable[..., int]:
  """Configuration errors (AssertionError) and failed commands are printed as a
  single error line; the wrapped command then returns exit code 1."""

  @wraps(func)
  def wrapped(*args: Any, **kwargs: Any) -> int:
    try:
      return func(*args, **kwargs)
    except AssertionError as e:
      logger.echo("error", str(e))
      return 1
    except CalledProcessError as e:
      logger.echo("error", f"command failed with exit code {e.returncode}: {e.cmd}")
      return 1

  return wrapped
