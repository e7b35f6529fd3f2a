from __future__ import annotations

import os
from pathlib import Path
from re import fullmatch
from typing import Any, Callable, Unpack

from urllib3 import request

from zephyrus.model import ConfigItem, ConfigModel, ManagedConfigItem, ManagedConfigItemBaseArgs

type FileContent = str | bytes | Callable[[ConfigModel], str | bytes]


class File(ManagedConfigItem):
  """A file below /etc (or elsewhere) with fixed content. The content can be given literally,
  rendered from the model, read from a local file or downloaded from an http(s) URL."""
  filename: str
  content: Callable[[ConfigModel], bytes] | None
  permissions: int | None
  owner: str | None
  validate: bool

  def __init__(
    self,
    filename: str,
    content: FileContent | None = None,
    source: str | None = None,
    permissions: int | str | None = None,
    owner: str | None = None,
    validate: bool = True,
    **kwargs: Unpack[ManagedConfigItemBaseArgs],
  ):
    super().__init__(**kwargs)
    assert content is None or source is None, f"File('{filename}'): content and source are mutually exclusive"
    self.filename = filename
    self.owner = owner
    self.validate = validate
    self.permissions = File.parse_permissions(permissions) if isinstance(permissions, str) else permissions
    if callable(content):
      self.content = lambda model: as_bytes(content(model))
    elif content is not None:
      self.content = lambda model: as_bytes(content)
    elif source is not None and source.startswith(("http://", "https://")):
      self.content = lambda model: download(source)
    elif source is not None:
      self.content = lambda model: Path(source).read_bytes()
      if self.permissions is None:
        self.permissions = os.stat(source).st_mode & 0o777
    else:
      self.content = None

  def __eq__(self, other: Any) -> bool:
    return isinstance(other, File) and self.filename == other.filename

  def __hash__(self):
    return hash(self.filename)

  def __str__(self):
    return f"File('{self.filename}')"

  @property
  def mode(self) -> int:
    return 0o644 if self.permissions is None else self.permissions

  @property
  def user(self) -> str:
    return self.owner or "root"

  def merge(self, other: ConfigItem) -> File:
    assert isinstance(other, File) and self == other
    assert self.content is None or other.content is None, f"{self} may not be declared twice"
    if self.permissions is not None and other.permissions is not None:
      assert self.permissions == other.permissions, f"{self} has conflicting permissions parameter"
    if self.owner is not None and other.owner is not None:
      assert self.owner == other.owner, f"{self} has conflicting owner parameter"
    merged = File(
      filename = self.filename,
      permissions = self.permissions if self.permissions is not None else other.permissions,
      owner = self.owner or other.owner,
      validate = self.validate and other.validate,
      **self.merge_base_attrs(self, other),
    )
    merged.content = self.content or other.content
    return merged

  @staticmethod
  def parse_permissions(permissions: str) -> int:
    """Parses `rwxr-xr-x` style strings. The short form `rw-` applies to owner, group and others alike."""
    if len(permissions) == 3:
      permissions = permissions * 3
    assert fullmatch("([r-][w-][x-]){3}", permissions), f"malformed permission string: {permissions}"
    result = 0
    for char, bit in zip(permissions, [0o400, 0o200, 0o100, 0o040, 0o020, 0o010, 0o004, 0o002, 0o001]):
      if char != "-":
        result |= bit
    return result


def as_bytes(content: str | bytes) -> bytes:
  return content.encode("utf-8") if isinstance(content, str) else content


def download(url: str) -> bytes:
  response = request("GET", url)
  assert response.status == 200, f"download of {url} failed with status {response.status}"
  return response.data
