from __future__ import annotations

import os
import shutil
from datetime import datetime
from hashlib import sha256
from pwd import getpwnam, getpwuid
from typing import Generator, Sequence

from zephyrus.items.file import File
from zephyrus.model import Action, ConfigItemState, ConfigManager, ConfigModel, Phase
from zephyrus.utils.json_store import JsonCollection, JsonStore, state_file
from zephyrus.utils.logging import logger
from zephyrus.validation import assert_valid


class FileState(ConfigItemState):
  content: bytes
  owner: str
  mode: int
  content_hash: str

  def __init__(self, content: bytes, owner: str, mode: int):
    self.content = content
    self.owner = owner
    self.mode = mode
    self.content_hash = sha256(content).hexdigest()

  def sha256(self) -> str:
    return sha256(f"{self.owner}:{oct(self.mode & 0o777)}:{self.content_hash}".encode()).hexdigest()


class FileManager(ConfigManager[File, FileState]):
  managed_classes = [File]
  cleanup_order = 50
  managed_files_store: JsonCollection[str]
  backups_store: JsonCollection[str]

  def __init__(self):
    super().__init__()
    store = JsonStore(state_file("FileManager"))
    self.managed_files_store = store.collection("managed_files")
    self.backups_store = store.collection("backups")

  def assert_installable(self, item: File, model: ConfigModel):
    assert item.content is not None, f"{item} has neither content nor source"
    if item.validate:
      content = item.content(model)
      try:
        text = content.decode("utf-8")
      except UnicodeDecodeError:
        return
      assert_valid(item.filename, text)

  def get_state_current(self, item: File) -> FileState | None:
    if not os.path.isfile(item.filename):
      return None
    with open(item.filename, "rb") as fh:
      content = fh.read()
    stat = os.stat(item.filename)
    return FileState(
      content = content,
      owner = getpwuid(stat.st_uid).pw_name,
      mode = stat.st_mode & 0o777,
    )

  def get_state_target(self, item: File, model: ConfigModel, phase: Phase) -> FileState:
    assert item.content is not None
    return FileState(
      content = item.content(model),
      owner = item.user,
      mode = item.mode & 0o777,
    )

  def get_install_actions(self, items_to_check: Sequence[File], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in items_to_check:
      current, target = self.get_states(item, model, phase)
      if current == target:
        continue

      if current is None:
        yield Action(
          installs = [item],
          description = f"create file: {item.filename}",
          additional_info = f"owner = {target.owner}, mode = {oct(target.mode)}",
          execute = lambda: self.write_file(item, target),
        )
        continue

      info: list[str] = []
      if current.content_hash != target.content_hash:
        info.append(f"filesize {len(current.content)} => {len(target.content)} bytes")
        info.append(f"preview changes: diff '{item.filename}' '{self.write_preview(target)}'")
      if current.owner != target.owner:
        info.append(f"owner {current.owner} => {target.owner}")
      if current.mode != target.mode:
        info.append(f"mode {oct(current.mode)} => {oct(target.mode)}")
      if not self.is_managed(item):
        info.append(f"the existing file will be saved as {item.filename}.backup-<timestamp>")
      yield Action(
        updates = [item],
        description = f"update file: {item.filename}",
        additional_info = info,
        execute = lambda: self.write_file(item, target),
      )

  def get_cleanup_actions(self, items_to_keep: Sequence[File], model: ConfigModel, phase: Phase) -> Generator[Action]:
    for item in self.installed_files():
      if item in items_to_keep or not os.path.isfile(item.filename):
        continue
      yield Action(
        removes = [item],
        description = f"delete file: {item.filename}",
        execute = lambda: self.delete_file(item),
      )

  def installed_files(self) -> list[File]:
    return [File(filename) for filename in self.managed_files_store.elements()]

  def is_managed(self, item: File) -> bool:
    return item.filename in self.managed_files_store.elements()

  def write_file(self, item: File, target: FileState):
    if os.path.isfile(item.filename) and not self.is_managed(item):
      backup = self.backup_file(item.filename)
      logger.info(f"original {item.filename} saved as {backup}")
    self.mkdirs(os.path.dirname(item.filename), target.owner)
    with open(item.filename, "wb+") as fh:
      fh.write(target.content)
    self.chown(item.filename, target.owner)
    os.chmod(item.filename, target.mode)
    assert target.mode == (os.stat(item.filename).st_mode & 0o777), "cannot apply file permissions (incompatible file system?)"
    self.managed_files_store.add(item.filename)
    print(f"file {item.filename} written")

  def backup_file(self, filename: str) -> str:
    backup = f"{filename}.backup-{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    shutil.copy2(filename, backup)
    self.backups_store.add(backup)
    return backup

  def delete_file(self, item: File):
    os.unlink(item.filename)
    self.managed_files_store.remove(item.filename)
    print(f"file {item.filename} deleted")

  @staticmethod
  def write_preview(target: FileState) -> str:
    tmpfile = f"/tmp/zephyrus.{target.sha256()[:8]}"
    with open(tmpfile, "wb") as fh:
      fh.write(target.content)
    return tmpfile

  def mkdirs(self, dirname: str, owner: str):
    if not dirname or os.path.exists(dirname):
      return
    self.mkdirs(os.path.dirname(dirname), owner)
    os.mkdir(dirname)
    self.chown(dirname, owner)

  @staticmethod
  def chown(path: str, owner: str):
    if os.getuid() != 0:
      return
    pwnam = getpwnam(owner)
    os.chown(path, uid = pwnam.pw_uid, gid = pwnam.pw_gid)

  def finalize(self, model: ConfigModel, phase: Phase):
    if phase == "execution":
      self.managed_files_store.replace_all([item.filename for item in model.items(File)])
