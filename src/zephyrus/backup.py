from __future__ import annotations

import json
import os
import platform
import shutil
import socket
from datetime import datetime
from fnmatch import fnmatch
from hashlib import sha256
from pathlib import Path
from typing import Any, Iterable

from zephyrus.hardware import target_user
from zephyrus.utils.logging import logger
from zephyrus.utils.shell import shell

BACKUP_ROOT = "/var/lib/zephyrus/backups"
BACKUP_VERSION = "1.1"
KNOWN_VERSIONS = ("1.0", BACKUP_VERSION)

# system files that are not written by managers, but changed as a side effect of the setup
EXTRA_TRACKED_PATHS = ["/etc/default/grub", "/etc/pacman.conf", "/etc/X11/xorg.conf"]

PROTECTED_PATTERNS = [
  "*/home/*", "*/root/*", "*/.ssh/*", "*/.gnupg/*",
  "*/passwd", "*/shadow", "*/group", "*/gshadow",
]


class BackupError(AssertionError):
  pass


def backup_root() -> str:
  return os.environ.get("ZEPHYRUS_BACKUP_DIR", BACKUP_ROOT)


def is_protected(path: str) -> bool:
  return any(fnmatch(path, pattern) for pattern in PROTECTED_PATTERNS)


def tracked_paths(managed_files: Iterable[str]) -> list[str]:
  return list(dict.fromkeys([*managed_files, *EXTRA_TRACKED_PATHS]))


def file_sha256(path: Path) -> str:
  digest = sha256()
  with open(path, "rb") as fh:
    for chunk in iter(lambda: fh.read(65536), b""):
      digest.update(chunk)
  return digest.hexdigest()


def timestamp() -> str:
  return datetime.now().strftime("%Y%m%d_%H%M%S")


class Backup:
  """A backup directory: `metadata.json`, `config_version`, `summary.txt` and
  the copied files below `files/`, mirroring their absolute paths."""
  path: Path
  metadata: dict[str, Any]

  def __init__(self, path: Path, metadata: dict[str, Any]):
    self.path = path
    self.metadata = metadata

  @property
  def name(self) -> str:
    return self.path.name

  @property
  def version(self) -> str:
    return str(self.metadata.get("version", "1.0"))

  @property
  def description(self) -> str:
    return str(self.metadata.get("description", ""))

  @property
  def created(self) -> str:
    return str(self.metadata.get("timestamp", ""))

  @property
  def files(self) -> list[dict[str, Any]]:
    """File entries; plain source paths of version 1.0 backups are expanded to entries without checksum."""
    return [
      {"source": entry, "backup": str(Path("files") / entry.lstrip("/"))} if isinstance(entry, str) else entry
      for entry in self.metadata.get("files", [])
    ]

  def backup_path(self, entry: dict[str, Any]) -> Path:
    return self.path / entry["backup"]

  @staticmethod
  def load(path: Path) -> Backup:
    metadata_file = path / "metadata.json"
    if not metadata_file.is_file():
      raise BackupError(f"{path.name}: metadata.json is missing")
    try:
      metadata = json.loads(metadata_file.read_text(encoding = "utf-8"))
    except json.JSONDecodeError as e:
      raise BackupError(f"{path.name}: metadata.json is corrupt ({e})")
    return Backup(path, metadata)

  def save(self):
    (self.path / "metadata.json").write_text(json.dumps(self.metadata, indent = 2), encoding = "utf-8")
    (self.path / "config_version").write_text(self.version + "\n", encoding = "utf-8")
    (self.path / "summary.txt").write_text(self.summary(), encoding = "utf-8")

  def summary(self) -> str:
    lines = [
      f"Backup: {self.name}",
      f"Description: {self.description}",
      f"Created: {self.created}",
      f"Host: {self.metadata.get("hostname", "")}",
      f"Kernel: {self.metadata.get("kernel", "")}",
      f"User: {self.metadata.get("user", "")}",
      f"Version: {self.version}",
      f"Files ({len(self.files)}):",
      *(f"  {entry["source"]} ({entry.get("size", "?")} bytes)" for entry in self.files),
    ]
    return "\n".join(lines) + "\n"


class BackupStore:
  """Backups of all files the setup touches, so a failed or unwanted run can be rolled back."""
  base_dir: Path

  def __init__(self, base_dir: str | Path | None = None):
    self.base_dir = Path(base_dir or backup_root())

  def path_of(self, name: str) -> Path:
    """The directory of a backup. Names never leave the backup root."""
    if not name or Path(name).name != name or name in (".", ".."):
      raise BackupError(f"invalid backup name: {name!r}")
    path = self.base_dir / name
    if not path.resolve().is_relative_to(self.base_dir.resolve()):
      raise BackupError(f"invalid backup name: {name!r}")
    return path

  def create(self, description: str, paths: Iterable[str]) -> Backup:
    name = f"{"_".join(description.replace("/", " ").split()) or "backup"}_{timestamp()}"
    path = self.path_of(name)
    path.mkdir(parents = True, exist_ok = False)

    files: list[dict[str, Any]] = []
    for source in dict.fromkeys(paths):
      if is_protected(source):
        logger.echo("warn", f"not backing up protected path {source}")
        continue
      if not os.path.isfile(source):
        logger.debug(f"not backing up {source}: file does not exist")
        continue
      relative = Path("files") / source.lstrip("/")
      (path / relative).parent.mkdir(parents = True, exist_ok = True)
      shutil.copy2(source, path / relative)
      files.append({
        "source": source,
        "backup": str(relative),
        "sha256": file_sha256(path / relative),
        "size": (path / relative).stat().st_size,
      })

    backup = Backup(path, {
      "version": BACKUP_VERSION,
      "timestamp": datetime.now().isoformat(timespec = "seconds"),
      "description": description,
      "hostname": socket.gethostname(),
      "kernel": platform.release(),
      "user": target_user(),
      "files": files,
    })
    backup.save()
    logger.echo("success", f"backup {name} created ({len(files)} files)")
    return backup

  def backups(self) -> list[Backup]:
    if not self.base_dir.is_dir():
      return []
    result: list[Backup] = []
    for path in sorted(self.base_dir.iterdir()):
      if not path.is_dir():
        continue
      try:
        result.append(Backup.load(path))
      except BackupError as e:
        logger.echo("warn", str(e))
    return sorted(result, key = lambda backup: backup.created)

  def get(self, name: str) -> Backup:
    path = self.path_of(name)
    if not path.is_dir():
      raise BackupError(f"backup not found: {name}")
    return Backup.load(path)

  def validate(self, name: str) -> list[str]:
    """Returns the problems found; an empty list means the backup can be restored."""
    path = self.path_of(name)
    problems: list[str] = []
    for required in ["metadata.json", "config_version"]:
      if not (path / required).is_file():
        problems.append(f"{required} is missing")
    if problems:
      return problems

    backup = Backup.load(path)
    if backup.version not in KNOWN_VERSIONS:
      problems.append(f"unknown backup version {backup.version}")
    for entry in backup.files:
      copy = backup.backup_path(entry)
      if not copy.is_file():
        problems.append(f"{entry["source"]}: backup copy is missing")
      elif "sha256" in entry and file_sha256(copy) != entry["sha256"]:
        problems.append(f"{entry["source"]}: checksum mismatch")
    return problems

  def migrate(self, backup: Backup) -> Backup:
    """Upgrades older backups in place. Version 1.0 stored plain source paths without checksums."""
    if backup.version == BACKUP_VERSION:
      return backup
    if backup.version != "1.0":
      raise BackupError(f"{backup.name}: cannot migrate backup version {backup.version}")
    files: list[dict[str, Any]] = []
    for entry in backup.files:
      copy = backup.backup_path(entry)
      if not copy.is_file():
        raise BackupError(f"{backup.name}: backup copy of {entry["source"]} is missing")
      files.append({**entry, "sha256": file_sha256(copy), "size": copy.stat().st_size})
    backup.metadata["files"] = files
    backup.metadata["version"] = BACKUP_VERSION
    backup.save()
    logger.echo("info", f"migrated backup {backup.name} from version 1.0 to {BACKUP_VERSION}")
    return backup

  def restore(self, name: str, reload_services: bool = True) -> list[str]:
    backup = self.migrate(self.get(name))
    problems = self.validate(name)
    if problems:
      raise BackupError(f"backup {name} is invalid: {"; ".join(problems)}")

    restored: list[str] = []
    suffix = f".pre-restore-{timestamp()}"
    for entry in backup.files:
      target = entry["source"]
      if is_protected(target):
        logger.echo("warn", f"not restoring protected path {target}")
        continue
      if os.path.isfile(target):
        shutil.copy2(target, target + suffix)
      os.makedirs(os.path.dirname(target), exist_ok = True)
      shutil.copyfile(backup.backup_path(entry), target)
      os.chmod(target, 0o644)
      restored.append(target)
      logger.echo("info", f"restored {target}")

    if reload_services:
      shell("systemctl daemon-reload")
      shell("udevadm control --reload-rules && udevadm trigger", check = False)
    logger.echo("success", f"backup {name} restored ({len(restored)} files)")
    return restored

  def delete(self, name: str):
    path = self.path_of(name)
    if not path.is_dir():
      raise BackupError(f"backup not found: {name}")
    shutil.rmtree(path)
    logger.echo("info", f"backup {name} deleted")
