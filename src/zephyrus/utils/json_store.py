from __future__ import annotations

import json
import os
from json import JSONDecodeError
from pathlib import Path
from typing import Any, Sequence


def state_dir() -> str:
  return os.environ.get("ZEPHYRUS_STATE_DIR", "/var/cache/zephyrus")


def state_file(name: str) -> str:
  """Location of the persistent state of a manager (e.g. the list of files it installed)."""
  return os.path.join(state_dir(), f"{name}.json")


class JsonStore:
  store_file: str
  store: dict[str, Any]

  def __init__(self, store_file: str):
    self.store_file = store_file
    try:
      with open(self.store_file, encoding = 'utf-8') as fh:
        self.store = json.load(fh)
    except (FileNotFoundError, JSONDecodeError):
      self.store = {}

  def mapping[K, V](self, name) -> JsonMapping[K, V]:
    return JsonMapping[K, V](self, name)

  def collection[T](self, name) -> JsonCollection[T]:
    return JsonCollection[T](self, name)

  def keys(self) -> Sequence[str]:
    return list(self.store.keys())

  def get(self, key, default = None):
    return self.store.get(key, default)

  def put(self, key, value):
    self.store[key] = value
    self.save()

  def remove(self, key):
    self.store.pop(key, None)
    self.save()

  def save(self):
    """Replaces the store file atomically."""
    Path(os.path.dirname(self.store_file)).mkdir(parents = True, exist_ok = True)
    temp_file = f"{self.store_file}.tmp"
    with open(temp_file, "w", encoding = "utf-8") as fh:
      json.dump(self.store, fh, indent = 2)
    os.replace(temp_file, self.store_file)


class JsonMapping[K, V]:
  store: JsonStore
  name: str

  def __init__(self, store: JsonStore, name: str):
    self.name = name
    self.store = store

  def get[F](self, key: K, default: F) -> V | F:
    mapping: dict[K, V] = self.store.get(self.name, {})
    return mapping.get(key, default)

  def put(self, key: K, value: V):
    mapping: dict[K, V] = self.store.get(self.name, {})
    mapping[key] = value
    self.store.put(self.name, mapping)

  def remove(self, key: K):
    mapping: dict[K, V] = self.store.get(self.name, {})
    mapping.pop(key, None)
    self.store.put(self.name, mapping)

  def keys(self) -> list[K]:
    mapping: dict[K, V] = self.store.get(self.name, {})
    return list(mapping.keys())


class JsonCollection[T]:
  store: JsonStore
  name: str

  def __init__(self, store: JsonStore, name: str):
    self.name = name
    self.store = store

  def elements(self) -> list[T]:
    return self.store.get(self.name, [])

  def add(self, value: T):
    self.add_all([value])

  def add_all(self, values: Sequence[T]):
    collection = self.store.get(self.name, [])
    self.store.put(self.name, list(dict.fromkeys([*collection, *values])))

  def replace_all(self, values: Sequence[T]):
    self.store.put(self.name, list(dict.fromkeys(values)))

  def remove(self, value: T):
    self.remove_all([value])

  def remove_all(self, values: Sequence[T]):
    collection = self.store.get(self.name, [])
    self.store.put(self.name, [element for element in collection if element not in values])
