"""Storage for definitions and instances.

Two interchangeable backends:
- in-memory dicts (process lifetime only)
- JSON files under the configured state path

Both are keyed by entity id and guarded by a lock, so they can be shared by
request-handling threads. The JSON backend also takes an advisory `flock()` on
a sidecar `.lock` file, so a CLI and a server pointed at the same state path
see each other's writes in order.

A state file that cannot be parsed is never rewritten. Reads log a warning and
see no records; writes raise `UnreadableStateFile` and leave the file as it is.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager, nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from workflow_engine.core.config import EngineSettings
from workflow_engine.core.models import WorkflowDefinition, WorkflowInstance

logger = logging.getLogger(__name__)


class UnreadableStateFile(Exception):
    """A JSON state file exists but does not hold a list of valid records."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"State file {path} is unreadable: {reason}")
        self.path = path
        self.reason = reason


class DefinitionStore(Protocol):
    def get(self, definition_id: str) -> WorkflowDefinition | None: ...

    def contains(self, definition_id: str) -> bool: ...

    def add(self, definition: WorkflowDefinition) -> bool:
        """Insert if absent. Returns False when the id is already taken."""
        ...

    def list(self) -> list[WorkflowDefinition]: ...


class InstanceStore(Protocol):
    def get(self, instance_id: str) -> WorkflowInstance | None: ...

    def contains(self, instance_id: str) -> bool: ...

    def put(self, instance: WorkflowInstance) -> None: ...

    def list(self, *, definition_id: str | None = None) -> list[WorkflowInstance]: ...

    def exclusive(self, instance_id: str) -> AbstractContextManager[None]:
        """Hold off writers from other processes for a read-modify-write."""
        ...


class InMemoryDefinitionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, WorkflowDefinition] = {}

    def get(self, definition_id: str) -> WorkflowDefinition | None:
        with self._lock:
            return self._items.get(definition_id)

    def contains(self, definition_id: str) -> bool:
        with self._lock:
            return definition_id in self._items

    def add(self, definition: WorkflowDefinition) -> bool:
        with self._lock:
            if definition.id in self._items:
                return False
            self._items[definition.id] = definition
            return True

    def list(self) -> list[WorkflowDefinition]:
        with self._lock:
            return list(self._items.values())


class InMemoryInstanceStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, WorkflowInstance] = {}

    def get(self, instance_id: str) -> WorkflowInstance | None:
        with self._lock:
            return self._items.get(instance_id)

    def contains(self, instance_id: str) -> bool:
        with self._lock:
            return instance_id in self._items

    def put(self, instance: WorkflowInstance) -> None:
        with self._lock:
            self._items[instance.id] = instance

    def list(self, *, definition_id: str | None = None) -> list[WorkflowInstance]:
        with self._lock:
            items = list(self._items.values())
        if definition_id is None:
            return items
        return [i for i in items if i.workflow_definition_id == definition_id]

    def exclusive(self, instance_id: str) -> AbstractContextManager[None]:
        # Nothing outside this process can see the dict.
        return nullcontext()


def _load_json_list(path: Path) -> list[dict[str, object]]:
    if not path.exists():
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise UnreadableStateFile(path, f"invalid JSON ({e.msg} at line {e.lineno})") from e
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
        raise UnreadableStateFile(path, "expected a JSON list of objects")
    return raw


def _save_json_list(path: Path, items: Sequence[BaseModel]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [m.model_dump(mode="json", by_alias=True) for m in items]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


class StateFileLock:
    """Exclusive advisory lock on a state file, shared by threads and processes.

    Threads of one process queue on an `RLock`; processes queue on `flock()`
    of `<state file>.lock`. Re-entering from the holding thread only bumps a
    counter, so a store method can run inside an outer `hold()`.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._local = threading.RLock()
        self._fd: int | None = None
        self._depth = 0

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._local:
            if self._depth == 0:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(str(self.path), os.O_CREAT | os.O_RDWR)
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX)
                except OSError:
                    os.close(fd)
                    raise
                self._fd = fd
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._fd is not None:
                    fcntl.flock(self._fd, fcntl.LOCK_UN)
                    os.close(self._fd)
                    self._fd = None


def _lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@dataclass
class JsonDefinitionStore:
    """JSON-file backed store for accepted definitions."""

    path: Path

    def __post_init__(self) -> None:
        self._lock = StateFileLock(_lock_path_for(self.path))

    def _load_unlocked(self) -> list[WorkflowDefinition]:
        records = _load_json_list(self.path)
        try:
            return [WorkflowDefinition.model_validate(d) for d in records]
        except ValidationError as e:
            raise UnreadableStateFile(self.path, "a definition record is invalid") from e

    def _read(self) -> list[WorkflowDefinition]:
        try:
            return self._load_unlocked()
        except UnreadableStateFile as e:
            logger.warning(
                "Definition state file is unreadable; no definitions visible",
                extra={"path": str(e.path), "reason": e.reason},
            )
            return []

    def get(self, definition_id: str) -> WorkflowDefinition | None:
        with self._lock.hold():
            for definition in self._read():
                if definition.id == definition_id:
                    return definition
            return None

    def contains(self, definition_id: str) -> bool:
        return self.get(definition_id) is not None

    def add(self, definition: WorkflowDefinition) -> bool:
        with self._lock.hold():
            definitions = self._load_unlocked()
            if any(d.id == definition.id for d in definitions):
                return False
            definitions.append(definition)
            _save_json_list(self.path, definitions)
            return True

    def list(self) -> list[WorkflowDefinition]:
        with self._lock.hold():
            return self._read()


@dataclass
class JsonInstanceStore:
    """JSON-file backed store for workflow instances.

    History entries are written in insertion order with their exact timestamps.
    """

    path: Path

    def __post_init__(self) -> None:
        self._lock = StateFileLock(_lock_path_for(self.path))

    def _load_unlocked(self) -> list[WorkflowInstance]:
        records = _load_json_list(self.path)
        try:
            return [WorkflowInstance.model_validate(i) for i in records]
        except ValidationError as e:
            raise UnreadableStateFile(self.path, "an instance record is invalid") from e

    def _read(self) -> list[WorkflowInstance]:
        try:
            return self._load_unlocked()
        except UnreadableStateFile as e:
            logger.warning(
                "Instance state file is unreadable; no instances visible",
                extra={"path": str(e.path), "reason": e.reason},
            )
            return []

    def get(self, instance_id: str) -> WorkflowInstance | None:
        with self._lock.hold():
            for instance in self._read():
                if instance.id == instance_id:
                    return instance
            return None

    def contains(self, instance_id: str) -> bool:
        return self.get(instance_id) is not None

    def put(self, instance: WorkflowInstance) -> None:
        with self._lock.hold():
            instances = self._load_unlocked()
            for idx, existing in enumerate(instances):
                if existing.id == instance.id:
                    instances[idx] = instance
                    break
            else:
                instances.append(instance)
            _save_json_list(self.path, instances)

    def list(self, *, definition_id: str | None = None) -> list[WorkflowInstance]:
        with self._lock.hold():
            instances = self._read()
        if definition_id is None:
            return instances
        return [i for i in instances if i.workflow_definition_id == definition_id]

    def exclusive(self, instance_id: str) -> AbstractContextManager[None]:
        # One file holds every instance, so the whole file is the unit of locking.
        return self._lock.hold()


class KeyedLock:
    """One mutex per key, created on demand and dropped once nobody holds or waits on it.

    Holders of different keys never block each other.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            lock = entry[0] if entry is not None else threading.Lock()
            users = entry[1] if entry is not None else 0
            self._entries[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._entries[key]
                if users <= 1:
                    del self._entries[key]
                else:
                    self._entries[key] = (lock, users - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def build_stores(settings: EngineSettings) -> tuple[DefinitionStore, InstanceStore]:
    if settings.storage_backend == "memory":
        return InMemoryDefinitionStore(), InMemoryInstanceStore()
    return (
        JsonDefinitionStore(settings.definitions_state_file),
        JsonInstanceStore(settings.instances_state_file),
    )
