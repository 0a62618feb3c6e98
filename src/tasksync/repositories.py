from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from itertools import count
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import QUEUE_ACTIONS, QueueItemEntity, TaskEntity
from .settings import Settings


# PUBLIC_INTERFACE
class TaskRepository(ABC):
    """Abstract contract for durable task storage. No sync bookkeeping happens here."""

    @abstractmethod
    def insert(self, entity: TaskEntity) -> TaskEntity:
        """Store a new TaskEntity and return a copy of it."""

    @abstractmethod
    def get(self, task_id: str) -> Optional[TaskEntity]:
        """Return a TaskEntity by id (soft-deleted included), or None if not found."""

    @abstractmethod
    def update(self, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        """Overwrite the given fields of a task verbatim. Return the updated entity or None."""

    @abstractmethod
    def list(self, completed: Optional[bool] = None, include_deleted: bool = False) -> List[TaskEntity]:
        """Return tasks ordered by created_at, optionally filtered by completion."""

    @abstractmethod
    def list_by_sync_status(self, statuses: Iterable[str]) -> List[TaskEntity]:
        """Return every task (soft-deleted included) whose sync_status is in statuses."""

    @abstractmethod
    def latest_sync_time(self) -> Optional[datetime]:
        """Return the most recent last_synced_at across all tasks, or None if nothing synced yet."""


# PUBLIC_INTERFACE
class SyncQueue(ABC):
    """
    Append-only, ordered ledger of pending mutations.

    Entries leave the queue only through remove(); failures are bookkept in place.
    """

    @abstractmethod
    def enqueue(self, task_id: str, action: str, timestamp: datetime) -> QueueItemEntity:
        """Append a new entry with retry_count=0 and permanent_fail=False."""

    @abstractmethod
    def drain_all_ordered(self) -> List[QueueItemEntity]:
        """Return a snapshot of the whole queue in insertion order. Non-destructive."""

    @abstractmethod
    def remove(self, queue_id: str) -> bool:
        """Delete an entry. Return True if it existed."""

    @abstractmethod
    def mark_retry(self, queue_id: str, retry_count: int, message: str) -> None:
        """Record a failed attempt that may still be retried."""

    @abstractmethod
    def mark_permanent_failure(self, queue_id: str, retry_count: int, message: str) -> None:
        """Record the final failed attempt; the entry is no longer retried automatically."""

    @abstractmethod
    def entries_for_task(self, task_id: str) -> List[QueueItemEntity]:
        """Entries targeting one task, permanently failed ones included, in insertion order."""

    @abstractmethod
    def count(self) -> int:
        """Number of entries, permanently failed ones included."""

    @abstractmethod
    def failed_items(self) -> List[QueueItemEntity]:
        """Permanently failed entries in insertion order."""

    @abstractmethod
    def requeue_failed(self, queue_ids: Optional[Iterable[str]] = None) -> int:
        """
        Reset retry_count and permanent_fail of permanently failed entries
        (all of them, or only queue_ids). Return how many were reset.
        """


def _check_action(action: str) -> None:
    if action not in QUEUE_ACTIONS:
        raise ValueError(f"Unsupported queue action: {action}")


def new_queue_id() -> str:
    return str(uuid.uuid4())


class InMemoryTaskRepository(TaskRepository):
    """
    Thread-safe in-memory task store suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, TaskEntity] = {}

    def insert(self, entity: TaskEntity) -> TaskEntity:
        with self._lock:
            if entity["id"] in self._items:
                raise ValueError(f"Task {entity['id']} already exists")
            self._items[entity["id"]] = entity.copy()  # type: ignore[assignment]
            return entity.copy()  # type: ignore[return-value]

    def get(self, task_id: str) -> Optional[TaskEntity]:
        with self._lock:
            item = self._items.get(task_id)
            return None if item is None else item.copy()  # type: ignore[return-value]

    def update(self, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None:
                return None
            updated = existing.copy()
            for key, value in fields.items():
                if key == "id":
                    continue
                updated[key] = value  # type: ignore[literal-required]
            self._items[task_id] = updated  # type: ignore[assignment]
            return updated.copy()  # type: ignore[return-value]

    def list(self, completed: Optional[bool] = None, include_deleted: bool = False) -> List[TaskEntity]:
        with self._lock:
            items = [t for t in self._items.values() if include_deleted or not t["is_deleted"]]
            if completed is not None:
                items = [t for t in items if t["completed"] == completed]
            items.sort(key=lambda t: t["created_at"])
            return [t.copy() for t in items]  # type: ignore[misc]

    def list_by_sync_status(self, statuses: Iterable[str]) -> List[TaskEntity]:
        wanted = set(statuses)
        with self._lock:
            items = [t for t in self._items.values() if t["sync_status"] in wanted]
            items.sort(key=lambda t: t["created_at"])
            return [t.copy() for t in items]  # type: ignore[misc]

    def latest_sync_time(self) -> Optional[datetime]:
        with self._lock:
            stamps = [t["last_synced_at"] for t in self._items.values() if t["last_synced_at"] is not None]
            return max(stamps) if stamps else None


class InMemorySyncQueue(SyncQueue):
    """
    Thread-safe in-memory queue. Insertion order is kept by a monotonic sequence,
    so appends racing a drain land after the snapshot and are never lost.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, QueueItemEntity] = {}
        self._seq = count(1)

    def enqueue(self, task_id: str, action: str, timestamp: datetime) -> QueueItemEntity:
        _check_action(action)
        with self._lock:
            item: QueueItemEntity = {
                "seq": next(self._seq),
                "queue_id": new_queue_id(),
                "task_id": task_id,
                "action": action,  # type: ignore[typeddict-item]
                "updated_at": timestamp,
                "retry_count": 0,
                "permanent_fail": False,
                "error": None,
            }
            self._items[item["queue_id"]] = item
            return item.copy()  # type: ignore[return-value]

    def _ordered(self) -> List[QueueItemEntity]:
        return sorted(self._items.values(), key=lambda i: i["seq"])

    def drain_all_ordered(self) -> List[QueueItemEntity]:
        with self._lock:
            return [i.copy() for i in self._ordered()]  # type: ignore[misc]

    def remove(self, queue_id: str) -> bool:
        with self._lock:
            return self._items.pop(queue_id, None) is not None

    def _set(self, queue_id: str, **fields: Any) -> None:
        with self._lock:
            item = self._items.get(queue_id)
            if item is None:
                return
            item.update(fields)  # type: ignore[typeddict-item]

    def mark_retry(self, queue_id: str, retry_count: int, message: str) -> None:
        self._set(queue_id, retry_count=retry_count, error=message)

    def mark_permanent_failure(self, queue_id: str, retry_count: int, message: str) -> None:
        self._set(queue_id, retry_count=retry_count, error=message, permanent_fail=True)

    def entries_for_task(self, task_id: str) -> List[QueueItemEntity]:
        with self._lock:
            return [i.copy() for i in self._ordered() if i["task_id"] == task_id]  # type: ignore[misc]

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def failed_items(self) -> List[QueueItemEntity]:
        with self._lock:
            return [i.copy() for i in self._ordered() if i["permanent_fail"]]  # type: ignore[misc]

    def requeue_failed(self, queue_ids: Optional[Iterable[str]] = None) -> int:
        wanted = set(queue_ids) if queue_ids is not None else None
        reset = 0
        with self._lock:
            for item in self._items.values():
                if not item["permanent_fail"]:
                    continue
                if wanted is not None and item["queue_id"] not in wanted:
                    continue
                item["permanent_fail"] = False
                item["retry_count"] = 0
                reset += 1
        return reset


# PUBLIC_INTERFACE
def build_stores(settings: Settings) -> Tuple[TaskRepository, SyncQueue]:
    """
    Return the task repository and sync queue for the configured backend.
    - memory: InMemoryTaskRepository + InMemorySyncQueue
    - sqlite: SQLiteTaskRepository + SQLiteSyncQueue sharing one database file
    """
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteSyncQueue, SQLiteTaskRepository

        return SQLiteTaskRepository(settings.sqlite_db_path), SQLiteSyncQueue(settings.sqlite_db_path)
    return InMemoryTaskRepository(), InMemorySyncQueue()
