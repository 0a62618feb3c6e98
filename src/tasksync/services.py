from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from .models import SYNC_ERROR, SYNC_PENDING, TaskEntity
from .repositories import SyncQueue, TaskRepository
from .schemas import TaskCreate, TaskUpdate
from .utils import utc_now

logger = logging.getLogger(__name__)


class TaskService:
    """
    Local CRUD layer. Every mutation marks the task pending and appends a queue
    entry stamped with the same timestamp as the task's new updated_at.
    """

    def __init__(
        self,
        repo: TaskRepository,
        queue: SyncQueue,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repo = repo
        self.queue = queue
        self._clock = clock

    def create_task(self, data: TaskCreate) -> TaskEntity:
        now = self._clock()
        entity: TaskEntity = {
            "id": str(uuid.uuid4()),
            "title": data.title,
            "description": data.description,
            "completed": False,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
            "sync_status": SYNC_PENDING,
            "server_id": None,
            "last_synced_at": None,
        }
        created = self.repo.insert(entity)
        self.queue.enqueue(created["id"], "create", now)
        logger.debug("Task created: %s", created["id"])
        return created

    def update_task(self, task_id: str, data: TaskUpdate) -> Optional[TaskEntity]:
        existing = self.repo.get(task_id)
        if existing is None or existing["is_deleted"]:
            return None

        now = self._clock()
        fields = data.model_dump(exclude_unset=True)
        if fields.get("title") is None:
            fields.pop("title", None)
        if fields.get("completed") is None:
            fields.pop("completed", None)
        fields.update(updated_at=now, sync_status=SYNC_PENDING)

        updated = self.repo.update(task_id, fields)
        self.queue.enqueue(task_id, "update", now)
        logger.debug("Task updated: %s", task_id)
        return updated

    def delete_task(self, task_id: str) -> bool:
        existing = self.repo.get(task_id)
        if existing is None or existing["is_deleted"]:
            return False

        now = self._clock()
        self.repo.update(task_id, {"is_deleted": True, "updated_at": now, "sync_status": SYNC_PENDING})
        self.queue.enqueue(task_id, "delete", now)
        logger.debug("Task deleted: %s", task_id)
        return True

    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        task = self.repo.get(task_id)
        if task is None or task["is_deleted"]:
            return None
        return task

    def list_tasks(self, completed: Optional[bool] = None) -> List[TaskEntity]:
        return self.repo.list(completed=completed)

    def get_tasks_needing_sync(self) -> List[TaskEntity]:
        return self.repo.list_by_sync_status({SYNC_PENDING, SYNC_ERROR})
