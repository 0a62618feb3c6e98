import os
from datetime import datetime, timezone

import pytest

# Ensure we default to memory backend for tests to avoid filesystem dependencies
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from tasksync.db import SQLiteSyncQueue, SQLiteTaskRepository  # noqa: E402
from tasksync.remote import BatchItemResult, Delivered  # noqa: E402
from tasksync.repositories import InMemorySyncQueue, InMemoryTaskRepository  # noqa: E402
from tasksync.settings import SyncConfig  # noqa: E402
from tasksync.sync import SyncEngine  # noqa: E402

FIXED_NOW = datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def ts(seconds):
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def all_success(operations):
    return Delivered([BatchItemResult(record_id=op.record_id, status="success") for op in operations])


class ScriptedRemote:
    """Stand-in for RemoteAuthorityClient that records every batch it receives."""

    def __init__(self):
        self.calls = []
        self.responder = all_success
        self.online = True

    def send_batch(self, operations):
        ops = list(operations)
        self.calls.append(ops)
        return self.responder(ops)

    def ping(self):
        return self.online


@pytest.fixture
def remote():
    return ScriptedRemote()


@pytest.fixture(params=["memory", "sqlite"])
def stores(request, tmp_path):
    if request.param == "sqlite":
        path = str(tmp_path / "tasks.db")
        return SQLiteTaskRepository(path), SQLiteSyncQueue(path)
    return InMemoryTaskRepository(), InMemorySyncQueue()


@pytest.fixture
def repo(stores):
    return stores[0]


@pytest.fixture
def queue(stores):
    return stores[1]


@pytest.fixture
def config():
    return SyncConfig(api_base_url="http://remote.test/api", batch_size=10, max_retry=3)


@pytest.fixture
def engine(repo, queue, remote, config):
    return SyncEngine(repo, queue, remote, config, clock=lambda: FIXED_NOW)


@pytest.fixture
def add_task(repo, queue):
    """Insert a pending task and queue one mutation for it."""

    def _add(task_id, action="create", updated_at=None, title=None):
        updated_at = updated_at or ts(1_000)
        if repo.get(task_id) is None:
            repo.insert(
                {
                    "id": task_id,
                    "title": title or f"Task {task_id}",
                    "description": None,
                    "completed": False,
                    "is_deleted": False,
                    "created_at": updated_at,
                    "updated_at": updated_at,
                    "sync_status": "pending",
                    "server_id": None,
                    "last_synced_at": None,
                }
            )
        return queue.enqueue(task_id, action, updated_at)

    return _add
