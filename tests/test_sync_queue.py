import pytest

from conftest import ts
from tasksync.db import SQLiteSyncQueue, SQLiteTaskRepository


class TestSyncQueue:
    def test_enqueue_defaults(self, queue):
        item = queue.enqueue("A", "create", ts(100))
        assert item["task_id"] == "A"
        assert item["action"] == "create"
        assert item["updated_at"] == ts(100)
        assert item["retry_count"] == 0
        assert item["permanent_fail"] is False
        assert item["error"] is None

    def test_queue_ids_are_unique_for_same_record_and_tick(self, queue):
        ids = {queue.enqueue("A", "update", ts(100))["queue_id"] for _ in range(20)}
        assert len(ids) == 20

    def test_no_deduplication(self, queue):
        for _ in range(3):
            queue.enqueue("A", "update", ts(100))
        assert queue.count() == 3

    def test_unknown_action_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue("A", "upsert", ts(100))

    def test_drain_is_fifo_and_non_destructive(self, queue):
        queue.enqueue("B", "create", ts(300))
        queue.enqueue("A", "create", ts(100))
        queue.enqueue("B", "update", ts(200))

        first = queue.drain_all_ordered()
        assert [(i["task_id"], i["action"]) for i in first] == [("B", "create"), ("A", "create"), ("B", "update")]
        assert queue.count() == 3

        queue.enqueue("C", "create", ts(50))
        second = queue.drain_all_ordered()
        assert [i["queue_id"] for i in second[:3]] == [i["queue_id"] for i in first]
        assert second[3]["task_id"] == "C"

    def test_remove(self, queue):
        item = queue.enqueue("A", "create", ts(100))
        assert queue.remove(item["queue_id"]) is True
        assert queue.remove(item["queue_id"]) is False
        assert queue.count() == 0

    def test_mark_retry_and_permanent_failure(self, queue):
        a = queue.enqueue("A", "create", ts(100))
        b = queue.enqueue("B", "create", ts(100))

        queue.mark_retry(a["queue_id"], 1, "timeout")
        queue.mark_permanent_failure(b["queue_id"], 3, "rejected")

        items = {i["task_id"]: i for i in queue.drain_all_ordered()}
        assert (items["A"]["retry_count"], items["A"]["permanent_fail"], items["A"]["error"]) == (1, False, "timeout")
        assert (items["B"]["retry_count"], items["B"]["permanent_fail"], items["B"]["error"]) == (3, True, "rejected")
        assert [i["task_id"] for i in queue.failed_items()] == ["B"]

    def test_entries_for_task(self, queue):
        a1 = queue.enqueue("A", "create", ts(100))
        queue.enqueue("B", "create", ts(100))
        a2 = queue.enqueue("A", "update", ts(200))
        queue.mark_permanent_failure(a1["queue_id"], 3, "rejected")

        entries = queue.entries_for_task("A")
        assert [i["queue_id"] for i in entries] == [a1["queue_id"], a2["queue_id"]]
        assert entries[0]["permanent_fail"] is True
        assert entries[0]["seq"] < entries[1]["seq"]
        assert queue.entries_for_task("missing") == []

    def test_requeue_failed_selected_ids(self, queue):
        a = queue.enqueue("A", "create", ts(100))
        b = queue.enqueue("B", "create", ts(100))
        queue.mark_permanent_failure(a["queue_id"], 3, "x")
        queue.mark_permanent_failure(b["queue_id"], 3, "y")

        assert queue.requeue_failed([b["queue_id"]]) == 1
        assert [i["task_id"] for i in queue.failed_items()] == ["A"]
        assert queue.requeue_failed([]) == 0
        assert queue.requeue_failed() == 1
        assert queue.failed_items() == []
        assert all(i["retry_count"] == 0 for i in queue.drain_all_ordered())


class TestTaskRepository:
    def _task(self, task_id, **overrides):
        task = {
            "id": task_id,
            "title": f"Task {task_id}",
            "description": None,
            "completed": False,
            "is_deleted": False,
            "created_at": ts(100),
            "updated_at": ts(100),
            "sync_status": "pending",
            "server_id": None,
            "last_synced_at": None,
        }
        task.update(overrides)
        return task

    def test_insert_get_update(self, repo):
        repo.insert(self._task("A"))
        with pytest.raises(ValueError):
            repo.insert(self._task("A"))

        updated = repo.update("A", {"title": "Renamed", "sync_status": "synced", "last_synced_at": ts(500)})
        assert updated["title"] == "Renamed"
        assert updated["last_synced_at"] == ts(500)
        assert repo.get("A")["sync_status"] == "synced"
        assert repo.update("missing", {"title": "x"}) is None
        assert repo.get("missing") is None

    def test_list_hides_deleted_and_filters(self, repo):
        repo.insert(self._task("A", created_at=ts(1)))
        repo.insert(self._task("B", created_at=ts(2), completed=True))
        repo.insert(self._task("C", created_at=ts(3), is_deleted=True))

        assert [t["id"] for t in repo.list()] == ["A", "B"]
        assert [t["id"] for t in repo.list(completed=True)] == ["B"]
        assert [t["id"] for t in repo.list(include_deleted=True)] == ["A", "B", "C"]

    def test_list_by_sync_status_includes_deleted(self, repo):
        repo.insert(self._task("A", created_at=ts(1), sync_status="synced"))
        repo.insert(self._task("B", created_at=ts(2), sync_status="error"))
        repo.insert(self._task("C", created_at=ts(3), is_deleted=True))

        assert [t["id"] for t in repo.list_by_sync_status({"pending", "error"})] == ["B", "C"]
        assert repo.list_by_sync_status([]) == []

    def test_latest_sync_time_spans_every_status(self, repo):
        assert repo.latest_sync_time() is None
        repo.insert(self._task("A", sync_status="synced", last_synced_at=ts(500)))
        repo.insert(self._task("B", sync_status="pending", last_synced_at=ts(900)))
        repo.insert(self._task("C"))

        assert repo.latest_sync_time() == ts(900)


def test_sqlite_state_survives_reopen(tmp_path):
    path = str(tmp_path / "nested" / "tasks.db")
    queue = SQLiteSyncQueue(path)
    first = queue.enqueue("A", "create", ts(100))
    queue.enqueue("A", "update", ts(200))
    SQLiteTaskRepository(path)

    reopened = SQLiteSyncQueue(path)
    items = reopened.drain_all_ordered()
    assert [i["queue_id"] for i in items][0] == first["queue_id"]
    assert [i["action"] for i in items] == ["create", "update"]
