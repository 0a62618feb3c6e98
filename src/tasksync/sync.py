"""
Synchronization engine.

One pass reads the sync queue in insertion order, cuts it into contiguous
batches, and round-trips each batch with the remote authority strictly one
after another. Queue entries are removed only after a definitive outcome
(success or resolved conflict), so delivery is at-least-once and a crashed
pass can simply be run again.
"""
from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import SyncInProgressError
from .models import SERVER_WRITABLE_FIELDS, SYNC_ERROR, SYNC_SYNCED, QueueItemEntity, TaskEntity
from .remote import (
    STATUS_CONFLICT,
    STATUS_SUCCESS,
    BatchItemResult,
    BatchOperation,
    RemoteAuthorityClient,
    RemoteTask,
    TransportFailure,
)
from .repositories import SyncQueue, TaskRepository
from .settings import SyncConfig
from .utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

WINNER_LOCAL = "local"
WINNER_REMOTE = "remote"

_PAYLOAD_FIELDS = ("title", "description", "completed", "is_deleted", "created_at", "updated_at", "server_id")
_NULLABLE_FIELDS = {"description", "server_id"}


@dataclass
class SyncResult:
    success: int = 0
    failed: int = 0
    # Reserved; no code path populates it yet
    skipped: int = 0

    def add(self, other: "SyncResult") -> None:
        self.success += other.success
        self.failed += other.failed
        self.skipped += other.skipped

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


# PUBLIC_INTERFACE
def resolve_conflict(local_updated_at: Optional[datetime], remote_updated_at: Optional[datetime]) -> str:
    """
    Last-write-wins between the local and remote copy of a task.

    The strictly later timestamp wins and ties go to the local copy. A side
    without a timestamp loses; when both lack one the local copy is kept.
    """
    local_ts = ensure_utc(local_updated_at)
    remote_ts = ensure_utc(remote_updated_at)
    if remote_ts is None:
        return WINNER_LOCAL
    if local_ts is None:
        return WINNER_REMOTE
    return WINNER_LOCAL if local_ts >= remote_ts else WINNER_REMOTE


def iter_batches(items: Sequence[QueueItemEntity], size: int) -> Iterator[List[QueueItemEntity]]:
    """Yield contiguous slices of at most size items, preserving order."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _server_fields(remote: Optional[RemoteTask]) -> Dict[str, Any]:
    if remote is None:
        return {}
    provided = remote.model_dump(exclude_unset=True)
    fields = {
        k: v
        for k, v in provided.items()
        if k in SERVER_WRITABLE_FIELDS and (v is not None or k in _NULLABLE_FIELDS)
    }
    if "updated_at" in fields:
        fields["updated_at"] = ensure_utc(fields["updated_at"])
    return fields


class SyncEngine:
    """
    Drives sync passes between the local stores and the remote authority.

    Passes never overlap: a second sync() while one is running raises
    SyncInProgressError. Per-item and per-batch problems are turned into
    counts and queue bookkeeping; only local storage errors propagate.
    """

    def __init__(
        self,
        repo: TaskRepository,
        queue: SyncQueue,
        remote: RemoteAuthorityClient,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repo = repo
        self.queue = queue
        self.remote = remote
        self.config = config or SyncConfig()
        self._clock = clock
        self._pass_lock = Lock()

    # ------------------------------------------------------------------
    # Trigger surface

    def sync(self) -> SyncResult:
        if not self._pass_lock.acquire(blocking=False):
            raise SyncInProgressError()
        try:
            return self._run_pass()
        finally:
            self._pass_lock.release()

    def check_connectivity(self) -> bool:
        return self.remote.ping()

    def pending_count(self) -> int:
        return self.queue.count()

    def last_sync_time(self) -> Optional[datetime]:
        return self.repo.latest_sync_time()

    def failed_items(self) -> List[QueueItemEntity]:
        return self.queue.failed_items()

    def requeue_failed(self, queue_ids: Optional[Sequence[str]] = None) -> int:
        count = self.queue.requeue_failed(queue_ids)
        if count:
            logger.info("Requeued %d permanently failed sync entries", count)
        return count

    # ------------------------------------------------------------------
    # Pass

    def _run_pass(self) -> SyncResult:
        result = SyncResult()
        items = [i for i in self.queue.drain_all_ordered() if not i["permanent_fail"]]
        if not items:
            logger.debug("Sync queue empty, nothing to do")
            return result

        batches = list(iter_batches(items, self.config.batch_size))
        logger.info("Sync pass started: %d queued items in %d batches", len(items), len(batches))

        for index, batch in enumerate(batches, start=1):
            result.add(self._process_batch(index, batch))

        logger.info(
            "Sync pass finished: success=%d failed=%d skipped=%d",
            result.success,
            result.failed,
            result.skipped,
        )
        return result

    def _process_batch(self, index: int, batch: List[QueueItemEntity]) -> SyncResult:
        snapshots = [self.repo.get(item["task_id"]) for item in batch]
        operations = [self._build_operation(item, task) for item, task in zip(batch, snapshots)]
        outcome = self.remote.send_batch(operations)

        result = SyncResult()
        if isinstance(outcome, TransportFailure):
            logger.warning("Batch %d failed in transport (%d items): %s", index, len(batch), outcome.reason)
            for item in batch:
                self._handle_failure(item, f"Batch failed: {outcome.reason}")
                result.failed += 1
            return result

        by_record: Dict[str, Deque[BatchItemResult]] = defaultdict(deque)
        for item_result in outcome.results:
            by_record[item_result.record_id].append(item_result)

        for item, sent in zip(batch, snapshots):
            matches = by_record.get(item["task_id"])
            if not matches:
                self._handle_failure(item, "No result returned for record")
                result.failed += 1
                continue
            sent_updated_at = sent["updated_at"] if sent else None
            if self._apply_outcome(item, matches.popleft(), sent_updated_at):
                result.success += 1
            else:
                result.failed += 1
        return result

    def _build_operation(self, item: QueueItemEntity, task: Optional[TaskEntity]) -> BatchOperation:
        if task is None:
            payload: Dict[str, Any] = {"id": item["task_id"]}
        else:
            payload = {"id": task["id"]}
            payload.update({name: task[name] for name in _PAYLOAD_FIELDS})  # type: ignore[literal-required]
        return BatchOperation(record_id=item["task_id"], action=item["action"], payload=payload)

    # ------------------------------------------------------------------
    # Outcomes

    def _apply_outcome(
        self, item: QueueItemEntity, outcome: BatchItemResult, sent_updated_at: Optional[datetime]
    ) -> bool:
        if outcome.status == STATUS_SUCCESS:
            self._handle_success(item, outcome.data, sent_updated_at)
            return True
        if outcome.status == STATUS_CONFLICT:
            if outcome.server_record is None:
                self._handle_failure(item, "Conflict reported without server record")
                return False
            self._handle_conflict(item, outcome.server_record)
            return True
        self._handle_failure(item, outcome.message or "Unknown sync error")
        return False

    def _outstanding(self, item: QueueItemEntity) -> Tuple[List[str], bool]:
        """
        Split the task's other queue entries into earlier retryable ones, which the
        snapshot just delivered supersedes, and whether anything else is left.
        """
        subsumed: List[str] = []
        remaining = False
        for other in self.queue.entries_for_task(item["task_id"]):
            if other["queue_id"] == item["queue_id"]:
                continue
            if other["seq"] < item["seq"] and not other["permanent_fail"]:
                subsumed.append(other["queue_id"])
            else:
                remaining = True
        return subsumed, remaining

    def _settle(self, item: QueueItemEntity, fields: Dict[str, Any], current: bool) -> None:
        """
        Apply an acknowledged outcome. The task is marked synced only when no
        other entry for it is left; otherwise just the server identity and
        sync stamp are recorded and user fields stay as they are locally.
        """
        task_id = item["task_id"]
        subsumed, remaining = self._outstanding(item)
        if current and not remaining:
            fields = dict(fields, sync_status=SYNC_SYNCED, last_synced_at=self._clock())
        else:
            fields = {k: v for k, v in fields.items() if k == "server_id"}
            fields["last_synced_at"] = self._clock()
        if self.repo.update(task_id, fields) is None:
            logger.warning("Task %s vanished locally before its sync outcome was applied", task_id)

        self.queue.remove(item["queue_id"])
        for queue_id in subsumed:
            self.queue.remove(queue_id)
        if subsumed:
            logger.info("Dropped %d earlier sync entries for task %s superseded by delivery", len(subsumed), task_id)

    def _handle_success(
        self, item: QueueItemEntity, data: Optional[RemoteTask], sent_updated_at: Optional[datetime]
    ) -> None:
        local = self.repo.get(item["task_id"])
        local_ts = ensure_utc(local["updated_at"]) if local else None
        sent_ts = ensure_utc(sent_updated_at)
        edited_since_send = local_ts is not None and sent_ts is not None and local_ts > sent_ts
        self._settle(item, _server_fields(data), current=not edited_since_send)

    def _handle_conflict(self, item: QueueItemEntity, server: RemoteTask) -> None:
        task_id = item["task_id"]
        local = self.repo.get(task_id)
        winner = resolve_conflict(local["updated_at"] if local else None, server.updated_at)
        logger.info("Conflict on task %s resolved in favour of the %s copy", task_id, winner)

        if local is None:
            self.repo.insert(self._entity_from_server(task_id, server))
            self.queue.remove(item["queue_id"])
            return
        if winner == WINNER_REMOTE:
            self._settle(item, _server_fields(server), current=True)
            return
        fields: Dict[str, Any] = {}
        if server.server_id is not None:
            fields["server_id"] = server.server_id
        self._settle(item, fields, current=True)

    def _entity_from_server(self, task_id: str, server: RemoteTask) -> TaskEntity:
        now = self._clock()
        updated_at = ensure_utc(server.updated_at) or now
        return {
            "id": task_id,
            "title": server.title or "",
            "description": server.description,
            "completed": bool(server.completed),
            "is_deleted": bool(server.is_deleted),
            "created_at": updated_at,
            "updated_at": updated_at,
            "sync_status": SYNC_SYNCED,
            "server_id": server.server_id,
            "last_synced_at": now,
        }

    def _handle_failure(self, item: QueueItemEntity, message: str) -> None:
        retry = item["retry_count"] + 1
        if retry >= self.config.max_retry:
            self.queue.mark_permanent_failure(item["queue_id"], retry, message)
            logger.error(
                "Sync entry %s for task %s failed permanently after %d attempts: %s",
                item["queue_id"],
                item["task_id"],
                retry,
                message,
            )
        else:
            self.queue.mark_retry(item["queue_id"], retry, message)
            logger.warning(
                "Sync entry %s for task %s failed (attempt %d/%d): %s",
                item["queue_id"],
                item["task_id"],
                retry,
                self.config.max_retry,
                message,
            )
        self.repo.update(item["task_id"], {"sync_status": SYNC_ERROR})
