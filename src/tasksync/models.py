from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, TypedDict

SyncStatus = Literal["pending", "synced", "error"]
QueueAction = Literal["create", "update", "delete"]

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_ERROR = "error"

QUEUE_ACTIONS = frozenset({"create", "update", "delete"})

# Fields the remote authority is allowed to overwrite locally
SERVER_WRITABLE_FIELDS = (
    "title",
    "description",
    "completed",
    "is_deleted",
    "updated_at",
    "server_id",
)


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A task record as kept by the local store.

    Fields:
    - id: uuid4 string, immutable after creation
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - completed: Boolean completion flag
    - is_deleted: Soft-delete marker; deleted tasks stay stored but are hidden from reads
    - created_at: UTC creation timestamp
    - updated_at: UTC timestamp of the last mutation (local or applied from the server)
    - sync_status: pending | synced | error
    - server_id: Identifier assigned by the remote authority, once acknowledged
    - last_synced_at: UTC timestamp of the last confirmed round-trip
    """

    id: str
    title: str
    description: Optional[str]
    completed: bool
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    sync_status: SyncStatus
    server_id: Optional[str]
    last_synced_at: Optional[datetime]


# PUBLIC_INTERFACE
class QueueItemEntity(TypedDict):
    """
    One pending mutation in the sync queue.

    Fields:
    - seq: Storage-assigned insertion sequence; the queue is drained in ascending seq
    - queue_id: uuid4 identifying this entry (a task may have many entries)
    - task_id: The task this mutation targets
    - action: create | update | delete
    - updated_at: Timestamp of the mutation that produced this entry
    - retry_count: Failed remote attempts so far
    - permanent_fail: Set once retry_count reaches the configured maximum
    - error: Last failure message, kept for diagnostics
    """

    seq: int
    queue_id: str
    task_id: str
    action: QueueAction
    updated_at: datetime
    retry_count: int
    permanent_fail: bool
    error: Optional[str]
