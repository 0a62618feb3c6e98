from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_title(v: str) -> str:
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("title length must be between 1 and 200 characters")
    return s


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
            }
        }
    )

    title: str = Field(..., description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_title(v)


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for updating an existing task.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "completed": True,
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: Optional[bool] = Field(default=None, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _clean_title(v)


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task, sync bookkeeping included.
    """

    id: str = Field(..., description="Unique identifier (uuid4) of the task")
    title: str = Field(..., description="Short title for the task")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: bool = Field(..., description="Completion status flag")
    is_deleted: bool = Field(default=False, description="Soft-delete marker")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    sync_status: Literal["pending", "synced", "error"] = Field(..., description="Synchronization state")
    server_id: Optional[str] = Field(default=None, description="Identifier assigned by the remote authority")
    last_synced_at: Optional[datetime] = Field(default=None, description="Last confirmed sync timestamp")


# PUBLIC_INTERFACE
class SyncResultOut(BaseModel):
    """Aggregate counts of one sync pass."""

    success: int = Field(..., description="Items delivered or whose conflict was resolved")
    failed: int = Field(..., description="Items that failed in this pass")
    skipped: int = Field(0, description="Reserved; always 0")


class SyncRunOut(BaseModel):
    message: str
    result: SyncResultOut


class SyncStatusOut(BaseModel):
    pending_sync_tasks: int = Field(..., description="Entries in the sync queue, permanent failures included")
    last_sync: Optional[datetime] = Field(default=None, description="Most recent confirmed sync of any task")
    online: bool = Field(..., description="Whether the remote authority answered the health probe")


# PUBLIC_INTERFACE
class QueueItemOut(BaseModel):
    """A sync queue entry exposed for diagnostics."""

    queue_id: str
    task_id: str
    action: Literal["create", "update", "delete"]
    updated_at: datetime
    retry_count: int
    permanent_fail: bool
    error: Optional[str] = None


class RequeueRequest(BaseModel):
    queue_ids: Optional[List[str]] = Field(
        default=None, description="Entries to requeue; all permanent failures when omitted"
    )


class RequeueOut(BaseModel):
    requeued: int
