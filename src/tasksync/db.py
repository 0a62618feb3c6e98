from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generator, Iterable, List, Mapping, Optional

from .models import QueueItemEntity, TaskEntity
from .repositories import SyncQueue, TaskRepository, _check_action, new_queue_id
from .utils import format_timestamp, parse_timestamp


@dataclass(frozen=True)
class _TaskCols:
    table: str = "tasks"
    id: str = "id"
    title: str = "title"
    description: str = "description"
    completed: str = "completed"
    is_deleted: str = "is_deleted"
    created_at: str = "created_at"
    updated_at: str = "updated_at"
    sync_status: str = "sync_status"
    server_id: str = "server_id"
    last_synced_at: str = "last_synced_at"


@dataclass(frozen=True)
class _QueueCols:
    table: str = "sync_queue"
    seq: str = "seq"
    queue_id: str = "queue_id"
    task_id: str = "task_id"
    action: str = "action"
    updated_at: str = "updated_at"
    retry_count: str = "retry_count"
    permanent_fail: str = "permanent_fail"
    error: str = "error"


_T = _TaskCols()
_Q = _QueueCols()

_BOOL_FIELDS = {"completed", "is_deleted"}
_TIME_FIELDS = {"created_at", "updated_at", "last_synced_at"}
_TASK_FIELDS = (
    _T.title,
    _T.description,
    _T.completed,
    _T.is_deleted,
    _T.created_at,
    _T.updated_at,
    _T.sync_status,
    _T.server_id,
    _T.last_synced_at,
)


def _to_column(name: str, value: Any) -> Any:
    if name in _BOOL_FIELDS:
        return 1 if value else 0
    if name in _TIME_FIELDS:
        return format_timestamp(value)
    return value


class _SQLiteStore:
    """
    Shared connection handling. Every operation opens its own connection and
    commits on exit, so the CRUD layer can append while a sync pass runs.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_T.table} (
                    {_T.id} TEXT PRIMARY KEY,
                    {_T.title} TEXT NOT NULL,
                    {_T.description} TEXT NULL,
                    {_T.completed} INTEGER NOT NULL DEFAULT 0,
                    {_T.is_deleted} INTEGER NOT NULL DEFAULT 0,
                    {_T.created_at} TEXT NOT NULL,
                    {_T.updated_at} TEXT NOT NULL,
                    {_T.sync_status} TEXT NOT NULL DEFAULT 'pending',
                    {_T.server_id} TEXT NULL,
                    {_T.last_synced_at} TEXT NULL
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_Q.table} (
                    {_Q.seq} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_Q.queue_id} TEXT NOT NULL UNIQUE,
                    {_Q.task_id} TEXT NOT NULL,
                    {_Q.action} TEXT NOT NULL,
                    {_Q.updated_at} TEXT NOT NULL,
                    {_Q.retry_count} INTEGER NOT NULL DEFAULT 0,
                    {_Q.permanent_fail} INTEGER NOT NULL DEFAULT 0,
                    {_Q.error} TEXT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_sync_status ON {_T.table}({_T.sync_status})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_Q.table}_task_id ON {_Q.table}({_Q.task_id})"
            )


class SQLiteTaskRepository(_SQLiteStore, TaskRepository):
    """
    Lightweight SQLite task store implementing the TaskRepository interface.
    """

    def _row_to_entity(self, row: sqlite3.Row) -> TaskEntity:
        return {
            "id": str(row[_T.id]),
            "title": str(row[_T.title]),
            "description": row[_T.description],
            "completed": bool(row[_T.completed]),
            "is_deleted": bool(row[_T.is_deleted]),
            "created_at": parse_timestamp(row[_T.created_at]),  # type: ignore
            "updated_at": parse_timestamp(row[_T.updated_at]),  # type: ignore
            "sync_status": row[_T.sync_status],
            "server_id": row[_T.server_id],
            "last_synced_at": parse_timestamp(row[_T.last_synced_at]),
        }

    def _select(self, conn: sqlite3.Connection, task_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()

    def insert(self, entity: TaskEntity) -> TaskEntity:
        columns = (_T.id,) + _TASK_FIELDS
        values = [entity["id"]] + [_to_column(c, entity.get(c)) for c in _TASK_FIELDS]
        with self._conn() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {_T.table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                    values,
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Task {entity['id']} already exists") from e
            row = self._select(conn, entity["id"])
            assert row is not None
            return self._row_to_entity(row)

    def get(self, task_id: str) -> Optional[TaskEntity]:
        with self._conn() as conn:
            row = self._select(conn, task_id)
            return self._row_to_entity(row) if row else None

    def update(self, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        changes = {k: v for k, v in fields.items() if k in _TASK_FIELDS}
        with self._conn() as conn:
            if changes:
                assignments = ", ".join(f"{name} = ?" for name in changes)
                params = [_to_column(name, value) for name, value in changes.items()]
                conn.execute(
                    f"UPDATE {_T.table} SET {assignments} WHERE {_T.id} = ?",
                    [*params, task_id],
                )
            row = self._select(conn, task_id)
            return self._row_to_entity(row) if row else None

    def list(self, completed: Optional[bool] = None, include_deleted: bool = False) -> List[TaskEntity]:
        clauses = []
        params: list = []
        if not include_deleted:
            clauses.append(f"{_T.is_deleted} = 0")
        if completed is not None:
            clauses.append(f"{_T.completed} = ?")
            params.append(1 if completed else 0)
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_T.table} {where_sql} ORDER BY {_T.created_at} ASC", params
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def list_by_sync_status(self, statuses: Iterable[str]) -> List[TaskEntity]:
        wanted = list(statuses)
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_T.table}
                WHERE {_T.sync_status} IN ({placeholders})
                ORDER BY {_T.created_at} ASC
                """,
                wanted,
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def latest_sync_time(self) -> Optional[datetime]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT MAX({_T.last_synced_at}) AS latest FROM {_T.table} WHERE {_T.last_synced_at} IS NOT NULL"
            ).fetchone()
            return parse_timestamp(row["latest"]) if row else None


class SQLiteSyncQueue(_SQLiteStore, SyncQueue):
    """
    SQLite-backed sync queue. The AUTOINCREMENT seq column fixes insertion order.
    """

    def _row_to_item(self, row: sqlite3.Row) -> QueueItemEntity:
        return {
            "seq": int(row[_Q.seq]),
            "queue_id": str(row[_Q.queue_id]),
            "task_id": str(row[_Q.task_id]),
            "action": row[_Q.action],
            "updated_at": parse_timestamp(row[_Q.updated_at]),  # type: ignore
            "retry_count": int(row[_Q.retry_count]),
            "permanent_fail": bool(row[_Q.permanent_fail]),
            "error": row[_Q.error],
        }

    def enqueue(self, task_id: str, action: str, timestamp: datetime) -> QueueItemEntity:
        _check_action(action)
        queue_id = new_queue_id()
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO {_Q.table} ({_Q.queue_id}, {_Q.task_id}, {_Q.action}, {_Q.updated_at},
                    {_Q.retry_count}, {_Q.permanent_fail})
                VALUES (?, ?, ?, ?, 0, 0)
                """,
                (queue_id, task_id, action, format_timestamp(timestamp)),
            )
            row = conn.execute(
                f"SELECT * FROM {_Q.table} WHERE {_Q.queue_id} = ?", (queue_id,)
            ).fetchone()
            assert row is not None
            return self._row_to_item(row)

    def drain_all_ordered(self) -> List[QueueItemEntity]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM {_Q.table} ORDER BY {_Q.seq} ASC").fetchall()
            return [self._row_to_item(r) for r in rows]

    def remove(self, queue_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_Q.table} WHERE {_Q.queue_id} = ?", (queue_id,))
            return cur.rowcount > 0

    def mark_retry(self, queue_id: str, retry_count: int, message: str) -> None:
        with self._conn() as conn:
            conn.execute(
                f"UPDATE {_Q.table} SET {_Q.retry_count} = ?, {_Q.error} = ? WHERE {_Q.queue_id} = ?",
                (retry_count, message, queue_id),
            )

    def mark_permanent_failure(self, queue_id: str, retry_count: int, message: str) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                UPDATE {_Q.table}
                SET {_Q.retry_count} = ?, {_Q.error} = ?, {_Q.permanent_fail} = 1
                WHERE {_Q.queue_id} = ?
                """,
                (retry_count, message, queue_id),
            )

    def entries_for_task(self, task_id: str) -> List[QueueItemEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_Q.table} WHERE {_Q.task_id} = ? ORDER BY {_Q.seq} ASC", (task_id,)
            ).fetchall()
            return [self._row_to_item(r) for r in rows]

    def count(self) -> int:
        with self._conn() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_Q.table}").fetchone()
            return int(row["cnt"]) if row else 0

    def failed_items(self) -> List[QueueItemEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_Q.table} WHERE {_Q.permanent_fail} = 1 ORDER BY {_Q.seq} ASC"
            ).fetchall()
            return [self._row_to_item(r) for r in rows]

    def requeue_failed(self, queue_ids: Optional[Iterable[str]] = None) -> int:
        sql = f"UPDATE {_Q.table} SET {_Q.retry_count} = 0, {_Q.permanent_fail} = 0 WHERE {_Q.permanent_fail} = 1"
        params: list = []
        if queue_ids is not None:
            ids = list(queue_ids)
            if not ids:
                return 0
            sql += f" AND {_Q.queue_id} IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        with self._conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount
