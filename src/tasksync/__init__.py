"""
Offline-first task tracker with a synchronization engine.

Local task mutations are appended to a durable sync queue; SyncEngine replays
that queue against the remote authority in order, in bounded batches.
"""

from .settings import SyncConfig
from .sync import SyncEngine, SyncResult, resolve_conflict

__all__ = ["SyncConfig", "SyncEngine", "SyncResult", "resolve_conflict"]
