from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from .remote import RemoteAuthorityClient
from .repositories import SyncQueue, TaskRepository, build_stores
from .services import TaskService
from .settings import Settings, get_settings
from .sync import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Process-wide wiring of stores, CRUD service and sync engine."""

    settings: Settings
    repo: TaskRepository
    queue: SyncQueue
    tasks: TaskService
    engine: SyncEngine


# PUBLIC_INTERFACE
def build_container(settings: Optional[Settings] = None, remote: Optional[RemoteAuthorityClient] = None) -> Container:
    """Create a Container for the given settings (environment settings by default)."""
    settings = settings or get_settings()
    repo, queue = build_stores(settings)
    remote = remote or RemoteAuthorityClient(
        settings.sync.api_base_url,
        request_timeout=settings.sync.request_timeout,
        connectivity_timeout=settings.sync.connectivity_timeout,
    )
    logger.info(
        "Storage backend %s, remote authority %s", settings.persistence_backend, settings.sync.api_base_url
    )
    return Container(
        settings=settings,
        repo=repo,
        queue=queue,
        tasks=TaskService(repo, queue),
        engine=SyncEngine(repo, queue, remote, settings.sync),
    )


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_container() -> Container:
    """Return the shared Container; tests replace it via app.dependency_overrides."""
    return build_container()


def get_task_service(container: Container = Depends(get_container)) -> TaskService:
    return container.tasks


def get_sync_engine(container: Container = Depends(get_container)) -> SyncEngine:
    return container.engine
