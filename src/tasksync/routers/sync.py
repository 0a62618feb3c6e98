from __future__ import annotations

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_sync_engine
from ..errors import SyncInProgressError
from ..schemas import (
    QueueItemOut,
    RequeueOut,
    RequeueRequest,
    SyncResultOut,
    SyncRunOut,
    SyncStatusOut,
)
from ..sync import SyncEngine
from ..utils import utc_now

router = APIRouter(
    prefix="/api/v1/sync",
    tags=["sync"],
)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=SyncRunOut,
    summary="Run Sync",
    description="Run one synchronization pass against the remote authority.",
    responses={
        200: {"description": "Sync pass completed"},
        409: {"description": "Another sync pass is running"},
        503: {"description": "Remote authority unreachable"},
    },
)
def trigger_sync(engine: SyncEngine = Depends(get_sync_engine)) -> SyncRunOut:
    """
    Probe connectivity first; sync is not attempted while offline.
    """
    if not engine.check_connectivity():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No internet connection")
    try:
        result = engine.sync()
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return SyncRunOut(message="Sync completed", result=SyncResultOut(**result.as_dict()))


# PUBLIC_INTERFACE
@router.get("/status", response_model=SyncStatusOut, summary="Sync Status")
def sync_status(engine: SyncEngine = Depends(get_sync_engine)) -> SyncStatusOut:
    return SyncStatusOut(
        pending_sync_tasks=engine.pending_count(),
        last_sync=engine.last_sync_time(),
        online=engine.check_connectivity(),
    )


# PUBLIC_INTERFACE
@router.get(
    "/failures",
    response_model=List[QueueItemOut],
    summary="Permanent Failures",
    description="Queue entries that exhausted their retry budget and are no longer retried automatically.",
)
def list_failures(engine: SyncEngine = Depends(get_sync_engine)) -> List[QueueItemOut]:
    return [QueueItemOut(**item) for item in engine.failed_items()]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post("/failures/requeue", response_model=RequeueOut, summary="Requeue Failures")
def requeue_failures(payload: RequeueRequest, engine: SyncEngine = Depends(get_sync_engine)) -> RequeueOut:
    """
    Reset permanently failed entries so the next pass retries them.
    """
    return RequeueOut(requeued=engine.requeue_failed(payload.queue_ids))


@router.post("/batch", summary="Batch Sync (server side)")
def batch_placeholder() -> dict:
    return {"message": "Batch sync endpoint for server; clients do not call this directly"}


@router.get("/health", summary="Sync Health")
def sync_health() -> dict:
    now: datetime = utc_now()
    return {"status": "ok", "timestamp": now.isoformat()}
