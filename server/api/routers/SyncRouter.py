"""Sync router: trigger sync cycles and inspect their state.

POST /sync and POST /sync/rebuild hand the request to the sync queue and
answer immediately. POST /sync/run runs a cycle inside the request, which is
meant for operators and scripts that want the statistics back.
"""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from server.api.models.responses import SyncAcceptedResponse, SyncQueueInfo, SyncStatusResponse
from services.vector_sync.errors import ConcurrentCycleRejected, SourceUnavailable
from shared.dependencies.auth import verify_api_key
from shared.models.sync import SyncMode

sync_router = APIRouter(prefix="/sync", dependencies=[Depends(verify_api_key)], tags=["Sync"])


def _enqueue(request: Request, mode: SyncMode) -> JSONResponse:
    queue = request.app.state.sync_queue
    queued = queue.enqueue(mode)
    request.app.state.logging.info("Sync request received: mode=%s queued=%s", mode, queued)
    body = SyncAcceptedResponse(mode=mode, queued=queued, pending=queue.pending)
    return JSONResponse(status_code=202, content=body.model_dump(mode="json"))


@sync_router.post("")
async def handle_sync(request: Request) -> JSONResponse:
    """Queue an incremental sync.

    Returns:
        JSONResponse: 202 with queued=False when an incremental sync was already waiting.
    """
    return _enqueue(request, "incremental")


@sync_router.post("/rebuild")
async def handle_rebuild(request: Request) -> JSONResponse:
    """Queue a full rebuild."""
    return _enqueue(request, "full_rebuild")


@sync_router.post("/run")
async def handle_run(
    request: Request,
    mode: Literal["incremental", "full_rebuild"] = Query(default="incremental"),
) -> JSONResponse:
    """Run a sync cycle and return its statistics.

    Raises:
        HTTPException: 409 if a cycle is already running, 503 if the order source is unavailable.
    """
    orchestrator = request.app.state.orchestrator
    try:
        if mode == "full_rebuild":
            stats = await orchestrator.run_full_rebuild()
        else:
            stats = await orchestrator.run_incremental_sync()
    except ConcurrentCycleRejected as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return JSONResponse(content=stats.model_dump(mode="json"))


@sync_router.get("/status")
async def handle_status(request: Request, recent: int = Query(default=10, ge=0, le=50)) -> JSONResponse:
    """Orchestrator state, tracker summary, recent runs and queue state."""
    report = request.app.state.orchestrator.get_status(recent=recent)
    queue = request.app.state.sync_queue
    body = SyncStatusResponse(
        **report.model_dump(),
        queue=SyncQueueInfo(
            worker_running=queue.running,
            pending=queue.pending,
            completed_cycles=queue.completed_cycles,
        ),
    )
    return JSONResponse(content=body.model_dump(mode="json"))
