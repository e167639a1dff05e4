from pydantic import BaseModel

from shared.models.sync import SyncMode, SyncStatusReport


class SyncAcceptedResponse(BaseModel):
    status: str = "accepted"
    mode: SyncMode
    queued: bool
    pending: list[SyncMode]


class SyncQueueInfo(BaseModel):
    worker_running: bool
    pending: list[SyncMode]
    completed_cycles: int


class SyncStatusResponse(SyncStatusReport):
    queue: SyncQueueInfo
