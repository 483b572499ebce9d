import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from contraction_sync.api.deps import get_engine
from contraction_sync.engine import SyncEngine
from contraction_sync.schemas.sync import OperationStatus, SyncOperation, SyncState

log = logging.getLogger(__name__)
router = APIRouter()


class ConnectivityRequest(BaseModel):
    online: bool


class RetryResponse(BaseModel):
    requeued: int


@router.get("/status", response_model=SyncState)
async def get_status(engine: SyncEngine = Depends(get_engine)):
    return await engine.orchestrator.get_state()


@router.post("/run", response_model=SyncState)
async def run_sync(engine: SyncEngine = Depends(get_engine)):
    """Trigger a manual sync pass."""
    log.info("Manual sync requested")
    return await engine.orchestrator.sync_now()


@router.get("/operations", response_model=List[SyncOperation])
async def list_operations(status: Optional[OperationStatus] = None, engine: SyncEngine = Depends(get_engine)):
    return await engine.queue.list_operations(status)


@router.post("/retry-failed", response_model=RetryResponse)
async def retry_failed(engine: SyncEngine = Depends(get_engine)):
    """Give operations that exhausted their retries another round."""
    return RetryResponse(requeued=await engine.orchestrator.retry_failed())


@router.post("/connectivity", response_model=SyncState)
async def set_connectivity(request: ConnectivityRequest, engine: SyncEngine = Depends(get_engine)):
    await engine.orchestrator.set_online(request.online)
    return await engine.orchestrator.get_state()
