from typing import Optional

from fastapi import APIRouter, Depends

from contraction_sync.api.deps import get_tracker
from contraction_sync.schemas.history import HistoryEntry, HistoryState
from contraction_sync.services.tracker import EventTracker

router = APIRouter()


@router.get("/", response_model=HistoryState)
async def get_history(tracker: EventTracker = Depends(get_tracker)):
    return tracker.history_state()


@router.post("/undo", response_model=Optional[HistoryEntry])
async def undo(tracker: EventTracker = Depends(get_tracker)):
    """Undo the latest action; null when there is nothing to undo or another action is in flight."""
    return await tracker.undo()


@router.post("/redo", response_model=Optional[HistoryEntry])
async def redo(tracker: EventTracker = Depends(get_tracker)):
    return await tracker.redo()
