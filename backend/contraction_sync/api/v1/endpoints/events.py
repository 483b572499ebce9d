from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from contraction_sync.api.deps import get_tracker
from contraction_sync.schemas.event import Event, EventCreate, EventStats, EventUpdate
from contraction_sync.services.tracker import EventTracker
from contraction_sync.utils.calculations import events_in_time_range

router = APIRouter()


class TimerRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    intensity: Optional[int] = None
    notes: Optional[str] = None


@router.get("/", response_model=List[Event])
async def list_events(
    archived: bool = Query(False),
    hours: Optional[float] = Query(None, gt=0, description="Only events started within the last N hours"),
    tracker: EventTracker = Depends(get_tracker),
):
    """List events, newest first."""
    events = await tracker.list_events(archived=archived)
    if hours is not None:
        events = events_in_time_range(events, hours, now=tracker.clock())
    return events


@router.post("/", response_model=Event, status_code=status.HTTP_201_CREATED)
async def add_event(event: EventCreate, tracker: EventTracker = Depends(get_tracker)):
    """Manually add an event."""
    return await tracker.add_event(
        start_time=event.start_time,
        end_time=event.end_time,
        intensity=event.intensity,
        notes=event.notes,
    )


@router.get("/stats", response_model=EventStats)
async def get_stats(tracker: EventTracker = Depends(get_tracker)):
    return await tracker.stats()


@router.get("/active", response_model=Optional[Event])
async def get_active(tracker: EventTracker = Depends(get_tracker)):
    return await tracker.get_active()


@router.post("/start", response_model=Event, status_code=status.HTTP_201_CREATED)
async def start_event(body: Optional[TimerRequest] = None, tracker: EventTracker = Depends(get_tracker)):
    body = body or TimerRequest()
    return await tracker.start_event(intensity=body.intensity, notes=body.notes)


@router.post("/stop", response_model=Event)
async def stop_event(body: Optional[TimerRequest] = None, tracker: EventTracker = Depends(get_tracker)):
    body = body or TimerRequest()
    return await tracker.stop_event(intensity=body.intensity, notes=body.notes)


@router.post("/archive-all", response_model=List[Event])
async def archive_all(tracker: EventTracker = Depends(get_tracker)):
    """Archive every active event as a single undoable action."""
    return await tracker.archive_all()


@router.get("/{event_id}", response_model=Event)
async def get_event(event_id: str, tracker: EventTracker = Depends(get_tracker)):
    return await tracker.get_event(event_id)


@router.patch("/{event_id}", response_model=Event)
async def update_event(event_id: str, update: EventUpdate, tracker: EventTracker = Depends(get_tracker)):
    return await tracker.update_event(event_id, update.model_dump(exclude_unset=True))


@router.delete("/{event_id}", response_model=Event)
async def delete_event(event_id: str, tracker: EventTracker = Depends(get_tracker)):
    """Soft delete; undo brings the event back."""
    return await tracker.delete_event(event_id)


@router.post("/{event_id}/archive", response_model=Event)
async def archive_event(event_id: str, tracker: EventTracker = Depends(get_tracker)):
    return await tracker.archive_event(event_id)
