from fastapi import Request

from contraction_sync.engine import SyncEngine
from contraction_sync.services.tracker import EventTracker


def get_engine(request: Request) -> SyncEngine:
    return request.app.state.engine


def get_tracker(request: Request) -> EventTracker:
    return request.app.state.engine.tracker
