from fastapi import APIRouter

from contraction_sync.api.v1.endpoints import backend, events, history, sync

api_router = APIRouter()
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(history.router, prefix="/history", tags=["history"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(backend.router, prefix="/backend", tags=["backend"])
