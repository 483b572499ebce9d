import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from contraction_sync.api.deps import get_engine
from contraction_sync.engine import SyncEngine
from contraction_sync.schemas.backend import BackendConfig, ShareLinkRequest, ShareLinkResponse
from contraction_sync.utils.share_link import generate_share_url, parse_fragment, strip_fragment

log = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=BackendConfig)
async def get_backend(engine: SyncEngine = Depends(get_engine)):
    return engine.backend_config


@router.put("/", response_model=BackendConfig)
async def set_backend(config: BackendConfig, engine: SyncEngine = Depends(get_engine)):
    """Select the remote backend used for all later sync calls."""
    return await engine.reconfigure(config)


@router.post("/test")
async def test_backend(engine: SyncEngine = Depends(get_engine)):
    return {"backend": engine.adapter.kind.value, "reachable": await engine.adapter.test_connection()}


@router.post("/share-link/apply", response_model=ShareLinkResponse)
async def apply_share_link(request: ShareLinkRequest, engine: SyncEngine = Depends(get_engine)):
    """Take a backend config out of a shared link; returns the link with the fragment removed."""
    config = parse_fragment(request.url)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Link does not contain a valid backend configuration",
        )
    await engine.reconfigure(config)
    log.info(f"Applied shared {config.kind.value} backend configuration")
    return ShareLinkResponse(url=strip_fragment(request.url))


@router.get("/share-link", response_model=ShareLinkResponse)
async def get_share_link(base_url: str = Query(..., alias="baseUrl"), engine: SyncEngine = Depends(get_engine)):
    try:
        return ShareLinkResponse(url=generate_share_url(base_url, engine.backend_config))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
