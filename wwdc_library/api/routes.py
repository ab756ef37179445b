"""
API route handlers exposing the session library to UI collaborators.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from wwdc_library import __version__
from wwdc_library.api.models import (
    ConfigResponse,
    DownloadedRequest,
    ErrorResponse,
    FavoriteRequest,
    HealthResponse,
    IndexingStatusResponse,
    ProgressRequest,
    RefreshResponse,
    SessionDetail,
    SessionListResponse,
    SessionSummary,
    TrackInfo,
)
from wwdc_library.store.models import Session, session_key
from wwdc_library.store.sqlite_store import EntityStore
from wwdc_library.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse}}


def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def _require(session: Optional[Session], key: str) -> Session:
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {key} not found")
    return session


@router.get("/health", response_model=HealthResponse)
async def health(store: EntityStore = Depends(get_store)):
    """Health check with library counts."""
    stats = store.get_stats()
    return HealthResponse(
        status="healthy",
        version=__version__,
        sessions=stats["total_sessions"],
        transcripts=stats["total_transcripts"],
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    year: Optional[int] = None,
    track: Optional[str] = None,
    favorites: bool = False,
    downloaded: bool = False,
    q: Optional[str] = None,
    store: EntityStore = Depends(get_store),
):
    """
    List sessions, newest year first and by session number within a year.

    Optional filters narrow by year, track, favorite/downloaded flags, or a
    text query over title, summary and transcript.
    """
    sessions = store.list_sessions(
        year=year,
        track=track,
        favorites_only=favorites,
        downloaded_only=downloaded,
        query=q,
    )
    return SessionListResponse(
        sessions=[SessionSummary.from_entity(s) for s in sessions],
        total=len(sessions),
    )


@router.get("/sessions/{year}/{session_id}", response_model=SessionDetail, responses=NOT_FOUND)
async def get_session(year: int, session_id: int, store: EntityStore = Depends(get_store)):
    """Get a single session with its transcript and schedule entry."""
    key = session_key(year, session_id)
    session = _require(store.get_session(key), key)
    return SessionDetail.from_entity(session, store.get_schedule(session))


@router.put("/sessions/{year}/{session_id}/favorite", response_model=SessionSummary, responses=NOT_FOUND)
async def set_favorite(
    year: int,
    session_id: int,
    request: FavoriteRequest,
    store: EntityStore = Depends(get_store),
):
    key = session_key(year, session_id)
    session = _require(store.set_favorite(key, request.favorite), key)
    return SessionSummary.from_entity(session)


@router.put("/sessions/{year}/{session_id}/progress", response_model=SessionSummary, responses=NOT_FOUND)
async def set_progress(
    year: int,
    session_id: int,
    request: ProgressRequest,
    store: EntityStore = Depends(get_store),
):
    key = session_key(year, session_id)
    session = _require(
        store.set_progress(key, request.progress, request.current_position), key
    )
    return SessionSummary.from_entity(session)


@router.put("/sessions/{year}/{session_id}/downloaded", response_model=SessionSummary, responses=NOT_FOUND)
async def set_downloaded(
    year: int,
    session_id: int,
    request: DownloadedRequest,
    store: EntityStore = Depends(get_store),
):
    key = session_key(year, session_id)
    session = _require(store.set_downloaded(key, request.downloaded), key)
    return SessionSummary.from_entity(session)


@router.put("/downloads/{filename}", response_model=SessionSummary, responses=NOT_FOUND)
async def set_downloaded_by_filename(
    filename: str,
    request: DownloadedRequest,
    store: EntityStore = Depends(get_store),
):
    """Update the downloaded flag of the session a local video file belongs to."""
    session = _require(
        store.update_downloaded_for_local_filename(filename, request.downloaded), filename
    )
    return SessionSummary.from_entity(session)


@router.get("/tracks", response_model=list[TrackInfo])
async def list_tracks(store: EntityStore = Depends(get_store)):
    return [TrackInfo.from_entity(t) for t in store.list_tracks()]


@router.get("/config", response_model=ConfigResponse, responses=NOT_FOUND)
async def get_config(store: EntityStore = Depends(get_store)):
    """The remote config adopted by the last sync."""
    config = store.get_config()
    if config is None:
        raise HTTPException(status_code=404, detail="No config has been synced yet")
    return ConfigResponse.from_entity(config)


@router.post("/refresh", response_model=RefreshResponse, status_code=202)
async def refresh(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Queue a sync cycle; returns immediately."""
    orchestrator.refresh()
    return RefreshResponse(status="queued")


@router.get("/indexing", response_model=IndexingStatusResponse)
async def indexing_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    progress = orchestrator.indexer.progress
    if progress is None:
        return IndexingStatusResponse(indexing=False)
    return IndexingStatusResponse(
        indexing=True, total=progress.total, completed=progress.completed
    )
