"""
Pydantic models for API request/response schemas.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from wwdc_library.config import get_settings
from wwdc_library.store.models import AppConfig, ScheduledSession, Session, Track


# === Request Models ===

class FavoriteRequest(BaseModel):
    """Request body for the favorite setter."""
    favorite: bool = Field(..., description="Mark or unmark as favorite")


class DownloadedRequest(BaseModel):
    """Request body for the downloaded setters."""
    downloaded: bool = Field(..., description="Whether the HD video is stored locally")


class ProgressRequest(BaseModel):
    """Request body for the playback progress setter."""
    progress: float = Field(..., ge=0.0, le=1.0, description="Fraction watched")
    current_position: Optional[float] = Field(None, ge=0.0, description="Playback position in seconds")


# === Response Models ===

class TranscriptLineInfo(BaseModel):
    timecode: float
    text: str


class ScheduleInfo(BaseModel):
    """Schedule entry for a session."""
    type: str
    track: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_live: bool = False
    is_scheduled: bool = False

    @classmethod
    def from_entity(cls, scheduled: ScheduledSession) -> "ScheduleInfo":
        return cls(
            type=scheduled.type,
            track=scheduled.track_name,
            starts_at=scheduled.starts_at,
            ends_at=scheduled.ends_at,
            is_live=scheduled.is_live(),
            is_scheduled=scheduled.is_scheduled(
                tolerance_seconds=get_settings().live_tolerance_seconds
            ),
        )


class SessionSummary(BaseModel):
    """A session as shown in the session list."""
    key: str
    id: int
    year: int
    title: str
    subtitle: str
    event: str
    track: str
    focus: str
    favorite: bool
    downloaded: bool
    progress: float
    current_position: float

    @classmethod
    def from_entity(cls, session: Session) -> "SessionSummary":
        return cls(
            key=session.unique_id,
            id=session.id,
            year=session.year,
            title=session.title,
            subtitle=session.subtitle,
            event=session.event,
            track=session.track,
            focus=session.focus,
            favorite=session.favorite,
            downloaded=session.downloaded,
            progress=session.progress,
            current_position=session.current_position,
        )


class SessionDetail(SessionSummary):
    """A single session with URLs, schedule and transcript."""
    date: str
    summary: str
    video_url: str
    hd_video_url: Optional[str] = None
    slides_url: str
    shelf_image_url: str
    share_url: str
    transcript: Optional[str] = None
    transcript_lines: list[TranscriptLineInfo] = []
    schedule: Optional[ScheduleInfo] = None

    @classmethod
    def from_entity(
        cls, session: Session, schedule: Optional[ScheduledSession] = None
    ) -> "SessionDetail":
        summary = SessionSummary.from_entity(session)
        transcript = session.transcript
        return cls(
            **summary.model_dump(),
            date=session.date,
            summary=session.summary,
            video_url=session.video_url,
            hd_video_url=session.hd_url,
            slides_url=session.slides_url,
            shelf_image_url=session.shelf_image_url,
            share_url=session.share_url,
            transcript=transcript.full_text if transcript else None,
            transcript_lines=[
                TranscriptLineInfo(timecode=line.timecode, text=line.text)
                for line in (transcript.lines if transcript else ())
            ],
            schedule=ScheduleInfo.from_entity(schedule) if schedule else None,
        )


class SessionListResponse(BaseModel):
    """Response body for the session list."""
    sessions: list[SessionSummary]
    total: int


class TrackInfo(BaseModel):
    name: str
    color: str = ""
    dark_color: str = ""
    title_color: str = ""

    @classmethod
    def from_entity(cls, track: Track) -> "TrackInfo":
        return cls(
            name=track.name,
            color=track.color,
            dark_color=track.dark_color,
            title_color=track.title_color,
        )


class ConfigResponse(BaseModel):
    """The currently adopted remote config."""
    videos_url: str
    sessions_url: str
    videos_updated_at: str
    schedule_enabled: bool
    should_ignore_cache: bool
    is_wwdc_week: bool

    @classmethod
    def from_entity(cls, config: AppConfig) -> "ConfigResponse":
        return cls(
            videos_url=config.videos_url,
            sessions_url=config.sessions_url,
            videos_updated_at=config.videos_updated_at,
            schedule_enabled=config.schedule_enabled,
            should_ignore_cache=config.should_ignore_cache,
            is_wwdc_week=config.is_wwdc_week,
        )


class IndexingStatusResponse(BaseModel):
    """Transcript indexing state."""
    indexing: bool
    total: int = 0
    completed: int = 0


class RefreshResponse(BaseModel):
    status: str


class HealthResponse(BaseModel):
    """Response body for health endpoint."""
    status: str
    version: str
    sessions: int
    transcripts: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
