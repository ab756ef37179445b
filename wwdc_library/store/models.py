"""
Entity values for the local WWDC session library.

Entities are immutable. Changes are made by building a new value
(``dataclasses.replace``) and writing it through a store transaction.

- AppConfig: the server-distributed configuration, replaced every cycle
- Session: a video session keyed by ``#<year>-<id>``
- Track / ScheduledSession: the live event schedule
- Transcript / TranscriptLine: indexed transcript text owned by a Session
- LiveSession: a live stream description (never persisted)
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

# Sentinel start time for scheduled sessions that are plain videos
FAR_FUTURE = datetime(4001, 1, 1, tzinfo=timezone.utc)

# Session ids above this belong to the legacy Apple TV Tech Talks category
LEGACY_SESSION_ID_THRESHOLD = 10000

WWDC_EVENT = "WWDC"
LEGACY_EVENT = "Apple TV Tech Talks"


def session_key(year: int, session_id: int) -> str:
    """Build the composite key shared by Session and ScheduledSession."""
    return f"#{year}-{session_id}"


@dataclass(frozen=True)
class AppConfig:
    """Remote configuration telling the sync where to fetch everything else."""

    videos_url: str = ""
    sessions_url: str = ""
    videos_updated_at: str = ""
    schedule_enabled: bool = False
    should_ignore_cache: bool = False
    is_wwdc_week: bool = False

    def is_equal_to(self, other: Optional["AppConfig"]) -> bool:
        """Structural comparison; a missing config is never equal."""
        return other is not None and self == other


@dataclass(frozen=True)
class UserState:
    """The locally-owned part of a Session that remote updates must not touch."""

    favorite: bool = False
    downloaded: bool = False
    progress: float = 0.0  # 0.0 - 1.0
    current_position: float = 0.0  # seconds


@dataclass(frozen=True)
class TranscriptLine:
    """A single timed line of a transcript."""

    transcript_key: str  # unique_id of the owning session/transcript
    timecode: float
    text: str


@dataclass(frozen=True)
class Transcript:
    """Full transcript of a session, keyed by the owning session's key."""

    session_key: str
    full_text: str = ""
    lines: tuple[TranscriptLine, ...] = ()

    def with_owner(self, key: str) -> "Transcript":
        """Re-key the transcript (and its lines) onto a session."""
        return Transcript(
            session_key=key,
            full_text=self.full_text,
            lines=tuple(replace(line, transcript_key=key) for line in self.lines),
        )


@dataclass(frozen=True)
class Session:
    """A WWDC session video."""

    id: int
    year: int
    date: str = ""
    track: str = ""
    focus: str = ""
    title: str = ""
    summary: str = ""
    video_url: str = ""
    hd_video_url: str = ""
    slides_url: str = ""
    shelf_image_url: str = ""

    # User state
    favorite: bool = False
    downloaded: bool = False
    progress: float = 0.0
    current_position: float = 0.0

    transcript: Optional[Transcript] = field(default=None, compare=False)

    @property
    def unique_id(self) -> str:
        return session_key(self.year, self.id)

    @property
    def user_state(self) -> UserState:
        return UserState(
            favorite=self.favorite,
            downloaded=self.downloaded,
            progress=self.progress,
            current_position=self.current_position,
        )

    def with_user_state(self, state: UserState) -> "Session":
        """Return a copy carrying ``state`` in place of this session's user state."""
        return replace(
            self,
            favorite=state.favorite,
            downloaded=state.downloaded,
            progress=state.progress,
            current_position=state.current_position,
        )

    def is_semantically_equal(self, other: "Session") -> bool:
        """Compare only the remotely-sourced fields."""
        return (
            self.id == other.id
            and self.year == other.year
            and self.date == other.date
            and self.track == other.track
            and self.focus == other.focus
            and self.title == other.title
            and self.summary == other.summary
            and self.video_url == other.video_url
            and self.hd_video_url == other.hd_video_url
            and self.slides_url == other.slides_url
            and self.shelf_image_url == other.shelf_image_url
        )

    @property
    def event(self) -> str:
        return LEGACY_EVENT if self.id > LEGACY_SESSION_ID_THRESHOLD else WWDC_EVENT

    @property
    def is_extra(self) -> bool:
        return self.event != WWDC_EVENT

    @property
    def share_url(self) -> str:
        return f"wwdc://{self.year}/{self.id}"

    @property
    def hd_url(self) -> Optional[str]:
        return self.hd_video_url or None

    @property
    def subtitle(self) -> str:
        return f"{self.year} | {self.track} | {self.focus}"


@dataclass(frozen=True)
class Track:
    """A schedule track (category)."""

    name: str
    color: str = ""
    dark_color: str = ""
    title_color: str = ""


@dataclass(frozen=True)
class ScheduledSession:
    """A timeslot in the live event schedule."""

    id: int
    year: int
    title: str = ""
    summary: str = ""
    type: str = ""
    track_name: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @property
    def unique_id(self) -> str:
        return session_key(self.year, self.id)

    @property
    def is_video(self) -> bool:
        return self.type.lower() == "video"

    def is_semantically_equal(self, other: "ScheduledSession") -> bool:
        # Every field is remotely sourced
        return self == other

    def is_live(self, now: Optional[datetime] = None) -> bool:
        if self.starts_at is None or self.ends_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.starts_at <= now <= self.ends_at

    def is_scheduled(
        self, now: Optional[datetime] = None, tolerance_seconds: int = 0
    ) -> bool:
        """Live right now, or ending after ``now`` shifted by the tolerance."""
        now = now or datetime.now(timezone.utc)
        if self.is_live(now):
            return True
        if self.ends_at is None:
            return False
        return self.ends_at >= now + timedelta(seconds=tolerance_seconds)


@dataclass(frozen=True)
class LiveSession:
    """A live stream announced by the service."""

    id: int
    title: str = ""
    summary: str = ""
    stream_url: Optional[str] = None
    is_live_right_now: bool = False
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
