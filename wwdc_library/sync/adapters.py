"""
Adapters from decoded service documents to entity values.

Every adapter is a pure function over a ``dict`` (the decoded JSON body).
Missing text fields fall back to an empty string and missing URLs or dates
to None, so a sparse document still produces a usable entity. The only
errors raised here are ParseShapeMismatch, when a required array is absent.
"""

import re
from datetime import datetime
from typing import Any, Optional

from wwdc_library.store.models import (
    FAR_FUTURE,
    AppConfig,
    LiveSession,
    ScheduledSession,
    Session,
    Track,
    Transcript,
    TranscriptLine,
)

# Legacy feeds send "2016-06-13T17:00:00Z" and the zone is appended locally
LEGACY_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ%z"
LEGACY_DATE_ZONE = "+0000"

# Current feeds send "2017-06-05T10:00:00-07:00" (or "-0700")
ISO_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:?\d{2}$")


class SyncError(RuntimeError):
    """Base class for recoverable sync failures."""


class ParseShapeMismatch(SyncError):
    """An expected array or object is missing from a service document."""


def _text(doc: dict, key: str) -> str:
    value = doc.get(key)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _optional_text(doc: dict, key: str) -> Optional[str]:
    return _text(doc, key) or None


def int_field(doc: dict, key: str) -> int:
    """Integer value of ``key``; numeric strings are accepted, anything else is 0."""
    value = doc.get(key)
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if isinstance(value, (bool, int, float)):
        try:
            return int(value)
        except (ValueError, OverflowError):
            return 0
    return 0


def _bool(doc: dict, key: str) -> bool:
    value = doc.get(key)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _first(doc: dict, *keys: str) -> Any:
    """Value of the first key present, for documents with aliased fields."""
    for key in keys:
        if key in doc:
            return doc[key]
    return None


def _array(doc: Any, key: str, what: str) -> list:
    value = doc.get(key) if isinstance(doc, dict) else None
    if not isinstance(value, list):
        raise ParseShapeMismatch(f"Could not parse array of {what}")
    return value


def parse_legacy_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a legacy ``...Z`` timestamp. Any other shape yields None."""
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value + LEGACY_DATE_ZONE, LEGACY_DATE_FORMAT)
    except ValueError:
        return None


def parse_iso_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp with explicit offset. Any other shape yields None."""
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, ISO_DATE_FORMAT)
    except ValueError:
        return None


def adapt_config(doc: dict) -> AppConfig:
    """Build an AppConfig, accepting snake_case or camelCase field names."""
    fields = {
        "videos_url": _first(doc, "videos_url", "videosURL"),
        "sessions_url": _first(doc, "sessions_url", "sessionsURL"),
        "videos_updated_at": _first(doc, "videos_updated_at", "videosUpdatedAt"),
        "schedule_enabled": _first(doc, "schedule_enabled", "scheduleEnabled"),
        "should_ignore_cache": _first(doc, "ignore_cache", "ignoreCache", "should_ignore_cache"),
        "is_wwdc_week": _first(doc, "is_wwdc_week", "isWWDCWeek"),
    }
    return AppConfig(
        videos_url=_text(fields, "videos_url"),
        sessions_url=_text(fields, "sessions_url"),
        videos_updated_at=_text(fields, "videos_updated_at"),
        schedule_enabled=_bool(fields, "schedule_enabled"),
        should_ignore_cache=_bool(fields, "should_ignore_cache"),
        is_wwdc_week=_bool(fields, "is_wwdc_week"),
    )


def catalog_records(doc: dict) -> list[dict]:
    """The ``sessions`` array of a catalog document."""
    return [r for r in _array(doc, "sessions", "videos") if isinstance(r, dict)]


def adapt_session(doc: dict) -> Session:
    """Build a Session from a catalog record. User state starts at defaults."""
    focus = doc.get("focus")
    if isinstance(focus, list):
        focus = ", ".join(str(f) for f in focus)
    elif not isinstance(focus, str):
        focus = ""

    images = doc.get("images")
    shelf = images.get("shelf") if isinstance(images, dict) else None

    return Session(
        id=int_field(doc, "id"),
        year=int_field(doc, "year"),
        date=_text(doc, "date"),
        track=_text(doc, "track"),
        focus=focus,
        title=_text(doc, "title"),
        summary=_text(doc, "description"),
        video_url=_text(doc, "url"),
        hd_video_url=_text(doc, "download_hd"),
        slides_url=_text(doc, "slides"),
        shelf_image_url=shelf if isinstance(shelf, str) else "",
    )


def schedule_tracks(doc: dict) -> list[dict]:
    """The ``response.tracks`` array of a schedule document."""
    return [t for t in _array(doc.get("response"), "tracks", "tracks") if isinstance(t, dict)]


def schedule_sessions(doc: dict) -> list[dict]:
    """The ``response.sessions`` array of a schedule document."""
    return [s for s in _array(doc.get("response"), "sessions", "sessions") if isinstance(s, dict)]


def adapt_track(doc: dict) -> Track:
    return Track(
        name=_text(doc, "name"),
        color=_text(doc, "color"),
        dark_color=_text(doc, "darkColor"),
        title_color=_text(doc, "titleColor"),
    )


def adapt_scheduled_session(doc: dict) -> ScheduledSession:
    """
    Build a ScheduledSession from a schedule record.

    Records of type "video" are not live events; they get the far-future
    start time whatever the feed says.
    """
    session_type = _text(doc, "type")
    starts_at = parse_iso_date(doc.get("start_date"))
    if session_type.lower() == "video":
        starts_at = FAR_FUTURE

    return ScheduledSession(
        id=int_field(doc, "id"),
        year=int_field(doc, "year"),
        title=_text(doc, "title"),
        summary=_text(doc, "description"),
        type=session_type,
        track_name=_optional_text(doc, "track"),
        starts_at=starts_at,
        ends_at=parse_iso_date(doc.get("end_date")),
    )


def adapt_live_session_legacy(doc: dict) -> LiveSession:
    """Live stream record from the legacy feed (``stream``/``starts_at``)."""
    return LiveSession(
        id=int_field(doc, "id"),
        title=_text(doc, "title"),
        summary=_text(doc, "description"),
        stream_url=_optional_text(doc, "stream"),
        is_live_right_now=_bool(doc, "isLiveRightNow"),
        starts_at=parse_legacy_date(doc.get("starts_at")),
    )


def adapt_live_session(doc: dict) -> LiveSession:
    """Live stream record from the current feed (``url``/``start_date``/``end_date``)."""
    return LiveSession(
        id=int_field(doc, "id"),
        title=_text(doc, "title"),
        summary=_text(doc, "description"),
        stream_url=_optional_text(doc, "url"),
        is_live_right_now=_bool(doc, "isLiveRightNow"),
        starts_at=parse_iso_date(doc.get("start_date")),
        ends_at=parse_iso_date(doc.get("end_date")),
    )


def adapt_transcript(doc: dict, session_key: str = "") -> Transcript:
    """
    Build a Transcript from a transcript document.

    ``annotations`` and ``timecodes`` are parallel arrays. They are paired
    by position; entries without a partner in the other array, and pairs
    of the wrong type, are dropped.
    """
    lines: list[TranscriptLine] = []

    annotations = doc.get("annotations")
    timecodes = doc.get("timecodes")
    if isinstance(annotations, list) and isinstance(timecodes, list):
        for text, timecode in zip(annotations, timecodes):
            if not isinstance(text, str):
                continue
            if isinstance(timecode, bool) or not isinstance(timecode, (int, float)):
                continue
            lines.append(
                TranscriptLine(transcript_key=session_key, timecode=float(timecode), text=text)
            )

    return Transcript(
        session_key=session_key,
        full_text=_text(doc, "transcript"),
        lines=tuple(lines),
    )
