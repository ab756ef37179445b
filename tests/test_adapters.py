from datetime import datetime, timedelta, timezone

import pytest

from wwdc_library.store.models import FAR_FUTURE
from wwdc_library.sync.adapters import (
    ParseShapeMismatch,
    adapt_config,
    adapt_live_session,
    adapt_live_session_legacy,
    adapt_scheduled_session,
    adapt_session,
    adapt_track,
    adapt_transcript,
    catalog_records,
    int_field,
    parse_iso_date,
    parse_legacy_date,
    schedule_sessions,
    schedule_tracks,
)

from conftest import session_record


class TestConfigAdapter:

    def test_camel_case_document(self):
        config = adapt_config({
            "videosURL": "https://example.com/videos.json",
            "sessionsURL": "https://example.com/sessions.json",
            "videosUpdatedAt": "2016-06-20",
            "scheduleEnabled": True,
            "ignoreCache": False,
            "isWWDCWeek": True,
        })

        assert config.videos_url == "https://example.com/videos.json"
        assert config.sessions_url == "https://example.com/sessions.json"
        assert config.videos_updated_at == "2016-06-20"
        assert config.schedule_enabled is True
        assert config.should_ignore_cache is False
        assert config.is_wwdc_week is True

    def test_snake_case_document_and_defaults(self):
        config = adapt_config({"videos_url": "v", "ignore_cache": "true"})

        assert config.videos_url == "v"
        assert config.sessions_url == ""
        assert config.should_ignore_cache is True
        assert config.schedule_enabled is False


class TestSessionAdapter:

    def test_full_record(self):
        session = adapt_session(session_record(402, 2016))

        assert session.unique_id == "#2016-402"
        assert session.focus == "macOS, iOS"
        assert session.summary == "About session 402"
        assert session.hd_video_url.endswith("402_hd_session.mp4")
        assert session.shelf_image_url.endswith("402.jpg")
        assert session.favorite is False

    def test_missing_fields_fall_back_to_empty_text(self):
        session = adapt_session({"id": "7", "year": 2014})

        assert session.id == 7
        assert session.title == ""
        assert session.focus == ""
        assert session.video_url == ""
        assert session.shelf_image_url == ""
        assert session.hd_url is None

    def test_integer_fields_accept_numeric_text(self):
        assert int_field({"duration": "0.0"}, "duration") == 0
        assert int_field({"duration": "3600"}, "duration") == 3600
        assert int_field({"duration": 12.7}, "duration") == 12
        assert int_field({"duration": "n/a"}, "duration") == 0
        assert int_field({"duration": "inf"}, "duration") == 0
        assert int_field({}, "duration") == 0

    def test_catalog_without_sessions_array(self):
        with pytest.raises(ParseShapeMismatch):
            catalog_records({"updated": "x"})


class TestTranscriptAdapter:

    def test_extra_annotation_is_dropped(self):
        transcript = adapt_transcript(
            {"transcript": "a b c", "annotations": ["a", "b", "c"], "timecodes": [1.0, 2.0]},
            session_key="#2016-402",
        )

        assert [(line.text, line.timecode) for line in transcript.lines] == [
            ("a", 1.0),
            ("b", 2.0),
        ]
        assert all(line.transcript_key == "#2016-402" for line in transcript.lines)
        assert transcript.full_text == "a b c"

    def test_extra_timecode_is_dropped(self):
        transcript = adapt_transcript({"annotations": ["a"], "timecodes": [1, 2, 3]})
        assert [(line.text, line.timecode) for line in transcript.lines] == [("a", 1.0)]

    def test_duplicate_annotations_keep_their_own_timecodes(self):
        transcript = adapt_transcript({"annotations": ["ok", "ok"], "timecodes": [1.0, 9.0]})
        assert [line.timecode for line in transcript.lines] == [1.0, 9.0]

    def test_missing_arrays_give_no_lines(self):
        transcript = adapt_transcript({"transcript": "only text"})
        assert transcript.lines == ()
        assert transcript.full_text == "only text"


class TestDates:

    def test_legacy_format(self):
        parsed = parse_legacy_date("2016-06-13T17:00:00Z")
        assert parsed == datetime(2016, 6, 13, 17, 0, tzinfo=timezone.utc)

    def test_iso_format(self):
        parsed = parse_iso_date("2017-06-05T10:00:00-07:00")
        assert parsed == datetime(2017, 6, 5, 17, 0, tzinfo=timezone.utc)
        assert parse_iso_date("2017-06-05T10:00:00-0700") == parsed

    def test_wrong_shape_yields_none(self):
        assert parse_legacy_date("2017-06-05T10:00:00-07:00") is None
        assert parse_iso_date("2016-06-13T17:00:00Z") is None
        assert parse_iso_date(None) is None
        assert parse_legacy_date("") is None


class TestScheduleAdapters:

    def test_video_type_gets_far_future_start(self):
        scheduled = adapt_scheduled_session({
            "id": 402,
            "year": 2016,
            "type": "Video",
            "track": "Developer Tools",
            "start_date": "2016-06-14T10:00:00-07:00",
            "end_date": "2016-06-14T11:00:00-07:00",
        })

        assert scheduled.starts_at == FAR_FUTURE
        assert scheduled.ends_at == datetime(2016, 6, 14, 11, 0, tzinfo=timezone(timedelta(hours=-7)))
        assert scheduled.track_name == "Developer Tools"
        assert not scheduled.is_live()

    def test_session_type_keeps_parsed_start(self):
        scheduled = adapt_scheduled_session({
            "id": 101,
            "year": 2016,
            "type": "Session",
            "start_date": "2016-06-13T10:00:00-07:00",
        })

        assert scheduled.starts_at == datetime(2016, 6, 13, 17, 0, tzinfo=timezone.utc)
        assert scheduled.ends_at is None
        assert scheduled.track_name is None

    def test_track(self):
        track = adapt_track({"name": "Media", "color": "#FF0000", "darkColor": "#330000"})
        assert track.name == "Media"
        assert track.dark_color == "#330000"
        assert track.title_color == ""

    def test_schedule_arrays(self):
        doc = {"response": {"tracks": [{"name": "Media"}], "sessions": []}}
        assert schedule_tracks(doc) == [{"name": "Media"}]
        assert schedule_sessions(doc) == []

        with pytest.raises(ParseShapeMismatch):
            schedule_tracks({"response": {}})
        with pytest.raises(ParseShapeMismatch):
            schedule_sessions({})


class TestLiveSessionAdapters:

    def test_legacy_feed(self):
        live = adapt_live_session_legacy({
            "id": 1,
            "title": "Keynote",
            "stream": "https://live.example.com/keynote.m3u8",
            "starts_at": "2016-06-13T17:00:00Z",
            "isLiveRightNow": True,
        })

        assert live.stream_url == "https://live.example.com/keynote.m3u8"
        assert live.starts_at == datetime(2016, 6, 13, 17, 0, tzinfo=timezone.utc)
        assert live.is_live_right_now
        assert live.summary == ""

    def test_current_feed(self):
        live = adapt_live_session({
            "id": 2,
            "url": "https://live.example.com/sotu.m3u8",
            "start_date": "2017-06-05T14:00:00-07:00",
            "end_date": "2017-06-05T16:00:00-07:00",
        })

        assert live.stream_url == "https://live.example.com/sotu.m3u8"
        assert live.ends_at - live.starts_at == timedelta(hours=2)
        assert live.is_live_right_now is False

    def test_feed_shape_mismatch_gives_null_dates(self):
        live = adapt_live_session({"id": 3, "start_date": "2016-06-13T17:00:00Z"})
        assert live.starts_at is None
        assert live.stream_url is None
