import sqlite3
from datetime import datetime, timezone

import pytest

from wwdc_library.store.models import (
    FAR_FUTURE,
    AppConfig,
    ScheduledSession,
    Session,
    Track,
    Transcript,
    TranscriptLine,
)
from wwdc_library.store.sqlite_store import (
    CATALOG_STAMP_KEY,
    SCHEMA_VERSION,
    EntityStore,
    PreconditionViolation,
    TransactionCommitFailure,
)


def make_session(session_id, year, **overrides):
    fields = dict(
        id=session_id,
        year=year,
        track="Developer Tools",
        title=f"Session {session_id}",
        summary=f"About session {session_id}",
        hd_video_url=f"https://devstreaming.example.com/{year}/{session_id}_hd_session.mp4",
    )
    fields.update(overrides)
    return Session(**fields)


def make_transcript(key, text="Hello and welcome."):
    return Transcript(
        session_key=key,
        full_text=text,
        lines=(
            TranscriptLine(transcript_key=key, timecode=0.0, text="Hello"),
            TranscriptLine(transcript_key=key, timecode=1.5, text="and welcome."),
        ),
    )


def add_sessions(store, *sessions):
    with store.transaction() as txn:
        for session in sessions:
            txn.upsert_session(session)


class TestTransactions:

    def test_commit_makes_writes_visible(self, store):
        add_sessions(store, make_session(402, 2016))

        session = store.get_session("#2016-402")
        assert session is not None
        assert session.title == "Session 402"
        assert session.transcript is None

    def test_exception_rolls_back_every_write(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as txn:
                txn.upsert_session(make_session(402, 2016))
                txn.upsert_session(make_session(403, 2016))
                raise RuntimeError("boom")

        assert store.list_sessions() == []

    def test_database_error_becomes_commit_failure(self, store):
        add_sessions(store, make_session(402, 2016))
        with store.transaction() as txn:
            txn.add_transcript(make_transcript("#2016-402"))

        with pytest.raises(TransactionCommitFailure):
            with store.transaction() as txn:
                txn.add_transcript(make_transcript("#2016-402", text="Again"))

        assert store.get_transcript("#2016-402").full_text == "Hello and welcome."

    def test_handle_is_unusable_after_the_block(self, store):
        with store.transaction() as txn:
            txn.upsert_session(make_session(402, 2016))

        assert not txn.is_open
        with pytest.raises(PreconditionViolation):
            txn.upsert_session(make_session(403, 2016))
        with pytest.raises(AssertionError):
            txn.get_config()

    def test_reads_inside_transaction_see_own_writes(self, store):
        with store.transaction() as txn:
            txn.upsert_session(make_session(402, 2016))
            assert txn.get_session("#2016-402") is not None
            assert store.get_session("#2016-402") is None


class TestSessions:

    def test_listing_order_is_year_desc_then_id(self, store):
        add_sessions(
            store,
            make_session(410, 2015),
            make_session(402, 2016),
            make_session(101, 2016),
            make_session(1, 2017),
        )

        keys = [s.unique_id for s in store.list_sessions()]
        assert keys == ["#2017-1", "#2016-101", "#2016-402", "#2015-410"]

    def test_filters(self, store):
        add_sessions(
            store,
            make_session(402, 2016, track="Media"),
            make_session(403, 2016),
            make_session(410, 2015),
        )
        store.set_favorite("#2016-403", True)
        store.set_downloaded("#2015-410", True)

        assert [s.unique_id for s in store.list_sessions(year=2016)] == ["#2016-402", "#2016-403"]
        assert [s.unique_id for s in store.list_sessions(track="Media")] == ["#2016-402"]
        assert [s.unique_id for s in store.list_sessions(favorites_only=True)] == ["#2016-403"]
        assert [s.unique_id for s in store.list_sessions(downloaded_only=True)] == ["#2015-410"]

    def test_query_matches_title_summary_and_transcript(self, store):
        add_sessions(
            store,
            make_session(402, 2016, title="What's New in Swift"),
            make_session(403, 2016, summary="Learn about Metal shaders"),
            make_session(404, 2016),
        )
        with store.transaction() as txn:
            txn.add_transcript(make_transcript("#2016-404", text="Today we talk about Xcode"))

        assert [s.unique_id for s in store.list_sessions(query="swift")] == ["#2016-402"]
        assert [s.unique_id for s in store.list_sessions(query="metal")] == ["#2016-403"]
        assert [s.unique_id for s in store.list_sessions(query="xcode")] == ["#2016-404"]
        assert store.list_sessions(query="nothing matches") == []

    def test_upsert_overwrites_existing_row(self, store):
        add_sessions(store, make_session(402, 2016))
        add_sessions(store, make_session(402, 2016, title="Renamed"))

        assert store.get_session("#2016-402").title == "Renamed"
        assert len(store.list_sessions()) == 1

    def test_delete_legacy_sessions_cascades_transcripts(self, store):
        add_sessions(store, make_session(402, 2016), make_session(10101, 2016))
        with store.transaction() as txn:
            txn.add_transcript(make_transcript("#2016-10101"))

        with store.transaction() as txn:
            removed = txn.delete_legacy_sessions()

        assert removed == 1
        assert [s.unique_id for s in store.list_sessions()] == ["#2016-402"]
        assert store.get_transcript("#2016-10101") is None


class TestUserState:

    def test_setters_return_updated_session(self, store):
        add_sessions(store, make_session(402, 2016))

        updated = store.set_favorite("#2016-402", True)
        assert updated.favorite is True
        assert store.get_session("#2016-402").favorite is True

        updated = store.set_progress("#2016-402", 1.7, current_position=95.0)
        assert updated.progress == 1.0
        assert updated.current_position == 95.0
        assert updated.favorite is True

    def test_setters_on_missing_session(self, store):
        assert store.set_favorite("#2016-999", True) is None
        assert store.set_downloaded("#2016-999", True) is None
        assert store.set_progress("#2016-999", 0.5) is None

    def test_downloaded_by_url(self, store):
        session = make_session(402, 2016)
        add_sessions(store, session)

        updated = store.update_downloaded_for_url(session.hd_video_url, True)

        assert updated.unique_id == "#2016-402"
        assert store.get_session("#2016-402").downloaded is True
        assert store.update_downloaded_for_url("https://unknown.example.com/x.mp4", True) is None

    def test_downloaded_by_local_filename(self, store):
        add_sessions(store, make_session(402, 2016), make_session(403, 2016))

        updated = store.update_downloaded_for_local_filename("403_hd_session.mp4", True)

        assert updated.unique_id == "#2016-403"
        assert store.get_session("#2016-403").downloaded is True
        assert store.get_session("#2016-402").downloaded is False
        assert store.update_downloaded_for_local_filename("999_hd.mp4", True) is None


class TestTranscripts:

    def test_transcript_is_attached_to_session(self, store):
        add_sessions(store, make_session(402, 2016))
        with store.transaction() as txn:
            txn.add_transcript(make_transcript("#2016-402"))

        session = store.get_session("#2016-402")
        assert session.transcript.full_text == "Hello and welcome."
        assert [line.text for line in session.transcript.lines] == ["Hello", "and welcome."]
        assert session.transcript.lines[1].transcript_key == "#2016-402"

        assert store.get_session("#2016-402", with_transcript=False).transcript is None
        assert store.has_transcript("#2016-402")

    def test_transcript_requires_existing_session(self, store):
        with pytest.raises(TransactionCommitFailure):
            with store.transaction() as txn:
                txn.add_transcript(make_transcript("#2016-999"))

    def test_keys_missing_transcript(self, store):
        add_sessions(
            store,
            make_session(402, 2016),
            make_session(403, 2016),
            make_session(410, 2015),
        )
        with store.transaction() as txn:
            txn.add_transcript(make_transcript("#2016-402"))

        assert store.session_keys_missing_transcript([2016]) == ["#2016-403"]
        assert store.session_keys_missing_transcript([2015, 2016]) == ["#2016-403", "#2015-410"]
        assert store.session_keys_missing_transcript([]) == []


class TestConfigAndSchedule:

    def test_replace_config_keeps_a_single_row(self, store):
        assert store.get_config() is None

        with store.transaction() as txn:
            txn.replace_config(AppConfig(videos_url="a"))
        with store.transaction() as txn:
            txn.replace_config(AppConfig(videos_url="b", is_wwdc_week=True))

        config = store.get_config()
        assert config == AppConfig(videos_url="b", is_wwdc_week=True)
        with sqlite3.connect(store.db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM app_config").fetchone()[0] == 1

    def test_schedule_round_trip(self, store):
        starts = datetime(2016, 6, 13, 17, 0, tzinfo=timezone.utc)
        ends = datetime(2016, 6, 13, 19, 0, tzinfo=timezone.utc)
        with store.transaction() as txn:
            txn.upsert_track(Track(name="Media", color="#FF0000"))
            txn.upsert_scheduled_session(ScheduledSession(
                id=402, year=2016, type="Session", track_name="Media",
                starts_at=starts, ends_at=ends,
            ))
            txn.upsert_scheduled_session(ScheduledSession(
                id=403, year=2016, type="Video", starts_at=FAR_FUTURE,
            ))

        scheduled = store.get_scheduled_session("#2016-402")
        assert scheduled.starts_at == starts
        assert scheduled.ends_at == ends
        assert scheduled.track_name == "Media"
        assert store.get_scheduled_session("#2016-403").starts_at == FAR_FUTURE
        assert store.get_schedule(make_session(402, 2016)) == scheduled
        assert [t.name for t in store.list_tracks()] == ["Media"]

    def test_scheduled_session_with_unknown_track_is_rejected(self, store):
        with pytest.raises(TransactionCommitFailure):
            with store.transaction() as txn:
                txn.upsert_scheduled_session(
                    ScheduledSession(id=402, year=2016, track_name="Nope")
                )


class TestSchemaVersion:

    def test_new_store_records_current_version(self, store):
        assert store.get_metadata("schema_version") == str(SCHEMA_VERSION)

    def test_upgrade_discards_stored_config(self, store):
        add_sessions(store, make_session(402, 2016))
        with store.transaction() as txn:
            txn.replace_config(AppConfig(videos_url="a"))
            txn.set_metadata(CATALOG_STAMP_KEY, "2016-06-20T10:00:00Z")
            txn.set_metadata("schema_version", str(SCHEMA_VERSION - 1))

        reopened = EntityStore(db_path=store.db_path)

        assert reopened.get_config() is None
        assert reopened.get_metadata(CATALOG_STAMP_KEY) is None
        assert reopened.get_session("#2016-402") is not None
        assert reopened.get_metadata("schema_version") == str(SCHEMA_VERSION)

    def test_current_version_keeps_config(self, store):
        with store.transaction() as txn:
            txn.replace_config(AppConfig(videos_url="a"))

        assert EntityStore(db_path=store.db_path).get_config() == AppConfig(videos_url="a")


def test_stats(store):
    add_sessions(store, make_session(402, 2016), make_session(410, 2015))
    store.set_favorite("#2016-402", True)
    with store.transaction() as txn:
        txn.add_transcript(make_transcript("#2015-410"))

    stats = store.get_stats()

    assert stats["total_sessions"] == 2
    assert stats["total_transcripts"] == 1
    assert stats["favorites"] == 1
    assert stats["downloaded"] == 0
    assert stats["by_year"] == {2016: 1, 2015: 1}
