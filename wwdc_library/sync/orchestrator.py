"""
Sync orchestrator for the local session library.

Coordinates:
1. App config fetch and comparison with the stored config
2. WWDC week transition events
3. Config replacement (and the one-time legacy session cleanup)
4. Session catalog merge, preserving user state
5. Schedule (tracks, then scheduled sessions) merge
6. Transcript indexing for changed sessions and change notification
7. Catch-up indexing for reloadable years
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Optional

from wwdc_library.config import get_settings
from wwdc_library.store.models import LEGACY_SESSION_ID_THRESHOLD, AppConfig, Session
from wwdc_library.store.sqlite_store import (
    CATALOG_STAMP_KEY,
    LEGACY_CLEANUP_KEY,
    EntityStore,
    TransactionCommitFailure,
)
from wwdc_library.sync.adapters import (
    ParseShapeMismatch,
    adapt_config,
    adapt_scheduled_session,
    adapt_session,
    adapt_track,
    catalog_records,
    int_field,
    schedule_sessions,
    schedule_tracks,
)
from wwdc_library.sync.client import NetworkEmptyResponse, ServiceClient
from wwdc_library.sync.events import (
    EventBus,
    SessionsChanged,
    WWDCWeekEnded,
    WWDCWeekStarted,
)
from wwdc_library.sync.indexer import TranscriptIndexer

logger = logging.getLogger(__name__)

# Legacy records without a duration are placeholders after this year
LEGACY_DURATION_CUTOFF_YEAR = 2015


@dataclass
class SyncStats:
    """Statistics from a sync cycle."""

    config_changed: bool = False
    catalog_unchanged: bool = False
    sessions_created: int = 0
    sessions_updated: int = 0
    sessions_unchanged: int = 0
    sessions_ignored: int = 0
    legacy_sessions_removed: int = 0
    tracks_upserted: int = 0
    scheduled_sessions_upserted: int = 0
    scheduled_sessions_unchanged: int = 0
    transcripts_requested: int = 0
    changed_keys: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Config changed: {self.config_changed}\n"
            f"Catalog unchanged: {self.catalog_unchanged}\n"
            f"Sessions: {self.sessions_created} new, {self.sessions_updated} updated, "
            f"{self.sessions_unchanged} unchanged, {self.sessions_ignored} ignored\n"
            f"Legacy sessions removed: {self.legacy_sessions_removed}\n"
            f"Tracks upserted: {self.tracks_upserted}\n"
            f"Scheduled sessions: {self.scheduled_sessions_upserted} upserted, "
            f"{self.scheduled_sessions_unchanged} unchanged\n"
            f"Transcripts requested: {self.transcripts_requested}\n"
            f"Errors: {len(self.errors)}"
        )


class SyncOrchestrator:
    """
    Reconciles the remote catalog with the local store.

    Usage:
        orchestrator = SyncOrchestrator(store=store, client=client, bus=bus)

        # Fire-and-forget cycle on the sync thread
        orchestrator.refresh()

        # Blocking cycle (CLI, tests)
        stats = orchestrator.sync()

    Cycles never overlap: they run one at a time on a dedicated thread, and
    a refresh() made while a cycle is still queued reuses that cycle.
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        client: Optional[ServiceClient] = None,
        bus: Optional[EventBus] = None,
        indexer: Optional[TranscriptIndexer] = None,
        indexing_enabled: Optional[bool] = None,
        ignored_transcript_years: Optional[list[int]] = None,
        reloadable_years: Optional[list[int]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: EntityStore instance (creates one if not provided)
            client: ServiceClient instance (creates one if not provided)
            bus: EventBus to publish on (creates one if not provided)
            indexer: TranscriptIndexer (creates one if not provided)
            indexing_enabled: Run local transcript indexing (or from settings)
            ignored_transcript_years: Years never indexed (or from settings)
            reloadable_years: Years re-checked for missing transcripts (or from settings)
        """
        settings = get_settings()
        self.store = store or EntityStore()
        self.client = client or ServiceClient()
        self.bus = bus or EventBus()
        self.indexer = indexer or TranscriptIndexer(self.store, self.client, self.bus)

        if indexing_enabled is None:
            indexing_enabled = settings.transcript_indexing_enabled
        self.indexing_enabled = indexing_enabled
        self.ignored_transcript_years = set(
            settings.ignored_transcript_years
            if ignored_transcript_years is None
            else ignored_transcript_years
        )
        self.reloadable_years = (
            settings.reloadable_year_list if reloadable_years is None else reloadable_years
        )

        self.config: Optional[AppConfig] = None

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync")
        self._queue_lock = threading.Lock()
        self._queued: Optional[Future] = None
        self._stop_periodic = threading.Event()
        self._periodic_thread: Optional[threading.Thread] = None

    # Scheduling

    def refresh(self) -> Future:
        """
        Queue a sync cycle on the sync thread.

        Returns:
            Future resolving to the cycle's SyncStats
        """
        with self._queue_lock:
            queued = self._queued
            if queued is not None and not queued.running() and not queued.done():
                logger.debug("Sync cycle already queued")
                return queued
            self._queued = self._executor.submit(self.sync)
            return self._queued

    def start_periodic(self, interval_seconds: float) -> None:
        """Refresh now and then every ``interval_seconds`` until shutdown()."""
        if self._periodic_thread is not None:
            return

        def loop() -> None:
            self.refresh()
            while not self._stop_periodic.wait(interval_seconds):
                self.refresh()

        self._periodic_thread = threading.Thread(
            target=loop, name="sync-periodic", daemon=True
        )
        self._periodic_thread.start()
        logger.info(f"Periodic refresh every {interval_seconds}s")

    def shutdown(self, wait: bool = True) -> None:
        self._stop_periodic.set()
        if self._periodic_thread is not None and wait:
            self._periodic_thread.join()
        self._executor.shutdown(wait=wait)
        self.indexer.shutdown(wait=wait)

    # Sync cycle

    def sync(self) -> SyncStats:
        """
        Run one sync cycle on the calling thread.

        Network and parse failures end the affected step early and are
        recorded in the returned stats; they are never raised.

        Returns:
            SyncStats with results
        """
        stats = SyncStats()

        try:
            fetched = adapt_config(self.client.fetch_config())
        except NetworkEmptyResponse as e:
            self._record_error(stats, f"No data returned for app config: {e}")
            return stats

        existing = self.store.get_config()

        if fetched.is_equal_to(existing):
            logger.info("App config unchanged")
            self.config = existing
            self.reload_transcripts_if_needed(stats)
            return stats

        logger.info("App config changed")

        # Config is adopted only after its catalog has been fetched
        catalog = self._fetch_catalog(fetched, stats)
        if catalog is None:
            return stats

        if not self._adopt_config(fetched, existing, stats):
            return stats

        changed_sessions = self._update_sessions(fetched, catalog, stats)
        changed_schedule = self._update_schedule(fetched, stats)

        if self.indexing_enabled:
            keys = [
                s.unique_id for s in changed_sessions
                if s.year not in self.ignored_transcript_years
            ]
            if keys and self.indexer.index_transcripts(keys):
                stats.transcripts_requested += len(keys)

        stats.changed_keys = list(
            dict.fromkeys([s.unique_id for s in changed_sessions] + changed_schedule)
        )
        self.bus.publish(SessionsChanged(keys=frozenset(stats.changed_keys)))

        self.reload_transcripts_if_needed(stats)
        return stats

    def _adopt_config(
        self, fetched: AppConfig, existing: Optional[AppConfig], stats: SyncStats
    ) -> bool:
        """
        Replace the stored config and publish any WWDC week transition.

        The legacy category is purged with the first config adopted by a
        store; later adoptions leave stored sessions alone.
        """
        was_wwdc_week = existing.is_wwdc_week if existing else False

        try:
            with self.store.transaction() as txn:
                txn.replace_config(fetched)
                if txn.get_metadata(LEGACY_CLEANUP_KEY) is None:
                    stats.legacy_sessions_removed = txn.delete_legacy_sessions()
                    txn.set_metadata(LEGACY_CLEANUP_KEY, "1")
        except TransactionCommitFailure as e:
            self._record_error(stats, f"Unable to save new configuration: {e}")
            return False

        self.config = fetched
        stats.config_changed = True

        if stats.legacy_sessions_removed:
            logger.info(f"Removed {stats.legacy_sessions_removed} legacy sessions")

        if fetched.is_wwdc_week and not was_wwdc_week:
            logger.info("WWDC week started")
            self.bus.publish(WWDCWeekStarted())
        elif was_wwdc_week and not fetched.is_wwdc_week:
            logger.info("WWDC week ended")
            self.bus.publish(WWDCWeekEnded())

        return True

    def _is_ignored_record(self, record: dict) -> bool:
        """Legacy placeholders without a duration are skipped."""
        return (
            int_field(record, "id") > LEGACY_SESSION_ID_THRESHOLD
            and int_field(record, "duration") == 0
            and int_field(record, "year") > LEGACY_DURATION_CUTOFF_YEAR
        )

    def _fetch_catalog(self, config: AppConfig, stats: SyncStats) -> Optional[dict]:
        """
        Fetch the catalog named by ``config``.

        Returns:
            The catalog document, or None if it was unavailable or malformed
        """
        logger.info("Fetching videos...")
        try:
            doc = self.client.fetch_catalog(config.videos_url)
            catalog_records(doc)
        except (NetworkEmptyResponse, ParseShapeMismatch) as e:
            self._record_error(stats, f"Catalog unavailable: {e}")
            return None
        return doc

    def _update_sessions(
        self, config: AppConfig, doc: dict, stats: SyncStats
    ) -> list[Session]:
        """
        Merge a fetched catalog into the store.

        The catalog stamp is only recorded when every session was written,
        so a catalog with failed writes is processed again next time.

        Returns:
            Sessions created or changed
        """
        updated = doc.get("updated")
        updated = updated if isinstance(updated, str) else ""

        if (
            updated
            and not config.should_ignore_cache
            and updated == self.store.get_metadata(CATALOG_STAMP_KEY)
        ):
            logger.info("Video list did not change")
            stats.catalog_unchanged = True
            return []

        changed: list[Session] = []
        failures = 0
        for record in catalog_records(doc):
            if self._is_ignored_record(record):
                stats.sessions_ignored += 1
                continue

            session = adapt_session(record)
            try:
                outcome = self._merge_session(session)
            except TransactionCommitFailure as e:
                failures += 1
                self._record_error(stats, f"Unable to commit session {session.unique_id}: {e}")
                continue

            if outcome == "created":
                stats.sessions_created += 1
                changed.append(session)
            elif outcome == "updated":
                stats.sessions_updated += 1
                changed.append(session)
            else:
                stats.sessions_unchanged += 1

        if updated and not failures:
            try:
                with self.store.transaction() as txn:
                    txn.set_metadata(CATALOG_STAMP_KEY, updated)
            except TransactionCommitFailure as e:
                self._record_error(stats, f"Unable to record catalog stamp: {e}")

        logger.info(
            f"Videos updated: {stats.sessions_created} new, "
            f"{stats.sessions_updated} changed, {stats.sessions_unchanged} unchanged"
        )
        return changed

    def _merge_session(self, session: Session) -> Optional[str]:
        """
        Upsert one session, carrying over the stored user state.

        Returns:
            "created", "updated", or None when nothing changed
        """
        with self.store.transaction() as txn:
            existing = txn.get_session(session.unique_id)
            if existing is None:
                txn.upsert_session(session)
                return "created"

            if existing.is_semantically_equal(session):
                return None

            txn.upsert_session(session.with_user_state(existing.user_state))
            return "updated"

    def _update_schedule(self, config: AppConfig, stats: SyncStats) -> list[str]:
        """
        Merge the schedule into the store, tracks first.

        Returns:
            Keys of scheduled sessions created or changed
        """
        if not config.schedule_enabled:
            return []

        logger.info("Updating schedule...")
        try:
            doc = self.client.fetch_schedule(config.sessions_url)
            track_records = schedule_tracks(doc)
        except (NetworkEmptyResponse, ParseShapeMismatch) as e:
            self._record_error(stats, f"Schedule unavailable: {e}")
            return []

        for record in track_records:
            track = adapt_track(record)
            if not track.name:
                continue
            try:
                with self.store.transaction() as txn:
                    txn.upsert_track(track)
                stats.tracks_upserted += 1
            except TransactionCommitFailure as e:
                self._record_error(stats, f"Error writing track {track.name}: {e}")

        try:
            session_records = schedule_sessions(doc)
        except ParseShapeMismatch as e:
            self._record_error(stats, f"Schedule unavailable: {e}")
            return []

        changed: list[str] = []
        for record in session_records:
            scheduled = adapt_scheduled_session(record)
            try:
                with self.store.transaction() as txn:
                    if scheduled.track_name and txn.get_track(scheduled.track_name) is None:
                        scheduled = replace(scheduled, track_name=None)

                    existing = txn.get_scheduled_session(scheduled.unique_id)
                    if existing is not None and existing.is_semantically_equal(scheduled):
                        stats.scheduled_sessions_unchanged += 1
                        continue

                    txn.upsert_scheduled_session(scheduled)
            except TransactionCommitFailure as e:
                self._record_error(
                    stats, f"Error writing scheduled session {scheduled.unique_id}: {e}"
                )
                continue

            stats.scheduled_sessions_upserted += 1
            changed.append(scheduled.unique_id)

        return changed

    # Transcripts

    def reload_transcripts_if_needed(self, stats: Optional[SyncStats] = None) -> int:
        """
        Index sessions from the reloadable years that still lack a transcript.

        Returns:
            Number of sessions queued for indexing
        """
        if not self.indexing_enabled or not self.reloadable_years:
            return 0

        keys = self.store.session_keys_missing_transcript(self.reloadable_years)
        if not keys or not self.indexer.index_transcripts(keys):
            return 0

        if stats is not None:
            stats.transcripts_requested += len(keys)
        return len(keys)

    def index_missing_transcripts(self) -> int:
        """
        Index every stored session without a transcript, except ignored years.

        Returns:
            Number of sessions queued for indexing
        """
        years = [
            year for year in self.store.get_stats()["by_year"]
            if year not in self.ignored_transcript_years
        ]
        keys = self.store.session_keys_missing_transcript(years)
        if not keys or not self.indexer.index_transcripts(keys):
            return 0
        return len(keys)

    def get_status(self) -> dict:
        """Get current store and indexing status."""
        status = self.store.get_stats()
        progress = self.indexer.progress
        status["indexing"] = (
            {"total": progress.total, "completed": progress.completed}
            if progress else None
        )
        return status

    def _record_error(self, stats: SyncStats, message: str) -> None:
        logger.error(message)
        stats.errors.append(message)
