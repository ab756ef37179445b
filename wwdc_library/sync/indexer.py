"""
Background transcript indexing.

Fetches transcripts for sessions that do not have one yet and stores them
as the session's owned child. At most one indexing pass runs at a time;
requests made while a pass is running are dropped.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from wwdc_library.config import get_settings
from wwdc_library.store.sqlite_store import (
    EntityStore,
    PreconditionViolation,
    TransactionCommitFailure,
)
from wwdc_library.sync.adapters import adapt_transcript
from wwdc_library.sync.client import NetworkEmptyResponse, ServiceClient
from wwdc_library.sync.events import EventBus, IndexingStarted, IndexingStopped

logger = logging.getLogger(__name__)


@dataclass
class IndexingProgress:
    """Progress of the current indexing pass."""

    total: int
    completed: int = 0

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    @property
    def finished(self) -> bool:
        return self.completed >= self.total


class TranscriptIndexer:
    """
    Indexes transcripts on a bounded thread pool.

    Usage:
        indexer = TranscriptIndexer(store, client, bus)
        indexer.index_transcripts(["#2016-402", "#2016-403"])
        indexer.wait()
    """

    def __init__(
        self,
        store: EntityStore,
        client: ServiceClient,
        bus: EventBus,
        max_workers: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.client = client
        self.bus = bus

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.indexing_max_workers,
            thread_name_prefix="transcript-indexer",
        )
        self._lock = threading.Lock()
        self._progress: Optional[IndexingProgress] = None
        self._idle = threading.Event()
        self._idle.set()

    @property
    def is_indexing(self) -> bool:
        with self._lock:
            return self._progress is not None

    @property
    def progress(self) -> Optional[IndexingProgress]:
        """Snapshot of the running pass, or None when idle."""
        with self._lock:
            return replace(self._progress) if self._progress else None

    def index_transcripts(self, keys: Iterable[str]) -> bool:
        """
        Start indexing transcripts for the given session keys.

        Args:
            keys: Session unique ids; duplicates are collapsed

        Returns:
            True if a pass was started, False if one is already running or
            there is nothing to do
        """
        keys = list(dict.fromkeys(keys))

        with self._lock:
            if self._progress is not None:
                logger.debug("Transcript indexing already in progress, request dropped")
                return False
            if not keys:
                return False
            self._progress = IndexingProgress(total=len(keys))
            self._idle.clear()

        logger.info(f"Indexing transcripts for {len(keys)} sessions")
        self.bus.publish(IndexingStarted(total=len(keys)))

        try:
            for key in keys:
                self._executor.submit(self._run, key)
        except RuntimeError as e:
            logger.error(f"Unable to schedule transcript indexing: {e}")
            self._abandon()
            return False
        return True

    def _abandon(self) -> None:
        """End the running pass early; already-submitted items no longer count."""
        with self._lock:
            progress = self._progress
            self._progress = None

        if progress is not None:
            self.bus.publish(
                IndexingStopped(total=progress.total, completed=progress.completed)
            )
        self._idle.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no pass is running. Returns False on timeout."""
        return self._idle.wait(timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run(self, key: str) -> None:
        try:
            self._index_one(key)
        except PreconditionViolation:
            logger.critical(f"Store misuse while indexing {key}", exc_info=True)
            raise
        except Exception:
            logger.exception(f"Error indexing transcript for session {key}")
        finally:
            self._complete_one()

    def _index_one(self, key: str) -> bool:
        """
        Fetch and store the transcript of one session.

        Returns:
            True if a new transcript was stored
        """
        # TODO: re-index when the transcript source changes; only missing ones are fetched today
        session = self.store.get_session(key, with_transcript=False)
        if session is None:
            logger.warning(f"Session not found for indexing: {key}")
            return False

        if self.store.has_transcript(key):
            logger.debug(f"Transcript already indexed: {key}")
            return False

        try:
            doc = self.client.fetch_transcript(session.year, session.id)
        except NetworkEmptyResponse as e:
            logger.warning(f"No transcript data for session {key}: {e}")
            return False

        transcript = adapt_transcript(doc, session_key=key)

        try:
            with self.store.transaction() as txn:
                if txn.get_session(key) is None or txn.has_transcript(key):
                    return False
                txn.add_transcript(transcript)
        except TransactionCommitFailure as e:
            logger.error(f"Error indexing transcript for session {key}: {e}")
            return False

        logger.debug(f"Indexed transcript for {key} ({len(transcript.lines)} lines)")
        return True

    def _complete_one(self) -> None:
        with self._lock:
            progress = self._progress
            if progress is None:
                return
            progress.completed += 1
            logger.debug(f"Completed: {progress.completed} Total: {progress.total}")
            if not progress.finished:
                return
            self._progress = None

        logger.info("Transcript indexing finished")
        self.bus.publish(IndexingStopped(total=progress.total, completed=progress.completed))
        self._idle.set()
