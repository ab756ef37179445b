"""
Entity store package for the local session library.

Provides immutable entity values and a SQLite-backed store with scoped
write transactions.
"""

from wwdc_library.store.models import (
    AppConfig,
    LiveSession,
    ScheduledSession,
    Session,
    Track,
    Transcript,
    TranscriptLine,
    UserState,
    session_key,
)
from wwdc_library.store.sqlite_store import (
    EntityStore,
    PreconditionViolation,
    StoreError,
    StoreTransaction,
    TransactionCommitFailure,
)

__all__ = [
    "AppConfig",
    "LiveSession",
    "ScheduledSession",
    "Session",
    "Track",
    "Transcript",
    "TranscriptLine",
    "UserState",
    "session_key",
    "EntityStore",
    "PreconditionViolation",
    "StoreError",
    "StoreTransaction",
    "TransactionCommitFailure",
]
