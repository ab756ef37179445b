"""
Sync package for the local session library.

Fetches the remote config, catalog, schedule and transcripts, merges them
into the entity store, and publishes change and indexing events.
"""

from wwdc_library.sync.client import NetworkEmptyResponse, ServiceClient
from wwdc_library.sync.adapters import ParseShapeMismatch, SyncError
from wwdc_library.sync.events import (
    Event,
    EventBus,
    IndexingStarted,
    IndexingStopped,
    SessionsChanged,
    WWDCWeekEnded,
    WWDCWeekStarted,
)
from wwdc_library.sync.indexer import IndexingProgress, TranscriptIndexer
from wwdc_library.sync.orchestrator import SyncOrchestrator, SyncStats

__all__ = [
    "NetworkEmptyResponse",
    "ServiceClient",
    "ParseShapeMismatch",
    "SyncError",
    "Event",
    "EventBus",
    "IndexingStarted",
    "IndexingStopped",
    "SessionsChanged",
    "WWDCWeekEnded",
    "WWDCWeekStarted",
    "IndexingProgress",
    "TranscriptIndexer",
    "SyncOrchestrator",
    "SyncStats",
]
