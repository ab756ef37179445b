#!/usr/bin/env python3
"""
Session library sync CLI.

Fetches the remote config, catalog and schedule, merges them into the local
store, and indexes transcripts for new or changed sessions.

Usage:
    python scripts/sync_catalog.py                  # One sync cycle, waits for indexing
    python scripts/sync_catalog.py --no-wait        # Don't wait for transcript indexing
    python scripts/sync_catalog.py --index-missing  # Index every session lacking a transcript
    python scripts/sync_catalog.py --status         # Show library stats
    python scripts/sync_catalog.py --config         # Show settings
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from wwdc_library.config import get_settings
from wwdc_library.sync.events import IndexingStarted, IndexingStopped, SessionsChanged
from wwdc_library.sync.orchestrator import SyncOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def show_status():
    """Display current library status."""
    print("\n=== Library Status ===\n")

    try:
        orchestrator = SyncOrchestrator()
        status = orchestrator.get_status()
        orchestrator.shutdown()
    except Exception as e:
        print(f"Error getting status: {e}")
        return

    print(f"Sessions:           {status.get('total_sessions', 0)}")
    print(f"Transcripts:        {status.get('total_transcripts', 0)}")
    print(f"Tracks:             {status.get('total_tracks', 0)}")
    print(f"Scheduled sessions: {status.get('total_scheduled_sessions', 0)}")
    print(f"Favorites:          {status.get('favorites', 0)}")
    print(f"Downloaded:         {status.get('downloaded', 0)}")

    by_year = status.get("by_year", {})
    if by_year:
        print(f"\nBy year:")
        for year, count in by_year.items():
            print(f"  {year}: {count}")


def show_config():
    """Display current sync configuration."""
    settings = get_settings()

    print("\n=== Sync Configuration ===\n")
    print(f"Config URL: {settings.index_url}")
    print(f"Transcript service: {settings.transcript_base_url}")
    print(f"Database: {settings.database_path}")
    print(f"\nTranscripts:")
    print(f"  Indexing enabled: {settings.transcript_indexing_enabled}")
    print(f"  Workers: {settings.indexing_max_workers}")
    print(f"  Ignored years: {settings.ignored_transcript_years or 'None'}")
    print(f"  Reloadable years: {settings.reloadable_year_list or 'None'}")


def run_sync(index_missing: bool = False, wait: bool = True):
    """Run one sync cycle."""
    print("\n" + "=" * 60)
    print("Session Library Sync")
    print("=" * 60)

    orchestrator = SyncOrchestrator()

    orchestrator.bus.subscribe(
        SessionsChanged,
        lambda e: print(f"Changed sessions: {len(e.keys)}"),
    )
    orchestrator.bus.subscribe(
        IndexingStarted,
        lambda e: print(f"Indexing {e.total} transcripts..."),
    )
    orchestrator.bus.subscribe(
        IndexingStopped,
        lambda e: print(f"Indexed {e.completed}/{e.total} transcripts"),
    )

    try:
        if index_missing:
            queued = orchestrator.index_missing_transcripts()
            print(f"Queued {queued} sessions for indexing")
        else:
            stats = orchestrator.sync()

            print("\n" + "=" * 60)
            print("SYNC COMPLETE")
            print("=" * 60)
            print(stats)

            if stats.errors:
                print("\nErrors:")
                for error in stats.errors[:10]:
                    print(f"  - {error}")
                if len(stats.errors) > 10:
                    print(f"  ... and {len(stats.errors) - 10} more errors")

        if wait and orchestrator.indexer.is_indexing:
            orchestrator.indexer.wait()

    except Exception as e:
        print(f"\nSync failed: {e}")
        logger.exception("Sync error")
        sys.exit(1)

    finally:
        orchestrator.shutdown(wait=wait)


def main():
    parser = argparse.ArgumentParser(
        description="Sync the local WWDC session library",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/sync_catalog.py                  # Full sync
  python scripts/sync_catalog.py --index-missing  # Catch up on transcripts
  python scripts/sync_catalog.py --status         # Show current status
        """,
    )

    parser.add_argument(
        "--index-missing",
        action="store_true",
        help="Index transcripts for every session that lacks one (no sync)",
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Exit without waiting for transcript indexing to finish",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show library status and exit",
    )
    parser.add_argument(
        "--config",
        action="store_true",
        help="Show current configuration and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.status:
        show_status()
        return

    if args.config:
        show_config()
        return

    run_sync(index_missing=args.index_missing, wait=not args.no_wait)


if __name__ == "__main__":
    main()
