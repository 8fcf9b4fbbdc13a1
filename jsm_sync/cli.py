"""
Command Line Interface
Runs one incremental sync and prints a summary.
"""

import argparse
import sys

from jsm_sync.sync_pipeline import SyncError, run_sync
from jsm_sync.utils.logger import setup_logging, get_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Sync Jira Service Management tickets to the warehouse')
    parser.add_argument(
        '--since',
        help='Lower time bound, ISO 8601 UTC (e.g. 2024-01-01T00:00:00Z); defaults to SINCE or one hour ago'
    )
    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Enable verbose output'
    )
    return parser


def main(argv=None):
    """Main entry point for the sync command."""
    args = build_parser().parse_args(argv)
    
    setup_logging(verbose=args.verbose)
    logger = get_logger(__name__)
    
    try:
        result = run_sync(since=args.since)
    except SyncError as e:
        logger.error(f"Fatal error in sync job: stage={e.stage} error={e.message}")
        print(f"\nError ({e.stage}): {e.message}")
        sys.exit(1)
    
    print(f"\n{'='*50}")
    print("Sync Run Complete")
    print(f"{'='*50}")
    print(f"Since: {result.since}")
    print(f"Fetched: {result.fetched}")
    print(f"Loaded to staging: {result.loaded}")
    if result.merge:
        print(f"Updated: {result.merge.updated}")
        print(f"Inserted: {result.merge.inserted}")
    else:
        print("Merge: skipped (nothing staged)")


if __name__ == '__main__':
    main()
