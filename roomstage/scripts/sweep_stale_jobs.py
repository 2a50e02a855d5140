#!/usr/bin/env python3
"""
Stale Job Sweep
---------------
Fails staging jobs stuck in 'processing' longer than the threshold. Async
jobs get one last vendor poll before they are timed out.

Run from cron, e.g. every 15 minutes:
    */15 * * * * cd /path/to/roomstage && python -m roomstage.scripts.sweep_stale_jobs >> /var/log/roomstage-sweep.log 2>&1

Options:
    # Default threshold (STALE_JOB_TIMEOUT_MINUTES, 60)
    python -m roomstage.scripts.sweep_stale_jobs

    # Custom threshold
    python -m roomstage.scripts.sweep_stale_jobs --max-age-minutes 120

Environment variables:
    DATABASE_URL: PostgreSQL connection string
    REPLICATE_API_TOKEN: needed for the final poll of async jobs
"""
import argparse
import sys
import traceback
from datetime import datetime, timezone


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Fail staging jobs stuck in processing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--max-age-minutes",
        type=int,
        default=None,
        help="Age threshold in minutes (default: STALE_JOB_TIMEOUT_MINUTES)",
    )
    args = parser.parse_args(argv)

    if args.max_age_minutes is not None and args.max_age_minutes < 1:
        print("ERROR: --max-age-minutes must be at least 1")
        return 1

    start_time = datetime.now(timezone.utc)
    print(f"[{start_time.isoformat()}] Starting stale job sweep...")

    try:
        from roomstage.db import USE_DB
        from roomstage.services.reconciler import reconciler

        if not USE_DB:
            print("ERROR: DATABASE_URL not set")
            return 1

        summary = reconciler.sweep_stale_jobs(args.max_age_minutes)
    except Exception as e:
        print(f"ERROR: Sweep failed: {e}")
        traceback.print_exc()
        return 2

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print("=== Sweep Results ===")
    print(f"  Checked:   {summary['checked']}")
    print(f"  Completed: {summary['completed']} (vendor had finished)")
    print(f"  Failed:    {summary['failed']} (vendor reported failure)")
    print(f"  Timed out: {summary['timed_out']}")
    print(f"Sweep completed in {duration:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
