#!/usr/bin/env python3
"""
Run the scheduled dividend distributions that are due today.

Intended for cron (e.g. daily at 02:00).  For each tenant with scheduled
distributions enabled, computes the previous month's or quarter's
distributions unless they already exist, and finalizes them when the
tenant has auto_finalize set.

Usage:
    python3 scripts/run_scheduled_distributions.py
    python3 scripts/run_scheduled_distributions.py --config prod.yaml --date 2024-04-01

Exit status is 0 when every tenant succeeded or was skipped, 1 otherwise.
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Run due scheduled dividend distributions")
    parser.add_argument("--config", type=Path, default=None, help="YAML config overlay")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Run as if today were this date (YYYY-MM-DD)",
    )
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    from patronage_config import get_active_config
    from patronage_kernel.db.engine import get_session_factory, init_engine_from_url
    from patronage_kernel.db.immutability import register_immutability_listeners
    from patronage_kernel.logging_config import configure_logging
    from patronage_services.wiring import build_scheduler

    configure_logging(level=getattr(logging, args.log_level.upper(), logging.INFO))
    config = get_active_config(args.config)
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        sqlite_busy_timeout_ms=db.sqlite_busy_timeout_ms,
    )
    register_immutability_listeners()

    scheduler = build_scheduler(config, get_session_factory())
    try:
        report = scheduler.run_due(args.date)
    finally:
        scheduler.close()

    print(f"Run date:  {report.run_date}")
    print(f"Computed:  {len(report.computed)}")
    print(f"Finalized: {len(report.finalized)}")
    print(f"Skipped:   {len(report.skipped)}")
    for tenant_id, code in sorted(report.failed.items()):
        print(f"FAILED     {tenant_id}: {code}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
