#!/usr/bin/env python3
"""
Create the dividend engine's tables, optionally with a small demo tenant.

Usage:
    python3 scripts/init_db.py
    python3 scripts/init_db.py --reset --seed-demo

The demo tenant ("demo-coop") is a passenger cooperative with a closed
ledger for January 2024, three customers with 3/2/2 completed trips and a
20% dividend rate, so a January distribution of its 1000-pence pool pays
428/286/286.
"""

import argparse
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEMO_TENANT = "demo-coop"


def _seed_demo(session) -> None:
    from patronage_kernel.models import (
        LedgerClose,
        ServiceCostEntry,
        TenantDividendSettings,
        Trip,
        TripStatus,
    )

    session.add(
        TenantDividendSettings(
            tenant_id=DEMO_TENANT,
            dividend_rate=Decimal("0.2"),
            cooperative_model="passenger",
            schedule_enabled=True,
            schedule_frequency="monthly",
            currency="GBP",
        )
    )
    session.add(
        ServiceCostEntry(
            tenant_id=DEMO_TENANT,
            service_date=date(2024, 1, 31),
            revenue=8000,
            operating_costs=3000,
            currency="GBP",
            description="January fares and running costs",
        )
    )
    session.add(LedgerClose(tenant_id=DEMO_TENANT, closed_through=date(2024, 1, 31)))

    trips = {"cust-A": 3, "cust-B": 2, "cust-C": 2}
    for customer_id, count in trips.items():
        for day in range(1, count + 1):
            session.add(
                Trip(
                    tenant_id=DEMO_TENANT,
                    customer_id=customer_id,
                    driver_id="driver-1",
                    status=TripStatus.COMPLETED.value,
                    completed_at=datetime(2024, 1, day, 9, 0, tzinfo=timezone.utc),
                )
            )


def main() -> int:
    parser = argparse.ArgumentParser(description="Create dividend engine tables")
    parser.add_argument("--config", type=Path, default=None, help="YAML config overlay")
    parser.add_argument("--reset", action="store_true", help="Drop all tables first")
    parser.add_argument("--seed-demo", action="store_true", help="Insert the demo tenant")
    args = parser.parse_args()

    from patronage_config import get_active_config
    from patronage_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        session_scope,
    )

    config = get_active_config(args.config)
    init_engine_from_url(config.database.url, echo=config.database.echo)

    if args.reset:
        drop_tables()
        print("Dropped all tables")
    create_tables()
    print(f"Tables ready at {config.database.url}")

    if args.seed_demo:
        with session_scope() as session:
            _seed_demo(session)
        print(f"Seeded demo tenant '{DEMO_TENANT}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
