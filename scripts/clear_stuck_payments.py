#!/usr/bin/env python3
"""
Resolve or clear pending checkouts that outlived the retention window.

A pending marker blocks new payments for its connection. Markers whose
webhook never fired are reconciled against the provider one last time:
settled ones are recorded, everything else is cleared so the user can
pay again.

Usage:
  python scripts/clear_stuck_payments.py           # reconcile and clear
  python scripts/clear_stuck_payments.py --dry-run # only list stuck markers
  # Requires DATABASE_URL and BILLING_API_URL in .env (or export)
"""
import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(_root, ".env"))

# Add project root to path
sys.path.insert(0, _root)

from sqlalchemy import select  # noqa: E402

from agaspay.core.events import event_bus  # noqa: E402
from agaspay.database import AsyncSessionLocal, close_db  # noqa: E402
from agaspay.models.payment import PendingPaymentMarker  # noqa: E402
from agaspay.services.billing_api import BillingApiClient  # noqa: E402
from agaspay.services.reconciliation_service import ReconciliationService  # noqa: E402
from agaspay.utils.time import get_utc_now  # noqa: E402


async def clear_stuck_payments(dry_run: bool) -> int:
    async with BillingApiClient() as api, AsyncSessionLocal() as db:
        reconciler = ReconciliationService(api, event_bus)
        now = get_utc_now()
        result = await db.execute(
            select(PendingPaymentMarker)
            .where(PendingPaymentMarker.created_at < now - reconciler.retention)
            .order_by(PendingPaymentMarker.created_at)
        )
        stuck = result.scalars().all()
        if not stuck:
            print("No stuck payments found.")
            return 0

        print(f"Found {len(stuck)} stuck payment(s):")
        for marker in stuck:
            print(f"  - Connection: {marker.connection_id}")
            print(f"    Bill: {marker.bill_id}  Reference: {marker.external_reference}")
            print(f"    Amount: {marker.amount}  Since: {marker.created_at:%Y-%m-%d %H:%M}")

        if dry_run:
            return len(stuck)

        for outcome in await reconciler.sweep_expired(db, now=now):
            print(f"  {outcome.connection_id}: {outcome.outcome.value}")
        print("Users can now retry payments.")
        return len(stuck)


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--dry-run", action="store_true", help="list stuck payments without clearing them")
    args = parser.parse_args()

    async def run():
        try:
            await clear_stuck_payments(args.dry_run)
        finally:
            await close_db()

    asyncio.run(run())


if __name__ == "__main__":
    main()
