"""Audit photo tip totals against the ledger.

Every applied tip adds its units to ``photos.tip_units_total`` in the same
transaction as its ledger row, so the two must always agree. This reports
any photo where they do not, plus the most recent entries for a channel.

Usage:
    python ledger_audit.py                  # Check every channel
    python ledger_audit.py <channel_id>     # Check one channel and list its recent entries
"""

import asyncio
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

from shared.database import DatabaseManager, PoolConfig
from shared.repositories import LedgerRepository

load_dotenv(Path(__file__).resolve().parent.parent / "api" / ".env")


async def main() -> None:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL not set")
        sys.exit(1)

    channel_id = sys.argv[1] if len(sys.argv) > 1 else None
    ssl = os.getenv("DATABASE_SSL", "true").lower() not in ("0", "false", "no")
    db = DatabaseManager(database_url, PoolConfig(min_size=1, max_size=2, ssl=ssl))
    await db.connect()

    try:
        repo = LedgerRepository(db.pool)

        print("=" * 60)
        print(f"LEDGER AUDIT ({channel_id or 'all channels'})")
        print("=" * 60)

        drift = await repo.list_tip_drift(channel_id)
        if drift:
            for row in drift:
                print(
                    f"    [DRIFT] photo {row['photo_id']} (channel {row['channel_id']}): "
                    f"total={row['tip_units_total']} ledger={row['ledger_units']}"
                )
        else:
            print("    [OK] Photo totals match the ledger")

        if channel_id:
            print("\nRECENT ENTRIES:")
            for entry in await repo.list_entries(channel_id, limit=20):
                print(
                    f"    #{entry.id} {entry.applied_at:%Y-%m-%d %H:%M:%S} {entry.kind.value:<15} "
                    f"{entry.product_sku:<12} units={entry.units} photo={entry.photo_id} "
                    f"payer={entry.payer_id}"
                )

        if drift:
            sys.exit(2)
    finally:
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
