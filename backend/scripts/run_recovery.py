import argparse
import asyncio
import logging
import sys
import uuid
from datetime import datetime, timedelta
from pathlib import Path

"""
Replay inventory deductions for completed sales that never produced a stock
movement (e.g. after an outage).

Examples:
- `python scripts/run_recovery.py --store-id <uuid> --hours 24`
- `python scripts/run_recovery.py --store-id <uuid> --from 2024-05-01T00:00 --to 2024-05-02T00:00`

Times are UTC. Running it twice over the same window recovers nothing the
second time.
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import settings  # noqa: E402
from services.engine import InventoryEngine  # noqa: E402


async def main(store_id: uuid.UUID, from_time: datetime, to_time: datetime, dry_run: bool) -> int:
    engine = InventoryEngine.build()
    try:
        if dry_run:
            pending = await engine.recovery.find_unprocessed_sales(store_id, from_time, to_time)
            print(f"{len(pending)} sales without inventory movements between {from_time} and {to_time}:")
            for sale in pending:
                print(f"  {sale.receipt_number} ({sale.created_at:%Y-%m-%d %H:%M}) {len(sale.lines)} line(s)")
            return 0

        summary = await engine.run_recovery(store_id, from_time, to_time)
    finally:
        engine.shutdown()

    print(summary.summary)
    for err in summary.errors:
        print(f"  ! {err}")
    if summary.health is not None:
        for item in summary.health.negative_stock:
            print(f"  negative stock: {item}")
        for item in summary.health.low_stock:
            print(f"  low stock: {item}")
    return 0 if summary.success else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--store-id", type=uuid.UUID, required=True)
    parser.add_argument("--from", dest="from_time", type=datetime.fromisoformat, help="Window start (UTC, ISO format)")
    parser.add_argument("--to", dest="to_time", type=datetime.fromisoformat, help="Window end (UTC, ISO format)")
    parser.add_argument("--hours", type=float, default=24.0, help="Window length ending now when --from is not given")
    parser.add_argument("--dry-run", action="store_true", help="Only list the sales that would be recovered")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    to_time = args.to_time or datetime.utcnow()
    from_time = args.from_time or (to_time - timedelta(hours=args.hours))
    if to_time < from_time:
        parser.error("--to must not be before --from")

    sys.exit(asyncio.run(main(args.store_id, from_time, to_time, args.dry_run)))
