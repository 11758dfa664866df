"""
Reconcile credit settlements left behind after a job outcome was fixed.

Usage (from backend/):
  python -m scripts.reconcile_settlements                # full sweep
  python -m scripts.reconcile_settlements --list         # show jobs needing reconciliation
  python -m scripts.reconcile_settlements --job-id <id>  # reconcile one job
"""
import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database


async def run(job_id: str = None, list_only: bool = False, limit: int = 100) -> bool:
    from reportcredits.bootstrap import build_services

    services = build_services(database.get_db(), handlers=[])
    if list_only:
        jobs = await services.reconciliation.list_pending(limit=limit)
        if not jobs:
            print("No jobs need reconciliation")
        for job in jobs:
            print(f"{job.job_id} status={job.status.value} tx={job.credit_transaction_id} note={job.reconciliation_note}")
        return True
    if job_id:
        outcome = await services.reconciliation.reconcile_job(job_id)
        if outcome is None:
            print(f"Job {job_id} not found")
            return False
        print(f"Job {job_id}: {outcome.reconciliation_status.value} - {outcome.message}")
        return outcome.resolved
    counts = await services.reconciliation.run_sweep(limit=limit)
    print(
        f"Resumed {counts['resumed']}, resolved {counts['resolved']}, "
        f"manual review {counts['manual_review']}, errors {counts['errors']}"
    )
    return counts["errors"] == 0


def main():
    parser = argparse.ArgumentParser(description="Reconcile analysis job credit settlements")
    parser.add_argument("--job-id", help="Analysis job ID")
    parser.add_argument("--list", action="store_true", help="Only list jobs flagged for reconciliation")
    parser.add_argument("--limit", type=int, default=100, help="Maximum jobs to process")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            return await run(job_id=args.job_id, list_only=args.list, limit=args.limit)
        finally:
            await database.close()

    ok = asyncio.run(_())
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
