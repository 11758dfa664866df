"""
Shared job runner for scheduled background jobs.
Used by server (scheduler), admin (manual run) and scripts.
Each run_* returns a dict with "message" (and optionally "count") for admin toast.
"""
import logging

logger = logging.getLogger(__name__)


async def run_settlement_reconciliation(limit: int = 100):
    """Resume claimed settlements and reconcile jobs flagged REQUIRED."""
    try:
        from database import get_db_context
        from reportcredits.bootstrap import build_services

        async with get_db_context() as db:
            services = build_services(db, handlers=[])
            counts = await services.reconciliation.run_sweep(limit=limit)

        count = counts["resumed"] + counts["resolved"]
        logger.info(f"Settlement reconciliation job completed: {counts}")
        return {
            "message": (
                f"Settlements reconciled: {count} "
                f"({counts['manual_review']} need review, {counts['errors']} errors)"
            ),
            "count": count,
            **counts,
        }
    except Exception as e:
        logger.error(f"Settlement reconciliation job failed: {e}")
        raise
