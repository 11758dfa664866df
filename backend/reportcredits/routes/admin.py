"""Report Credits Admin Routes

Endpoints:
- POST /api/admin/credits/{user_id}/add - Grant credits
- POST /api/admin/credits/{user_id}/deduct - Remove credits
- GET /api/admin/reconciliation - Jobs waiting for settlement reconciliation
- POST /api/admin/reconciliation/run - Run the reconciliation sweep now
- POST /api/admin/reconciliation/{job_id} - Reconcile one job
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel
import logging

from middleware import admin_route_guard
from reportcredits.bootstrap import ReportCreditServices
from reportcredits.errors import InsufficientBalance, InvalidAmount, LedgerPersistenceError
from reportcredits.models.ledger import LedgerResult, TransactionKind
from reportcredits.routes.deps import get_services
from reportcredits.services.reconciliation_service import ReconciliationOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Credits Admin"], dependencies=[Depends(admin_route_guard)])


class CreditAdjustmentRequest(BaseModel):
    amount: Decimal
    reason: str
    reference_id: Optional[str] = None


# ============================================================================
# Credit adjustments
# ============================================================================

@router.post("/credits/{user_id}/add", response_model=LedgerResult)
async def add_credits(
    user_id: str,
    body: CreditAdjustmentRequest,
    admin: dict = Depends(admin_route_guard),
    services: ReportCreditServices = Depends(get_services),
):
    """Grant credits to a user (recorded as a PURCHASE)."""
    try:
        result = await services.ledger.credit(
            user_id,
            body.amount,
            f"Admin grant: {body.reason}",
            reference_id=body.reference_id,
            kind=TransactionKind.PURCHASE,
            metadata={"admin_id": admin.get("sub"), "reason": body.reason},
        )
    except InvalidAmount as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerPersistenceError as e:
        logger.error(f"Admin credit for {user_id} not recorded: {e}")
        raise HTTPException(status_code=503, detail="Credit ledger temporarily unavailable")

    logger.info(f"Admin {admin.get('sub')} added {body.amount} credits to {user_id}: {body.reason}")
    return result


@router.post("/credits/{user_id}/deduct", response_model=LedgerResult)
async def deduct_credits(
    user_id: str,
    body: CreditAdjustmentRequest,
    admin: dict = Depends(admin_route_guard),
    services: ReportCreditServices = Depends(get_services),
):
    """Remove credits from a user. Credits held by running reports cannot be removed."""
    try:
        result = await services.ledger.debit(
            user_id,
            body.amount,
            f"Admin deduction: {body.reason}",
            reference_id=body.reference_id,
            metadata={"admin_id": admin.get("sub"), "reason": body.reason},
        )
    except (InvalidAmount, InsufficientBalance) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerPersistenceError as e:
        logger.error(f"Admin debit for {user_id} not recorded: {e}")
        raise HTTPException(status_code=503, detail="Credit ledger temporarily unavailable")

    logger.info(f"Admin {admin.get('sub')} deducted {body.amount} credits from {user_id}: {body.reason}")
    return result


# ============================================================================
# Reconciliation
# ============================================================================

@router.get("/reconciliation")
async def list_reconciliation_required(
    limit: int = Query(100, ge=1, le=500),
    services: ReportCreditServices = Depends(get_services),
):
    jobs = await services.reconciliation.list_pending(limit=limit)
    return {"jobs": jobs, "count": len(jobs)}


@router.post("/reconciliation/run")
async def run_reconciliation(
    limit: int = Query(100, ge=1, le=500),
    services: ReportCreditServices = Depends(get_services),
):
    counts = await services.reconciliation.run_sweep(limit=limit)
    return {"message": "Reconciliation sweep completed", **counts}


@router.post("/reconciliation/{job_id}", response_model=ReconciliationOutcome)
async def reconcile_job(
    job_id: str,
    services: ReportCreditServices = Depends(get_services),
):
    outcome = await services.reconciliation.reconcile_job(job_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return outcome
