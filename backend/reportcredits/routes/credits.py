"""Report Credits Routes

Endpoints:
- GET /api/credits/balance - Get balance, available and reserved credits
- GET /api/credits/account - Get full account
- GET /api/credits/history - Get transaction history
- GET /api/credits/pricing - Get active report prices
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel
import logging

from reportcredits.bootstrap import ReportCreditServices
from reportcredits.models.ledger import Account, TransactionKind, TransactionStatus
from reportcredits.models.pricing import ServicePricing
from reportcredits.routes.deps import get_current_user_id, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["Credits"])


class BalanceResponse(BaseModel):
    balance: Decimal
    available: Decimal
    reserved: Decimal


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    services: ReportCreditServices = Depends(get_services),
):
    """Get credit balance.

    available is what a new report can reserve; reserved is held by reports
    still in progress.
    """
    try:
        account = await services.ledger.get_account(user_id)
        return BalanceResponse(
            balance=account.balance,
            available=account.available,
            reserved=account.reserved,
        )
    except Exception as e:
        logger.error(f"Failed to get balance: {e}")
        raise HTTPException(status_code=500, detail="Failed to get balance")


@router.get("/account", response_model=Account)
async def get_account(
    user_id: str = Depends(get_current_user_id),
    services: ReportCreditServices = Depends(get_services),
):
    try:
        return await services.ledger.get_account(user_id)
    except Exception as e:
        logger.error(f"Failed to get account: {e}")
        raise HTTPException(status_code=500, detail="Failed to get account")


@router.get("/history")
async def get_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    kind: Optional[str] = None,
    status: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    services: ReportCreditServices = Depends(get_services),
):
    """Get credit transaction history, newest first."""
    try:
        tx_kind = None
        if kind:
            try:
                tx_kind = TransactionKind(kind)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid transaction kind: {kind}")

        tx_status = None
        if status:
            try:
                tx_status = TransactionStatus(status)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid transaction status: {status}")

        transactions = await services.ledger.list_transactions(
            user_id=user_id,
            limit=limit,
            offset=offset,
            kind=tx_kind,
            status=tx_status,
        )

        return {
            "transactions": transactions,
            "limit": limit,
            "offset": offset,
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get history: {e}")
        raise HTTPException(status_code=500, detail="Failed to get history")


@router.get("/pricing", response_model=List[ServicePricing])
async def get_pricing(services: ReportCreditServices = Depends(get_services)):
    """Get active report prices.

    No auth required - for display on pricing page.
    """
    return await services.catalog.list_prices(active_only=True)
