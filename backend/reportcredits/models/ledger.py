"""Credit Ledger Models

Account balances and the append-only transaction log.

Balance semantics:
- balance: credits the user owns
- available: balance minus open reservation holds
- holds: transaction_id -> held amount for every PENDING reservation

A reservation never touches balance; only confirm (or a direct debit) does.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid

from reportcredits.models.money import ZERO, to_decimal, to_decimal128


class TransactionKind(str, Enum):
    """What a ledger entry represents. Amounts are always positive."""
    PURCHASE = "PURCHASE"  # Top-up or admin grant
    USAGE = "USAGE"        # Paid analysis or admin deduction
    REFUND = "REFUND"      # Administrative refund credited back


class TransactionStatus(str, Enum):
    """Ledger entry status"""
    PENDING = "PENDING"        # Reserved, balance untouched
    COMPLETED = "COMPLETED"    # Applied to balance
    REFUNDED = "REFUNDED"      # Reservation released, balance untouched


TERMINAL_TRANSACTION_STATUSES = frozenset({
    TransactionStatus.COMPLETED,
    TransactionStatus.REFUNDED,
})


def new_transaction_id() -> str:
    return f"CTX-{uuid.uuid4().hex[:12].upper()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(BaseModel):
    """Per-user credit account. One per user, created lazily."""
    user_id: str

    balance: Decimal = ZERO
    available: Decimal = ZERO
    holds: Dict[str, Decimal] = Field(default_factory=dict)

    total_purchased: Decimal = ZERO
    total_used: Decimal = ZERO

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = {"extra": "ignore"}

    @field_validator("balance", "available", "total_purchased", "total_used", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return to_decimal(value)

    @field_validator("holds", mode="before")
    @classmethod
    def _coerce_holds(cls, value):
        return {tx_id: to_decimal(amount) for tx_id, amount in (value or {}).items()}

    @property
    def reserved(self) -> Decimal:
        return sum(self.holds.values(), ZERO)


class CreditTransaction(BaseModel):
    """Individual ledger entry.

    Every credit movement is recorded for audit.
    """
    transaction_id: str = Field(default_factory=new_transaction_id)
    user_id: str

    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus

    description: str
    reference_id: Optional[str] = None  # e.g. report_<job_id>, stripe payment id
    metadata: Dict[str, Any] = Field(default_factory=dict)

    # Terminal status a settlement has claimed but not finished writing
    settling: Optional[TransactionStatus] = None
    settlement_note: Optional[str] = None  # Refund reason carried by the claim
    settled_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"extra": "ignore"}

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return to_decimal(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value):
        return value or {}

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump()
        doc["amount"] = to_decimal128(self.amount)
        doc["kind"] = self.kind.value
        doc["status"] = self.status.value
        doc["settling"] = self.settling.value if self.settling else None
        return doc

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING


class LedgerResult(BaseModel):
    """Outcome of a direct credit/debit."""
    new_balance: Decimal
    transaction_id: str


class ReservationResult(BaseModel):
    """Outcome of reserve(). A declined reservation has no transaction."""
    accepted: bool
    transaction_id: Optional[str] = None
    balance: Decimal
    available: Decimal
    message: Optional[str] = None


class SettlementResult(BaseModel):
    """Outcome of confirm()/refund().

    applied is False when the call found the transaction already settled.
    """
    transaction_id: str
    status: TransactionStatus
    new_balance: Decimal
    applied: bool = True
    message: Optional[str] = None
