"""Ledger Store

Persistent per-user balance plus the append-only transaction log.

Handles:
- Lazy account creation
- Direct credit/debit (purchases, admin adjustments, legacy pay-now path)
- Hold primitives for the reservation saga (place/consume/release)
- Settlement claims on transactions

Every account mutation is a single conditional update on one document, so
the balance check and the change it guards cannot interleave with another
writer.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List
import logging

from pymongo import ReturnDocument

from reportcredits.errors import (
    InsufficientBalance,
    InvalidAmount,
    LedgerPersistenceError,
)
from reportcredits.models.ledger import (
    Account,
    CreditTransaction,
    LedgerResult,
    TransactionKind,
    TransactionStatus,
)
from reportcredits.models.money import ZERO, is_positive_amount, to_decimal, to_decimal128

logger = logging.getLogger(__name__)


def validate_amount(amount) -> Decimal:
    """Return amount as a quantized Decimal or raise InvalidAmount."""
    try:
        value = to_decimal(amount)
    except ValueError as e:
        raise InvalidAmount(str(e)) from e
    if not is_positive_amount(value):
        raise InvalidAmount(f"Amount must be positive, got {amount!r}")
    return value


class LedgerStore:
    """Credit accounts and transactions on MongoDB."""

    def __init__(self, db):
        self.db = db

    @property
    def accounts(self):
        return self.db.credit_accounts

    @property
    def transactions(self):
        return self.db.credit_transactions

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def ensure_account(self, user_id: str) -> Dict[str, Any]:
        """Return the account document, creating a zero account if missing."""
        now = datetime.now(timezone.utc)
        zero = to_decimal128(ZERO)
        return await self.accounts.find_one_and_update(
            {"user_id": user_id},
            {
                "$setOnInsert": {
                    "balance": zero,
                    "available": zero,
                    "holds": {},
                    "consumed": {},
                    "total_purchased": zero,
                    "total_used": zero,
                    "created_at": now,
                    "updated_at": now,
                }
            },
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def get_account(self, user_id: str) -> Account:
        doc = await self.ensure_account(user_id)
        return Account(**doc)

    async def get_balance(self, user_id: str) -> Decimal:
        account = await self.get_account(user_id)
        return account.balance

    # ------------------------------------------------------------------
    # Direct credit/debit (no uncertain external step)
    # ------------------------------------------------------------------

    async def credit(
        self,
        user_id: str,
        amount,
        description: str,
        reference_id: Optional[str] = None,
        kind: TransactionKind = TransactionKind.PURCHASE,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerResult:
        """Add credits and record a COMPLETED PURCHASE/REFUND entry."""
        if kind == TransactionKind.USAGE:
            raise ValueError("credit() records PURCHASE or REFUND entries only")
        amount = validate_amount(amount)
        await self.ensure_account(user_id)

        now = datetime.now(timezone.utc)
        transaction = CreditTransaction(
            user_id=user_id,
            kind=kind,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            description=description,
            reference_id=reference_id,
            metadata=metadata or {},
            settled_at=now,
        )
        delta = to_decimal128(amount)
        account = await self.accounts.find_one_and_update(
            {"user_id": user_id},
            {
                "$inc": {"balance": delta, "available": delta, "total_purchased": delta},
                "$set": {"updated_at": now},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        await self._record_or_revert(
            transaction,
            revert={
                "$inc": {
                    "balance": to_decimal128(-amount),
                    "available": to_decimal128(-amount),
                    "total_purchased": to_decimal128(-amount),
                }
            },
        )

        new_balance = to_decimal(account["balance"])
        logger.info(f"Credited {amount} to user {user_id} ({kind.value}). New balance: {new_balance}")
        return LedgerResult(new_balance=new_balance, transaction_id=transaction.transaction_id)

    async def debit(
        self,
        user_id: str,
        amount,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerResult:
        """Deduct credits immediately and record a COMPLETED USAGE entry.

        Checked against available balance so money held by an open
        reservation can never be spent twice.
        """
        amount = validate_amount(amount)
        await self.ensure_account(user_id)

        now = datetime.now(timezone.utc)
        transaction = CreditTransaction(
            user_id=user_id,
            kind=TransactionKind.USAGE,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            description=description,
            reference_id=reference_id,
            metadata=metadata or {},
            settled_at=now,
        )
        account = await self.accounts.find_one_and_update(
            {"user_id": user_id, "available": {"$gte": to_decimal128(amount)}},
            {
                "$inc": {
                    "balance": to_decimal128(-amount),
                    "available": to_decimal128(-amount),
                    "total_used": to_decimal128(amount),
                },
                "$set": {"updated_at": now},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if account is None:
            current = await self.get_account(user_id)
            logger.warning(
                f"Insufficient credits for user {user_id}. Has {current.available} available, needs {amount}"
            )
            raise InsufficientBalance(user_id, current.available, amount)

        await self._record_or_revert(
            transaction,
            revert={
                "$inc": {
                    "balance": to_decimal128(amount),
                    "available": to_decimal128(amount),
                    "total_used": to_decimal128(-amount),
                }
            },
        )

        new_balance = to_decimal(account["balance"])
        logger.info(f"Debited {amount} from user {user_id}. New balance: {new_balance}")
        return LedgerResult(new_balance=new_balance, transaction_id=transaction.transaction_id)

    async def _record_or_revert(self, transaction: CreditTransaction, revert: Dict[str, Any]) -> None:
        """Insert the ledger entry; undo the account change if that fails."""
        try:
            await self.transactions.insert_one(transaction.to_document())
        except Exception as e:
            logger.error(
                f"Failed to record transaction {transaction.transaction_id} for user "
                f"{transaction.user_id}, reverting balance change: {e}"
            )
            revert.setdefault("$set", {})["updated_at"] = datetime.now(timezone.utc)
            try:
                await self.accounts.update_one({"user_id": transaction.user_id}, revert)
            except Exception:
                logger.exception(
                    f"Revert failed: account {transaction.user_id} keeps {transaction.kind.value} of "
                    f"{transaction.amount} with no transaction {transaction.transaction_id}"
                )
            raise LedgerPersistenceError(
                f"Could not record {transaction.kind.value} of {transaction.amount} for user {transaction.user_id}"
            ) from e

    # ------------------------------------------------------------------
    # Holds (reservation saga)
    # ------------------------------------------------------------------

    async def place_hold(self, user_id: str, transaction_id: str, amount: Decimal) -> Optional[Dict[str, Any]]:
        """Compare-and-set: hold amount if available covers it.

        Returns the account after the hold, or None when declined.
        """
        return await self.accounts.find_one_and_update(
            {"user_id": user_id, "available": {"$gte": to_decimal128(amount)}},
            {
                "$inc": {"available": to_decimal128(-amount)},
                "$set": {
                    f"holds.{transaction_id}": to_decimal128(amount),
                    "updated_at": datetime.now(timezone.utc),
                },
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def consume_hold(self, user_id: str, transaction_id: str, amount: Decimal) -> Optional[Dict[str, Any]]:
        """Turn a hold into a real deduction. None if the hold is gone.

        Leaves a consumed.<transaction_id> marker so a retried settlement can
        tell a consumed hold from one that was released or never placed.
        """
        return await self.accounts.find_one_and_update(
            {"user_id": user_id, f"holds.{transaction_id}": {"$exists": True}},
            {
                "$inc": {
                    "balance": to_decimal128(-amount),
                    "total_used": to_decimal128(amount),
                },
                "$unset": {f"holds.{transaction_id}": ""},
                "$set": {
                    f"consumed.{transaction_id}": to_decimal128(amount),
                    "updated_at": datetime.now(timezone.utc),
                },
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def hold_was_consumed(self, user_id: str, transaction_id: str) -> bool:
        doc = await self.accounts.find_one(
            {"user_id": user_id, f"consumed.{transaction_id}": {"$exists": True}},
            {"_id": 0, "user_id": 1},
        )
        return doc is not None

    async def release_hold(self, user_id: str, transaction_id: str, amount: Decimal) -> Optional[Dict[str, Any]]:
        """Drop a hold and give the amount back to available. None if the hold is gone."""
        return await self.accounts.find_one_and_update(
            {"user_id": user_id, f"holds.{transaction_id}": {"$exists": True}},
            {
                "$inc": {"available": to_decimal128(amount)},
                "$unset": {f"holds.{transaction_id}": ""},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def insert_transaction(self, transaction: CreditTransaction) -> None:
        await self.transactions.insert_one(transaction.to_document())

    async def get_transaction(self, transaction_id: str) -> Optional[CreditTransaction]:
        doc = await self.transactions.find_one({"transaction_id": transaction_id}, {"_id": 0})
        return CreditTransaction(**doc) if doc else None

    async def claim_settlement(
        self,
        transaction_id: str,
        target: TransactionStatus,
        note: Optional[str] = None,
    ) -> Optional[CreditTransaction]:
        """Mark a PENDING transaction as being settled to target.

        Only one caller can win the claim. Returns None if the transaction is
        not PENDING or already claimed.
        """
        doc = await self.transactions.find_one_and_update(
            {"transaction_id": transaction_id, "status": TransactionStatus.PENDING.value, "settling": None},
            {"$set": {"settling": target.value, "settlement_note": note}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        return CreditTransaction(**doc) if doc else None

    async def finish_settlement(
        self,
        transaction_id: str,
        target: TransactionStatus,
        description: Optional[str] = None,
    ) -> bool:
        """Flip a claimed transaction to its terminal status."""
        update: Dict[str, Any] = {
            "status": target.value,
            "settling": None,
            "settled_at": datetime.now(timezone.utc),
        }
        if description is not None:
            update["description"] = description
        result = await self.transactions.update_one(
            {
                "transaction_id": transaction_id,
                "status": TransactionStatus.PENDING.value,
                "settling": target.value,
            },
            {"$set": update},
        )
        return result.modified_count == 1

    async def list_claimed_transactions(self, limit: int = 100) -> List[CreditTransaction]:
        """PENDING transactions whose settlement was claimed but never finished."""
        cursor = self.transactions.find(
            {"status": TransactionStatus.PENDING.value, "settling": {"$ne": None}},
            {"_id": 0},
        ).sort("created_at", 1).limit(limit)
        return [CreditTransaction(**doc) for doc in await cursor.to_list(limit)]

    async def list_transactions(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
    ) -> List[CreditTransaction]:
        """Transaction history for a user, newest first."""
        query: Dict[str, Any] = {"user_id": user_id}
        if kind:
            query["kind"] = kind.value
        if status:
            query["status"] = status.value

        cursor = self.transactions.find(query, {"_id": 0}).sort("created_at", -1).skip(offset).limit(limit)
        return [CreditTransaction(**doc) for doc in await cursor.to_list(limit)]
