"""Reservation Manager

Reserve first, settle later:
1. reserve  - hold the cost and write a PENDING USAGE transaction
2. (slow, unreliable external work runs)
3. confirm  - hold becomes a real deduction, transaction COMPLETED
   refund   - hold is released, transaction REFUNDED

The balance is only ever decremented in confirm. A refund never touches the
balance because a PENDING reservation never did.

Settlement goes claim -> account write -> status write. The claim
(transaction.settling) is what makes confirm/refund effective at most once,
and lets resume_settlement() finish a settlement that was interrupted.
"""

from typing import Optional, Dict, Any
import logging

from reportcredits.errors import (
    CreditError,
    HoldMissing,
    InvalidTransactionState,
    ReservationPersistenceFailure,
    TransactionNotFound,
)
from reportcredits.models.ledger import (
    CreditTransaction,
    ReservationResult,
    SettlementResult,
    TransactionKind,
    TransactionStatus,
)
from reportcredits.models.money import to_decimal
from reportcredits.services.ledger_store import LedgerStore, validate_amount

logger = logging.getLogger(__name__)

INSUFFICIENT_BALANCE_MESSAGE = "Insufficient credit balance"
DEFAULT_REFUND_REASON = "Analysis failed"


class ReservationManager:
    """Reserve -> confirm | refund for uncertain-outcome work."""

    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    async def reserve(
        self,
        user_id: str,
        amount,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReservationResult:
        """Set amount aside for user_id without touching the balance.

        Returns accepted=False with no side effect when available balance is
        short. Raises ReservationPersistenceFailure if the store fails.
        """
        amount = validate_amount(amount)
        transaction = CreditTransaction(
            user_id=user_id,
            kind=TransactionKind.USAGE,
            amount=amount,
            status=TransactionStatus.PENDING,
            description=description,
            reference_id=reference_id,
            metadata=metadata or {},
        )

        try:
            await self.ledger.ensure_account(user_id)
            account = await self.ledger.place_hold(user_id, transaction.transaction_id, amount)
            if account is None:
                current = await self.ledger.get_account(user_id)
        except CreditError:
            raise
        except Exception as e:
            logger.error(f"Reservation of {amount} for user {user_id} failed in store: {e}")
            raise ReservationPersistenceFailure(f"Could not reserve credits for user {user_id}") from e

        if account is None:
            logger.warning(
                f"Reservation declined for user {user_id}: available {current.available}, needs {amount}"
            )
            return ReservationResult(
                accepted=False,
                balance=current.balance,
                available=current.available,
                message=INSUFFICIENT_BALANCE_MESSAGE,
            )

        try:
            await self.ledger.insert_transaction(transaction)
        except Exception as e:
            logger.error(f"Failed to record reservation {transaction.transaction_id}, releasing hold: {e}")
            try:
                await self.ledger.release_hold(user_id, transaction.transaction_id, amount)
            except Exception:
                logger.exception(
                    f"Hold {transaction.transaction_id} of {amount} left on account {user_id}"
                )
            raise ReservationPersistenceFailure(f"Could not record reservation for user {user_id}") from e

        logger.info(
            f"Reserved {amount} for user {user_id} (transaction {transaction.transaction_id}, ref {reference_id})"
        )
        return ReservationResult(
            accepted=True,
            transaction_id=transaction.transaction_id,
            balance=to_decimal(account["balance"]),
            available=to_decimal(account["available"]),
        )

    async def confirm(self, transaction_id: str) -> SettlementResult:
        """Apply a reservation to the balance. Rejects anything not PENDING."""
        transaction = await self._load(transaction_id)
        if not transaction.is_pending or transaction.settling is not None:
            raise InvalidTransactionState(transaction_id, self._state_of(transaction))

        claimed = await self.ledger.claim_settlement(transaction_id, TransactionStatus.COMPLETED)
        if claimed is None:
            current = await self._load(transaction_id)
            raise InvalidTransactionState(transaction_id, self._state_of(current))

        return await self._complete(claimed)

    async def refund(self, transaction_id: str, reason: str = DEFAULT_REFUND_REASON) -> SettlementResult:
        """Release a reservation.

        Calling this on a transaction that already left PENDING is a no-op
        that reports the state it was in.
        """
        transaction = await self._load(transaction_id)
        if not transaction.is_pending or transaction.settling is not None:
            return await self._already_settled(transaction)

        claimed = await self.ledger.claim_settlement(transaction_id, TransactionStatus.REFUNDED, note=reason)
        if claimed is None:
            return await self._already_settled(await self._load(transaction_id))

        return await self._release(claimed)

    async def resume_settlement(self, transaction_id: str) -> SettlementResult:
        """Finish a settlement whose claim was written but not completed."""
        transaction = await self._load(transaction_id)
        if not transaction.is_pending:
            return await self._already_settled(transaction)
        if transaction.settling == TransactionStatus.COMPLETED:
            return await self._complete(transaction)
        if transaction.settling == TransactionStatus.REFUNDED:
            return await self._release(transaction)
        raise InvalidTransactionState(
            transaction_id,
            transaction.status,
            f"Transaction {transaction_id} has no settlement in progress",
        )

    # ------------------------------------------------------------------

    async def _complete(self, transaction: CreditTransaction) -> SettlementResult:
        account = await self.ledger.consume_hold(transaction.user_id, transaction.transaction_id, transaction.amount)
        if account is None:
            if not await self.ledger.hold_was_consumed(transaction.user_id, transaction.transaction_id):
                # Claim stays open so the sweep keeps reporting it
                logger.error(
                    f"Confirm of {transaction.transaction_id} for user {transaction.user_id} found no hold "
                    f"of {transaction.amount} to consume"
                )
                raise HoldMissing(transaction.transaction_id, transaction.user_id)
            # Hold already consumed by an earlier attempt of this settlement
            logger.warning(f"Hold for {transaction.transaction_id} already consumed, finishing status write")
            new_balance = (await self.ledger.get_account(transaction.user_id)).balance
        else:
            new_balance = to_decimal(account["balance"])

        await self.ledger.finish_settlement(transaction.transaction_id, TransactionStatus.COMPLETED)
        logger.info(
            f"Confirmed {transaction.amount} for user {transaction.user_id} "
            f"(transaction {transaction.transaction_id}). New balance: {new_balance}"
        )
        return SettlementResult(
            transaction_id=transaction.transaction_id,
            status=TransactionStatus.COMPLETED,
            new_balance=new_balance,
        )

    async def _release(self, transaction: CreditTransaction) -> SettlementResult:
        account = await self.ledger.release_hold(transaction.user_id, transaction.transaction_id, transaction.amount)
        if account is None:
            logger.warning(f"Hold for {transaction.transaction_id} already released, finishing status write")
            new_balance = (await self.ledger.get_account(transaction.user_id)).balance
        else:
            new_balance = to_decimal(account["balance"])

        reason = transaction.settlement_note or DEFAULT_REFUND_REASON
        await self.ledger.finish_settlement(
            transaction.transaction_id,
            TransactionStatus.REFUNDED,
            description=f"{transaction.description} (cancelled: {reason})",
        )
        logger.info(
            f"Refunded reservation {transaction.transaction_id} of {transaction.amount} "
            f"for user {transaction.user_id}: {reason}"
        )
        return SettlementResult(
            transaction_id=transaction.transaction_id,
            status=TransactionStatus.REFUNDED,
            new_balance=new_balance,
        )

    async def _already_settled(self, transaction: CreditTransaction) -> SettlementResult:
        state = self._state_of(transaction)
        logger.info(f"Transaction {transaction.transaction_id} already {state.value}, refund skipped")
        account = await self.ledger.get_account(transaction.user_id)
        return SettlementResult(
            transaction_id=transaction.transaction_id,
            status=transaction.status,
            new_balance=account.balance,
            applied=False,
            message=f"Transaction already {state.value}",
        )

    async def _load(self, transaction_id: str) -> CreditTransaction:
        transaction = await self.ledger.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction

    @staticmethod
    def _state_of(transaction: CreditTransaction) -> TransactionStatus:
        return transaction.settling if transaction.is_pending and transaction.settling else transaction.status
