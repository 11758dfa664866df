"""Reconciliation Service

Settles the jobs whose ledger entry was left behind after the user-facing
outcome was fixed (reconciliation_status=REQUIRED), and finishes settlements
that were claimed but never written.

Rules per job:
- COMPLETED job, PENDING transaction -> confirm (resume if already claimed)
- FAILED job, PENDING transaction    -> refund (resume if already claimed)
- Transaction already matches the job -> RESOLVED
- Money moved the other way           -> stays REQUIRED for manual review
"""

from typing import Optional, Dict, List
import logging

from pydantic import BaseModel

from reportcredits.models.jobs import (
    AnalysisJob,
    JobStatus,
    ReconciliationStatus,
    RefundStatus,
)
from reportcredits.models.ledger import CreditTransaction, TransactionStatus
from reportcredits.services.job_repository import JobRepository
from reportcredits.services.ledger_store import LedgerStore
from reportcredits.services.reservation_service import ReservationManager

logger = logging.getLogger(__name__)

# Transaction status each terminal job outcome implies
EXPECTED_SETTLEMENT = {
    JobStatus.COMPLETED: TransactionStatus.COMPLETED,
    JobStatus.FAILED: TransactionStatus.REFUNDED,
}


class ReconciliationOutcome(BaseModel):
    job_id: str
    transaction_id: Optional[str] = None
    resolved: bool
    reconciliation_status: ReconciliationStatus
    transaction_status: Optional[TransactionStatus] = None
    message: str


class ReconciliationService:
    def __init__(self, jobs: JobRepository, reservations: ReservationManager, ledger: LedgerStore):
        self.jobs = jobs
        self.reservations = reservations
        self.ledger = ledger

    async def list_pending(self, limit: int = 100) -> List[AnalysisJob]:
        return await self.jobs.list_reconciliation_required(limit=limit)

    async def reconcile_job(self, job_id: str) -> Optional[ReconciliationOutcome]:
        """Apply the reconciliation rules to one job. None if the job does not exist.

        Only a terminal job that is flagged REQUIRED, or whose transaction has
        an open settlement claim, is touched. Anything else gets a no-op outcome.
        """
        job = await self.jobs.get(job_id)
        if job is None:
            return None

        if not job.is_terminal:
            return self._unchanged(job, None, f"job is {job.status.value}, settlement cannot be decided yet")

        transaction = None
        if job.credit_transaction_id:
            transaction = await self.ledger.get_transaction(job.credit_transaction_id)
        open_claim = transaction is not None and transaction.is_pending and transaction.settling is not None
        if job.reconciliation_status != ReconciliationStatus.REQUIRED and not open_claim:
            return self._unchanged(job, transaction, "job is not flagged for reconciliation")

        if not job.credit_transaction_id:
            return await self._leave_for_review(job, None, "job has no credit transaction")

        expected = EXPECTED_SETTLEMENT[job.status]
        if transaction is None:
            return await self._leave_for_review(
                job, None, f"transaction {job.credit_transaction_id} not found"
            )

        if transaction.is_pending:
            if transaction.settling is not None and transaction.settling != expected:
                return await self._leave_for_review(
                    job, transaction,
                    f"transaction claimed for {transaction.settling.value} but job is {job.status.value}",
                )
            try:
                if transaction.settling is not None:
                    settlement = await self.reservations.resume_settlement(transaction.transaction_id)
                elif expected == TransactionStatus.COMPLETED:
                    settlement = await self.reservations.confirm(transaction.transaction_id)
                else:
                    settlement = await self.reservations.refund(
                        transaction.transaction_id, job.failed_reason or "Analysis failed"
                    )
            except Exception as e:
                logger.error(f"Reconciliation of job {job.job_id} failed: {e}")
                return ReconciliationOutcome(
                    job_id=job.job_id,
                    transaction_id=transaction.transaction_id,
                    resolved=False,
                    reconciliation_status=job.reconciliation_status,
                    transaction_status=transaction.status,
                    message=f"settlement failed: {e}",
                )
            if settlement.status != expected:
                return await self._leave_for_review(
                    job, transaction,
                    f"transaction settled as {settlement.status.value}, job is {job.status.value}",
                )
            return await self._resolve(job, settlement.status, f"settled transaction as {settlement.status.value}")

        if transaction.status == expected:
            return await self._resolve(job, transaction.status, "transaction already consistent with job")

        return await self._leave_for_review(
            job, transaction,
            f"transaction is {transaction.status.value} but job is {job.status.value}",
        )

    async def run_sweep(self, limit: int = 100) -> Dict[str, int]:
        """Resume claimed settlements, then reconcile every REQUIRED job."""
        counts = {"resumed": 0, "resolved": 0, "manual_review": 0, "errors": 0}

        for transaction in await self.ledger.list_claimed_transactions(limit=limit):
            try:
                await self.reservations.resume_settlement(transaction.transaction_id)
                counts["resumed"] += 1
            except Exception as e:
                counts["errors"] += 1
                logger.error(f"Could not resume settlement {transaction.transaction_id}: {e}")

        for job in await self.list_pending(limit=limit):
            try:
                outcome = await self.reconcile_job(job.job_id)
            except Exception as e:
                counts["errors"] += 1
                logger.error(f"Reconciliation of job {job.job_id} raised: {e}")
                continue
            if outcome is None:
                continue
            if outcome.resolved:
                counts["resolved"] += 1
            elif outcome.reconciliation_status == ReconciliationStatus.REQUIRED and outcome.transaction_status != TransactionStatus.PENDING:
                counts["manual_review"] += 1
            else:
                counts["errors"] += 1

        logger.info(
            f"Reconciliation sweep: {counts['resumed']} resumed, {counts['resolved']} resolved, "
            f"{counts['manual_review']} need review, {counts['errors']} errors"
        )
        return counts

    # ------------------------------------------------------------------

    async def _resolve(self, job: AnalysisJob, status: TransactionStatus, message: str) -> ReconciliationOutcome:
        fields = {
            "reconciliation_status": ReconciliationStatus.RESOLVED,
            "reconciliation_note": message,
        }
        if job.status == JobStatus.FAILED:
            fields["refund_status"] = RefundStatus.REFUNDED
        await self.jobs.update(job.job_id, fields)
        logger.info(f"Job {job.job_id} reconciled: {message}")
        return ReconciliationOutcome(
            job_id=job.job_id,
            transaction_id=job.credit_transaction_id,
            resolved=True,
            reconciliation_status=ReconciliationStatus.RESOLVED,
            transaction_status=status,
            message=message,
        )

    @staticmethod
    def _unchanged(
        job: AnalysisJob,
        transaction: Optional[CreditTransaction],
        message: str,
    ) -> ReconciliationOutcome:
        logger.info(f"Job {job.job_id} left as is: {message}")
        return ReconciliationOutcome(
            job_id=job.job_id,
            transaction_id=job.credit_transaction_id,
            resolved=False,
            reconciliation_status=job.reconciliation_status,
            transaction_status=transaction.status if transaction else None,
            message=message,
        )

    async def _leave_for_review(
        self,
        job: AnalysisJob,
        transaction: Optional[CreditTransaction],
        message: str,
    ) -> ReconciliationOutcome:
        note = f"manual review: {message}"
        await self.jobs.update(job.job_id, {
            "reconciliation_status": ReconciliationStatus.REQUIRED,
            "reconciliation_note": note,
        })
        logger.error(f"Job {job.job_id} needs manual reconciliation: {message}")
        return ReconciliationOutcome(
            job_id=job.job_id,
            transaction_id=job.credit_transaction_id,
            resolved=False,
            reconciliation_status=ReconciliationStatus.REQUIRED,
            transaction_status=transaction.status if transaction else None,
            message=note,
        )
