"""Job Orchestrator

Drives one analysis job end to end:

1. Resolve handler and active price (configuration errors fail fast)
2. Insert job (PENDING)
3. Reserve credits; a declined reservation deletes the job
4. Job -> PROCESSING with credit_transaction_id
5. Run the analysis handler and validate its result
6. Success: job COMPLETED, then confirm the reservation
   Failure: job FAILED, then refund the reservation

Once a job is COMPLETED or FAILED that outcome is never changed. If the
settlement after it fails, the job is flagged reconciliation_status=REQUIRED
for the reconciliation sweep.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import logging
import time

from reportcredits.errors import HandlerFailure, SettlementReconciliationGap
from reportcredits.handlers.registry import HandlerRegistry
from reportcredits.models.jobs import (
    AnalysisJob,
    AnalysisResultRecord,
    CreateJobRequest,
    CreateJobResult,
    JobStatus,
    ReconciliationStatus,
    RefundStatus,
)
from reportcredits.models.ledger import TransactionStatus
from reportcredits.services.job_repository import JobRepository
from reportcredits.services.pricing_catalog import PricingCatalog
from reportcredits.services.reservation_service import (
    INSUFFICIENT_BALANCE_MESSAGE,
    ReservationManager,
)

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Analysis report created."
DEFAULT_FAILURE_REASON = "AI analysis failed."


def extract_confidence(result: Dict[str, Any]) -> Optional[float]:
    confidence = result.get("confidence")
    if isinstance(confidence, bool):
        return None
    if isinstance(confidence, (int, float)):
        return float(confidence)
    if isinstance(confidence, str):
        try:
            return float(confidence)
        except ValueError:
            return None
    return None


class JobOrchestrator:
    def __init__(
        self,
        jobs: JobRepository,
        reservations: ReservationManager,
        catalog: PricingCatalog,
        registry: HandlerRegistry,
    ):
        self.jobs = jobs
        self.reservations = reservations
        self.catalog = catalog
        self.registry = registry

    async def create_job(self, request: CreateJobRequest) -> CreateJobResult:
        """Create, pay for and run one analysis job.

        Raises HandlerNotRegistered / PricingNotFound for configuration errors
        and ReservationPersistenceFailure when the ledger is unavailable.
        Everything else comes back as a CreateJobResult.
        """
        started = time.monotonic()

        handler = self.registry.get(request.job_type)
        pricing = await self.catalog.get_active_price(request.job_type)

        job = AnalysisJob(
            user_id=request.user_id,
            job_type=request.job_type,
            inputs=request.handler_inputs(),
            total_cost=pricing.base_price,
        )
        await self.jobs.insert(job)

        try:
            reservation = await self.reservations.reserve(
                request.user_id,
                pricing.base_price,
                f"{pricing.service_name} report",
                reference_id=f"report_{job.job_id}",
                metadata={"job_id": job.job_id, "job_type": job.job_type.value},
            )
        except Exception:
            await self.jobs.delete(job.job_id)
            raise

        if not reservation.accepted:
            await self.jobs.delete(job.job_id)
            return CreateJobResult(
                success=False,
                job_id=job.job_id,
                message=reservation.message or INSUFFICIENT_BALANCE_MESSAGE,
            )

        transaction_id = reservation.transaction_id
        try:
            await self.jobs.update(job.job_id, {
                "credit_transaction_id": transaction_id,
                "status": JobStatus.PROCESSING,
            })

            raw_result = await handler.handle(job.inputs)
            result = handler.validate_result(raw_result)

            processing_time_ms = int((time.monotonic() - started) * 1000)
            confidence = extract_confidence(result)
            completed = await self.jobs.update(job.job_id, {
                "status": JobStatus.COMPLETED,
                "result_payload": result,
                "failed_reason": None,
                "refund_status": RefundStatus.NONE,
                "confidence_score": confidence,
                "processing_time_ms": processing_time_ms,
                "completed_at": datetime.now(timezone.utc),
            })
        except Exception as e:
            return await self._fail(job, transaction_id, e)

        try:
            await self.jobs.insert_result(AnalysisResultRecord(
                job_id=job.job_id,
                job_type=job.job_type,
                result_data=result,
                confidence_score=confidence,
                processing_time_ms=processing_time_ms,
            ))
        except Exception as e:
            logger.error(f"Failed to store analysis result record for job {job.job_id}: {e}")

        try:
            await self.reservations.confirm(transaction_id)
        except Exception as e:
            gap = SettlementReconciliationGap(job.job_id, transaction_id, f"confirm failed after delivery: {e}")
            logger.exception(str(gap))
            completed = await self._flag_reconciliation(job.job_id, gap) or completed

        logger.info(
            f"Analysis job {job.job_id} completed ({job.job_type.value}, user {job.user_id}, "
            f"{processing_time_ms}ms)"
        )
        return CreateJobResult(
            success=True,
            job_id=job.job_id,
            job=completed,
            message=SUCCESS_MESSAGE,
            result=result,
        )

    async def _fail(self, job: AnalysisJob, transaction_id: str, error: Exception) -> CreateJobResult:
        failure = error if isinstance(error, HandlerFailure) else HandlerFailure(str(error) or type(error).__name__)
        failed_reason = str(failure) or DEFAULT_FAILURE_REASON
        logger.error(f"Analysis job {job.job_id} failed: {failed_reason}")

        try:
            await self.jobs.update(job.job_id, {
                "status": JobStatus.FAILED,
                "failed_reason": failed_reason,
                "refund_status": RefundStatus.PENDING,
            })
        except Exception:
            logger.exception(f"Could not mark job {job.job_id} FAILED before refund")

        refund_status = RefundStatus.FAILED
        note = None
        try:
            settlement = await self.reservations.refund(transaction_id, failed_reason)
            if settlement.status == TransactionStatus.REFUNDED:
                refund_status = RefundStatus.REFUNDED
            else:
                note = f"refund skipped, transaction already {settlement.status.value}"
        except Exception as refund_error:
            note = f"refund failed: {refund_error}"

        fields: Dict[str, Any] = {
            "status": JobStatus.FAILED,
            "failed_reason": failed_reason,
            "refund_status": refund_status,
        }
        if note:
            gap = SettlementReconciliationGap(job.job_id, transaction_id, note)
            logger.error(str(gap))
            fields["reconciliation_status"] = ReconciliationStatus.REQUIRED
            fields["reconciliation_note"] = str(gap)

        try:
            failed_job = await self.jobs.update(job.job_id, fields)
        except Exception:
            logger.exception(f"Could not record refund outcome for job {job.job_id}")
            failed_job = None

        return CreateJobResult(
            success=False,
            job_id=job.job_id,
            job=failed_job,
            message=failed_reason,
            refunded=refund_status == RefundStatus.REFUNDED,
            refund_status=refund_status,
        )

    async def _flag_reconciliation(self, job_id: str, gap: SettlementReconciliationGap) -> Optional[AnalysisJob]:
        try:
            return await self.jobs.update(job_id, {
                "reconciliation_status": ReconciliationStatus.REQUIRED,
                "reconciliation_note": str(gap),
            })
        except Exception:
            logger.exception(f"Could not flag job {job_id} for reconciliation")
            return None

    async def get_job(self, user_id: str, job_id: str) -> Optional[AnalysisJob]:
        return await self.jobs.get(job_id, user_id=user_id)

    async def list_jobs(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[JobStatus] = None,
    ) -> List[AnalysisJob]:
        return await self.jobs.list_for_user(user_id, limit=limit, offset=offset, status=status)
