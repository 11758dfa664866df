"""Analysis Job Models

A job is the paid unit of work: one AI analysis report.

Lifecycle:
PENDING -> PROCESSING -> COMPLETED | FAILED

COMPLETED and FAILED are terminal. A declined reservation deletes the
PENDING row, so no job is left behind for it.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid

from reportcredits.models.money import to_decimal


class AnalysisJobType(str, Enum):
    """Paid analysis services"""
    PAINT_ANALYSIS = "PAINT_ANALYSIS"
    DAMAGE_ANALYSIS = "DAMAGE_ANALYSIS"
    ENGINE_SOUND_ANALYSIS = "ENGINE_SOUND_ANALYSIS"
    VALUE_ESTIMATION = "VALUE_ESTIMATION"
    COMPREHENSIVE_EXPERTISE = "COMPREHENSIVE_EXPERTISE"


class JobStatus(str, Enum):
    PENDING = "PENDING"        # Row created, reservation not yet taken
    PROCESSING = "PROCESSING"  # Credits reserved, handler running
    COMPLETED = "COMPLETED"    # Result delivered
    FAILED = "FAILED"          # Handler failed, refund attempted


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class RefundStatus(str, Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class ReconciliationStatus(str, Enum):
    """Whether the job and its ledger entry disagree."""
    NONE = "NONE"
    REQUIRED = "REQUIRED"  # Settlement failed after the outcome was fixed
    RESOLVED = "RESOLVED"  # A later sweep settled it


def new_job_id() -> str:
    return f"AJB-{uuid.uuid4().hex[:12].upper()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisJob(BaseModel):
    """Analysis job record."""
    job_id: str = Field(default_factory=new_job_id)
    user_id: str
    job_type: AnalysisJobType

    status: JobStatus = JobStatus.PENDING
    inputs: Dict[str, Any] = Field(default_factory=dict)
    total_cost: Decimal

    # Settlement
    credit_transaction_id: Optional[str] = None
    refund_status: RefundStatus = RefundStatus.NONE
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.NONE
    reconciliation_note: Optional[str] = None

    # Outcome
    result_payload: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = None
    confidence_score: Optional[float] = None
    processing_time_ms: Optional[int] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    @field_validator("total_cost", mode="before")
    @classmethod
    def _coerce_cost(cls, value):
        return to_decimal(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class AnalysisResultRecord(BaseModel):
    """Audit row written once per completed job."""
    result_id: str = Field(default_factory=lambda: f"ARS-{uuid.uuid4().hex[:12].upper()}")
    job_id: str
    job_type: AnalysisJobType
    result_data: Dict[str, Any]
    confidence_score: Optional[float] = None
    processing_time_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)


class VehicleInfo(BaseModel):
    plate: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    mileage: Optional[int] = None


class CreateJobRequest(BaseModel):
    """Payload for a new analysis job."""
    user_id: str
    job_type: AnalysisJobType
    vehicle: VehicleInfo = Field(default_factory=VehicleInfo)
    image_path: Optional[str] = None
    audio_path: Optional[str] = None
    notes: Optional[str] = None

    def handler_inputs(self) -> Dict[str, Any]:
        return {
            "image_path": self.image_path,
            "audio_path": self.audio_path,
            "vehicle_info": self.vehicle.model_dump(),
            "notes": self.notes,
        }


class CreateJobResult(BaseModel):
    """What the caller is told. Never leaves the caller guessing about money."""
    success: bool
    job_id: Optional[str] = None
    job: Optional[AnalysisJob] = None
    message: str
    result: Optional[Dict[str, Any]] = None
    refunded: Optional[bool] = None
    refund_status: Optional[RefundStatus] = None


class JobListResponse(BaseModel):
    jobs: List[AnalysisJob]
    limit: int
    offset: int
