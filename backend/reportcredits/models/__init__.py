"""Report Credits Data Models"""

from .ledger import (
    Account,
    CreditTransaction,
    TransactionKind,
    TransactionStatus,
    LedgerResult,
    ReservationResult,
    SettlementResult,
)
from .jobs import (
    AnalysisJob,
    AnalysisJobType,
    AnalysisResultRecord,
    CreateJobRequest,
    CreateJobResult,
    JobStatus,
    RefundStatus,
    ReconciliationStatus,
    VehicleInfo,
)
from .pricing import (
    ServicePricing,
    DEFAULT_SERVICE_PRICING,
)

__all__ = [
    # Ledger
    "Account",
    "CreditTransaction",
    "TransactionKind",
    "TransactionStatus",
    "LedgerResult",
    "ReservationResult",
    "SettlementResult",
    # Jobs
    "AnalysisJob",
    "AnalysisJobType",
    "AnalysisResultRecord",
    "CreateJobRequest",
    "CreateJobResult",
    "JobStatus",
    "RefundStatus",
    "ReconciliationStatus",
    "VehicleInfo",
    # Pricing
    "ServicePricing",
    "DEFAULT_SERVICE_PRICING",
]
