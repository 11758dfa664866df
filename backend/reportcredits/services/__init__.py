"""Report Credits Services"""

from .ledger_store import LedgerStore
from .reservation_service import ReservationManager
from .pricing_catalog import PricingCatalog
from .job_repository import JobRepository
from .job_orchestrator import JobOrchestrator
from .reconciliation_service import ReconciliationService, ReconciliationOutcome

__all__ = [
    "LedgerStore",
    "ReservationManager",
    "PricingCatalog",
    "JobRepository",
    "JobOrchestrator",
    "ReconciliationService",
    "ReconciliationOutcome",
]
