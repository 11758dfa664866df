"""Composition root.

Builds every Report Credits component around one injected database handle.
Called from the server lifespan, the scheduled job and the CLI script.
"""

from dataclasses import dataclass
from typing import Iterable, Optional
import logging

from reportcredits.handlers import AnalysisHandler, HandlerRegistry, default_handlers
from reportcredits.services import (
    JobOrchestrator,
    JobRepository,
    LedgerStore,
    PricingCatalog,
    ReconciliationService,
    ReservationManager,
)

logger = logging.getLogger(__name__)


@dataclass
class ReportCreditServices:
    ledger: LedgerStore
    reservations: ReservationManager
    catalog: PricingCatalog
    registry: HandlerRegistry
    jobs: JobRepository
    orchestrator: JobOrchestrator
    reconciliation: ReconciliationService


def build_services(db, handlers: Optional[Iterable[AnalysisHandler]] = None) -> ReportCreditServices:
    ledger = LedgerStore(db)
    reservations = ReservationManager(ledger)
    catalog = PricingCatalog(db)
    registry = HandlerRegistry(default_handlers() if handlers is None else handlers)
    jobs = JobRepository(db)
    return ReportCreditServices(
        ledger=ledger,
        reservations=reservations,
        catalog=catalog,
        registry=registry,
        jobs=jobs,
        orchestrator=JobOrchestrator(jobs, reservations, catalog, registry),
        reconciliation=ReconciliationService(jobs, reservations, ledger),
    )


async def verify_handler_coverage(services: ReportCreditServices) -> None:
    """Every active price must have a handler. Raises HandlerNotRegistered."""
    active = await services.catalog.active_job_types()
    services.registry.ensure_covers(active)
    logger.info(f"Analysis handlers cover all {len(active)} active job types")
