"""Job Repository

Persistence for analysis jobs and their result audit rows.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List
import logging

from reportcredits.models.jobs import (
    AnalysisJob,
    AnalysisResultRecord,
    JobStatus,
    ReconciliationStatus,
)
from reportcredits.models.money import to_decimal128

logger = logging.getLogger(__name__)


def _job_document(job: AnalysisJob) -> Dict[str, Any]:
    doc = job.model_dump(mode="python")
    doc["total_cost"] = to_decimal128(job.total_cost)
    for key in ("job_type", "status", "refund_status", "reconciliation_status"):
        doc[key] = getattr(job, key).value
    return doc


class JobRepository:
    def __init__(self, db):
        self.db = db

    @property
    def jobs(self):
        return self.db.analysis_jobs

    @property
    def results(self):
        return self.db.analysis_results

    async def insert(self, job: AnalysisJob) -> None:
        await self.jobs.insert_one(_job_document(job))

    async def delete(self, job_id: str) -> None:
        await self.jobs.delete_one({"job_id": job_id})

    async def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[AnalysisJob]:
        query: Dict[str, Any] = {"job_id": job_id}
        if user_id is not None:
            query["user_id"] = user_id
        doc = await self.jobs.find_one(query, {"_id": 0})
        return AnalysisJob(**doc) if doc else None

    async def update(self, job_id: str, fields: Dict[str, Any]) -> Optional[AnalysisJob]:
        """Set fields on a job and return it. Enum values are stored by value."""
        update = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in fields.items()
        }
        update["updated_at"] = datetime.now(timezone.utc)
        await self.jobs.update_one({"job_id": job_id}, {"$set": update})
        return await self.get(job_id)

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[JobStatus] = None,
    ) -> List[AnalysisJob]:
        query: Dict[str, Any] = {"user_id": user_id}
        if status:
            query["status"] = status.value
        cursor = self.jobs.find(query, {"_id": 0}).sort("created_at", -1).skip(offset).limit(limit)
        return [AnalysisJob(**doc) for doc in await cursor.to_list(limit)]

    async def list_reconciliation_required(self, limit: int = 100) -> List[AnalysisJob]:
        cursor = self.jobs.find(
            {"reconciliation_status": ReconciliationStatus.REQUIRED.value},
            {"_id": 0},
        ).sort("updated_at", 1).limit(limit)
        return [AnalysisJob(**doc) for doc in await cursor.to_list(limit)]

    async def find_by_transaction(self, transaction_id: str) -> Optional[AnalysisJob]:
        doc = await self.jobs.find_one({"credit_transaction_id": transaction_id}, {"_id": 0})
        return AnalysisJob(**doc) if doc else None

    async def insert_result(self, record: AnalysisResultRecord) -> None:
        doc = record.model_dump()
        doc["job_type"] = record.job_type.value
        await self.results.insert_one(doc)
