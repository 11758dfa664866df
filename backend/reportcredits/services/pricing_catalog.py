"""Pricing Catalog

Active credit cost per analysis job type, stored in service_pricing.
"""

from typing import List
import logging

from reportcredits.errors import PricingNotFound
from reportcredits.models.jobs import AnalysisJobType
from reportcredits.models.money import to_decimal128
from reportcredits.models.pricing import DEFAULT_SERVICE_PRICING, ServicePricing

logger = logging.getLogger(__name__)


class PricingCatalog:
    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return self.db.service_pricing

    async def seed_defaults(self) -> None:
        """Insert default prices that are missing. Existing entries are left alone."""
        for pricing in DEFAULT_SERVICE_PRICING:
            doc = pricing.model_dump()
            doc["base_price"] = to_decimal128(pricing.base_price)
            doc.pop("job_type")
            await self.collection.update_one(
                {"job_type": pricing.job_type.value},
                {"$setOnInsert": doc},
                upsert=True,
            )
        logger.info("Service pricing defaults seeded")

    async def get_active_price(self, job_type: AnalysisJobType) -> ServicePricing:
        doc = await self.collection.find_one(
            {"job_type": AnalysisJobType(job_type).value, "is_active": True},
            {"_id": 0},
        )
        if not doc:
            raise PricingNotFound(f"No active pricing found for {AnalysisJobType(job_type).value}")
        return ServicePricing(**doc)

    async def list_prices(self, active_only: bool = True) -> List[ServicePricing]:
        query = {"is_active": True} if active_only else {}
        docs = await self.collection.find(query, {"_id": 0}).sort("job_type", 1).to_list(100)
        return [ServicePricing(**doc) for doc in docs]

    async def active_job_types(self) -> List[AnalysisJobType]:
        return [pricing.job_type for pricing in await self.list_prices(active_only=True)]

