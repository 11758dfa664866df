"""Service Pricing Models

Credit cost per analysis job type. 1 credit = 1 TL.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List
from datetime import datetime, timezone
from decimal import Decimal

from reportcredits.models.jobs import AnalysisJobType
from reportcredits.models.money import to_decimal


class ServicePricing(BaseModel):
    """Catalog entry for one job type."""
    job_type: AnalysisJobType
    service_name: str
    base_price: Decimal
    is_active: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}

    @field_validator("base_price", mode="before")
    @classmethod
    def _coerce_price(cls, value):
        return to_decimal(value)


# ============================================================================
# Default catalog (seeded at startup, idempotent)
# ============================================================================

DEFAULT_SERVICE_PRICING: List[ServicePricing] = [
    ServicePricing(
        job_type=AnalysisJobType.PAINT_ANALYSIS,
        service_name="Paint Analysis",
        base_price=Decimal("49.00"),
    ),
    ServicePricing(
        job_type=AnalysisJobType.DAMAGE_ANALYSIS,
        service_name="Damage Assessment",
        base_price=Decimal("69.00"),
    ),
    ServicePricing(
        job_type=AnalysisJobType.ENGINE_SOUND_ANALYSIS,
        service_name="Engine Sound Analysis",
        base_price=Decimal("79.00"),
    ),
    # No analysis flow exists for value estimation yet
    ServicePricing(
        job_type=AnalysisJobType.VALUE_ESTIMATION,
        service_name="Value Estimation",
        base_price=Decimal("49.00"),
        is_active=False,
    ),
    # Bundle of all analyses (246 TL if bought separately)
    ServicePricing(
        job_type=AnalysisJobType.COMPREHENSIVE_EXPERTISE,
        service_name="Comprehensive Expertise",
        base_price=Decimal("179.00"),
    ),
]
