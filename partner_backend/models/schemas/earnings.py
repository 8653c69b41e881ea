"""
Pydantic schemas for the partner earnings ledger.
"""
from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel

class EarningsSyncRequest(BaseModel):
    """Trigger payload. The period format is checked by the sync job itself."""
    period: str = Field(description="Calendar month as YYYY-MM", examples=["2025-01"])

class EarningsTotalRead(BaseModel):
    """Per (partner, currency) total; serialized with camelCase keys (partnerId, commissionAmount)."""
    partner_id: int
    currency: str
    gross: float
    net: float
    commission_rate: float
    commission_amount: float

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class EarningsSyncResponse(BaseModel):
    period: str
    totals: List[EarningsTotalRead] = Field(default_factory=list)
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class PartnerEarningRead(BaseModel):
    id: int
    partner_id: int
    period: date
    currency: str
    gross_revenue: float
    net_revenue: float
    commission_rate: float
    commission_amount: float
    source: str
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
