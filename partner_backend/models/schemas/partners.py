"""
Pydantic schemas for partners and admin logs.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

class PartnerRead(BaseModel):
    id: int
    application_id: Optional[int]
    name: str
    email: str
    tapfiliate_affiliate_id: Optional[str]
    tier: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class AffiliateLink(BaseModel):
    tapfiliate_affiliate_id: str = Field(min_length=1, max_length=255)

class AdminLogRead(BaseModel):
    id: int
    admin_identifier: Optional[str]
    action: str
    application_id: Optional[int]
    details: Optional[str]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
