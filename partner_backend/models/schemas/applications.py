"""
Pydantic schemas for partner applications.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator
from ..db.enums import ApplicationStatus

class PartnerApplicationCreate(BaseModel):
    """
    Public application form payload.
    Field aliases match the names sent by the apply page (``audience``, ``termsAccepted``).
    """
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    whatsapp: Optional[str] = Field(None, max_length=50)
    country: str = Field(min_length=1, max_length=100)
    audience_size: Optional[str] = Field(None, max_length=50, alias="audience")
    platform: Optional[str] = Field(None, max_length=255)
    motivation: str = Field(min_length=1)
    terms_accepted: bool = Field(alias="termsAccepted")

    @field_validator('name', 'country', 'motivation')
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('must not be blank')
        return v

    @field_validator('whatsapp', 'audience_size', 'platform')
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator('terms_accepted')
    @classmethod
    def terms_must_be_accepted(cls, v: bool) -> bool:
        if not v:
            raise ValueError('partnership terms must be accepted')
        return v

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {
            "name": "Ada Obi",
            "email": "ada@example.com",
            "whatsapp": "+2348000000000",
            "country": "Nigeria",
            "audience": "10k-50k",
            "platform": "YouTube",
            "motivation": "I teach personal finance to students.",
            "termsAccepted": True
        }
    })

class PartnerApplicationRead(BaseModel):
    id: int
    name: str
    email: str
    whatsapp: Optional[str]
    country: str
    audience_size: Optional[str]
    platform: Optional[str]
    motivation: str
    terms_accepted: bool
    status: ApplicationStatus
    notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class ApplicationRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
