from __future__ import annotations
"""SQLAlchemy model for approved partners."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .partner_applications import PartnerApplication
    from .partner_earnings import PartnerEarning
from sqlalchemy.sql import func
from partner_backend.database import Base
from .enums import PartnerTier

class Partner(Base):
    __tablename__ = "partners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Detached (NULL) when the originating application is cleared
    application_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("partner_applications.id"), nullable=True, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    # Assigned by Tapfiliate; written once and never overwritten
    tapfiliate_affiliate_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True, index=True)
    tier: Mapped[str] = mapped_column(String(50), default=PartnerTier.STANDARD.value)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    application: Mapped[PartnerApplication | None] = relationship("PartnerApplication", back_populates="partner")
    earnings: Mapped[list["PartnerEarning"]] = relationship("PartnerEarning", back_populates="partner")
