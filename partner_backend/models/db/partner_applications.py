from __future__ import annotations
"""SQLAlchemy model for partner program applications."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Boolean, Enum
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .partners import Partner
from sqlalchemy.sql import func
from partner_backend.database import Base
from .enums import ApplicationStatus

class PartnerApplication(Base):
    __tablename__ = "partner_applications"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    whatsapp: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    audience_size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(255), nullable=True)
    motivation: Mapped[str] = mapped_column(Text, nullable=False)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, values_callable=lambda e: [m.value for m in e]),
        default=ApplicationStatus.PENDING,
        index=True,
    )
    # Rejection reason
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    partner: Mapped[Partner | None] = relationship("Partner", back_populates="application", uselist=False)
