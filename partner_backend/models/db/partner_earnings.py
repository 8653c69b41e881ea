"""
SQLAlchemy model for the monthly commission ledger.

One row per (partner, period, currency). The sync job recomputes rows from
Tapfiliate conversions and overwrites them in place, so re-running a period
never duplicates entries.
"""
from sqlalchemy import Column, Integer, String, Numeric, Date, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from partner_backend.database import Base

class PartnerEarning(Base):
    __tablename__ = "partner_earnings"

    id = Column(Integer, primary_key=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)
    # First calendar day of the month
    period = Column(Date, nullable=False, index=True)
    # Lowercase ISO code, e.g. "usd"
    currency = Column(String(3), nullable=False)

    gross_revenue = Column(Numeric(14, 4), nullable=False, default=0)
    net_revenue = Column(Numeric(14, 4), nullable=False, default=0)
    commission_rate = Column(Numeric(6, 4), nullable=False)
    commission_amount = Column(Numeric(14, 4), nullable=False, default=0)
    source = Column(String(50), nullable=False, default="tapfiliate")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    partner = relationship("Partner", back_populates="earnings")

    __table_args__ = (
        UniqueConstraint('partner_id', 'period', 'currency', name='uq_partner_earnings_partner_period_currency'),
    )
