"""Central Enum definitions for core domain states."""
from __future__ import annotations
import enum


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PartnerTier(str, enum.Enum):
    STANDARD = "standard"
    SILVER = "silver"
    GOLD = "gold"


class AdminAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CLEAR_ALL = "clear_all"
    CLEAR_LOGS = "clear_logs"
    TAPFILIATE_SYNC = "tapfiliate_sync"
    STRIPE_AFFILIATE = "stripe_affiliate"
    LINK_AFFILIATE = "link_affiliate"
    EARNINGS_SYNC = "earnings_sync"


__all__ = [
    "ApplicationStatus",
    "PartnerTier",
    "AdminAction",
]
