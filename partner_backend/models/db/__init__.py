from .partner_applications import PartnerApplication
from .partners import Partner
from .partner_earnings import PartnerEarning
from .admin_logs import AdminLog
from .enums import ApplicationStatus, PartnerTier, AdminAction

__all__ = [
    "PartnerApplication",
    "Partner",
    "PartnerEarning",
    "AdminLog",
    "ApplicationStatus",
    "PartnerTier",
    "AdminAction",
]
