from .base import ResponseBase
from .applications import PartnerApplicationCreate, PartnerApplicationRead, ApplicationRejection
from .partners import PartnerRead, AffiliateLink, AdminLogRead
from .earnings import EarningsSyncRequest, EarningsTotalRead, EarningsSyncResponse, PartnerEarningRead

__all__ = [
    "ResponseBase",

    # Applications
    "PartnerApplicationCreate",
    "PartnerApplicationRead",
    "ApplicationRejection",

    # Partners / audit
    "PartnerRead",
    "AffiliateLink",
    "AdminLogRead",

    # Earnings
    "EarningsSyncRequest",
    "EarningsTotalRead",
    "EarningsSyncResponse",
    "PartnerEarningRead",
]
