"""
Integrations package initialization.
Outbound HTTP clients for third-party services.
"""
from .tapfiliate import TapfiliateClient, TapfiliateAPIError, split_name
from .waitlist import forward_email_to_waitlist, WaitlistForwardError

__all__ = [
    "TapfiliateClient",
    "TapfiliateAPIError",
    "split_name",
    "forward_email_to_waitlist",
    "WaitlistForwardError",
]
