"""Side-effect task payloads processed by the background worker."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class WaitlistForwardTask:
    email: str
    attempt: int = 1
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"waitlist:{self.email}"


@dataclass(slots=True)
class TapfiliateSyncTask:
    application_id: int
    attempt: int = 1
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"tapfiliate:{self.application_id}"


@dataclass(slots=True)
class CheckoutAffiliateTask:
    email: str
    name: Optional[str] = None
    checkout_session_id: Optional[str] = None
    attempt: int = 1
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"checkout:{self.checkout_session_id or self.email}"


# Registry used to rebuild tasks from their serialized form
TASK_TYPES = {
    cls.__name__: cls
    for cls in (WaitlistForwardTask, TapfiliateSyncTask, CheckoutAffiliateTask)
}

SideEffectTask = WaitlistForwardTask | TapfiliateSyncTask | CheckoutAffiliateTask


__all__ = ["WaitlistForwardTask", "TapfiliateSyncTask", "CheckoutAffiliateTask", "SideEffectTask", "TASK_TYPES"]
