"""
Landing page waitlist integration.

New applicant emails are POSTed as ``{"email": ...}`` to LANDING_WAITLIST_URL.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp

import partner_backend.config as config
from partner_backend.utils import get_logger

logger = get_logger(__name__)


class WaitlistForwardError(Exception):
    """Raised when the waitlist endpoint cannot be reached or rejects the email."""


async def forward_email_to_waitlist(email: str, *, url: Optional[str] = None) -> bool:
    """Forward an email address to the landing waitlist.

    Returns False (after a warning) when no waitlist URL is configured, True
    on success. Non-2xx responses and transport errors raise
    WaitlistForwardError so the task worker can retry.
    """
    target = url or config.LANDING_WAITLIST_URL
    if not target:
        logger.warning("LANDING_WAITLIST_URL is not configured; skipping waitlist forwarding")
        return False

    timeout = aiohttp.ClientTimeout(total=config.WAITLIST_TIMEOUT_SECONDS)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(target, json={"email": email}) as response:
                if not 200 <= response.status < 300:
                    text = await response.text()
                    logger.error(
                        "Landing waitlist endpoint responded with non-OK status",
                        status_code=response.status,
                        body=text[:500],
                    )
                    raise WaitlistForwardError(f"Waitlist endpoint returned HTTP {response.status}")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise WaitlistForwardError(f"Waitlist request failed: {e}") from e

    logger.info("Email forwarded to landing waitlist", url=target)
    return True


__all__ = ["forward_email_to_waitlist", "WaitlistForwardError"]
