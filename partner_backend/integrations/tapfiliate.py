"""
Tapfiliate REST API client (v1.6).

Only the calls this service needs are implemented:
  GET  /conversions/                       paginated conversion listing
  POST /affiliates/                        create an affiliate
  POST /programs/{program_id}/affiliates/  add an affiliate to a program

Every call opens a short-lived aiohttp session; non-2xx responses, transport
errors and undecodable bodies all surface as TapfiliateAPIError so callers
have a single failure type to handle.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from partner_backend.config import TAPFILIATE_SETTINGS
from partner_backend.utils import get_logger

logger = get_logger(__name__)


class TapfiliateAPIError(Exception):
    """Raised for any unsuccessful Tapfiliate call."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


def format_timestamp(value: datetime) -> str:
    """UTC timestamp in the ``2025-01-01T00:00:00Z`` form Tapfiliate accepts."""
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class TapfiliateClient:
    """Async Tapfiliate client authenticated with an ``Api-Key`` header."""

    def __init__(self, api_key: str, *, api_base: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.api_key = api_key
        self.api_base = str(api_base or TAPFILIATE_SETTINGS["api_base"]).rstrip("/")
        self.timeout_seconds = float(timeout_seconds or TAPFILIATE_SETTINGS["timeout_seconds"])  # type: ignore[arg-type]
        self.logger = get_logger("integration.tapfiliate")

    @classmethod
    def from_settings(cls) -> "TapfiliateClient":
        return cls(str(TAPFILIATE_SETTINGS["api_key"] or ""))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.api_base}{path}"
        headers = {
            "Api-Key": self.api_key,
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=headers, params=params, json=payload) as response:
                    text = await response.text()
                    if not 200 <= response.status < 300:
                        self.logger.error(
                            "Tapfiliate request failed",
                            method=method,
                            path=path,
                            status_code=response.status,
                            body=text[:500],
                        )
                        raise TapfiliateAPIError(
                            f"Tapfiliate {method} {path} returned HTTP {response.status}",
                            status=response.status,
                            body=text,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error("Tapfiliate client error", method=method, path=path, error=str(e))
            raise TapfiliateAPIError(f"Tapfiliate {method} {path} failed: {e}") from e

        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise TapfiliateAPIError(
                f"Tapfiliate {method} {path} returned invalid JSON",
                status=response.status,
                body=text,
            ) from e

    async def list_conversions(
        self,
        *,
        program_id: str,
        date_from: datetime,
        date_to: datetime,
        page: int,
    ) -> List[Dict[str, Any]]:
        """Fetch one page of conversions for the program and UTC window."""
        params = {
            "program_id": program_id,
            "date_from": format_timestamp(date_from),
            "date_to": format_timestamp(date_to),
            "page": page,
        }
        data = await self._request("GET", "/conversions/", params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise TapfiliateAPIError(
                f"Unexpected conversions payload type {type(data).__name__} on page {page}"
            )
        return data

    async def create_affiliate(self, *, email: str, firstname: Optional[str] = None, lastname: Optional[str] = None) -> str:
        """Create an affiliate and return its Tapfiliate id."""
        payload: Dict[str, Any] = {"email": email}
        if firstname:
            payload["firstname"] = firstname
        if lastname:
            payload["lastname"] = lastname
        created = await self._request("POST", "/affiliates/", payload=payload)
        affiliate_id = created.get("id") if isinstance(created, dict) else None
        if not affiliate_id:
            raise TapfiliateAPIError("Tapfiliate create affiliate response is missing an id")
        self.logger.info("Tapfiliate affiliate created", affiliate_id=affiliate_id)
        return str(affiliate_id)

    async def add_affiliate_to_program(self, *, program_id: str, affiliate_id: str, approved: bool = True) -> Any:
        path = f"/programs/{quote(str(program_id), safe='')}/affiliates/"
        payload = {"affiliate": {"id": affiliate_id}, "approved": approved}
        result = await self._request("POST", path, payload=payload)
        self.logger.info(
            "Tapfiliate affiliate added to program",
            affiliate_id=affiliate_id,
            program_id=program_id,
            approved=approved,
        )
        return result


def split_name(full_name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split a display name into (firstname, lastname) on the first space."""
    parts = (full_name or "").strip().split(" ")
    firstname = parts[0] or None
    lastname = " ".join(p for p in parts[1:] if p) or None
    return firstname, lastname


__all__ = ["TapfiliateClient", "TapfiliateAPIError", "format_timestamp", "split_name"]
