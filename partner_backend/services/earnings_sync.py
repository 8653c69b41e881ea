"""Partner earnings sync: Tapfiliate conversions -> monthly commission ledger.

Single public coroutine `sync_partner_earnings(session, period)` that:
1. Validates the ``YYYY-MM`` period (before any I/O).
2. Checks Tapfiliate configuration (before any I/O).
3. Maps linked Tapfiliate affiliate ids to partner ids; returns early with a
   note when no partner is linked.
4. Fetches every conversion page for the UTC month window. Any failed page
   aborts the whole sync; aggregation never sees a partial set.
5. Aggregates gross / estimated net per (partner, currency), skipping
   malformed or unattributable conversions.
6. Upserts one PartnerEarning per bucket keyed by (partner, period, currency)
   and commits once. Re-running a period overwrites, never duplicates.

Money is handled as Decimal end to end, so commission_amount is exactly
net_revenue * commission_rate up to the column scale.
"""
from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from partner_backend.config import EARNINGS_SETTINGS, TAPFILIATE_SETTINGS
from partner_backend.integrations.tapfiliate import TapfiliateAPIError, TapfiliateClient
from partner_backend.models.db.partner_earnings import PartnerEarning
from partner_backend.models.db.partners import Partner
from partner_backend.utils import get_logger, log_business_event, log_performance
from partner_backend.utils.time import format_period, month_bounds, month_start_date

logger = get_logger(__name__)

PERIOD_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
# ISO 4217 alphabetic code; the ledger column holds exactly three characters
CURRENCY_PATTERN = re.compile(r"^[a-z]{3}$")
NO_LINKED_PARTNERS_NOTE = "No partners with Tapfiliate affiliate IDs found."


# ------------------------------- Errors ----------------------------------- #

class EarningsSyncError(Exception):
    """Base class for failures that abort an earnings sync."""


class InvalidPeriodError(EarningsSyncError, ValueError):
    pass


class TapfiliateNotConfiguredError(EarningsSyncError):
    pass


class ConversionFetchError(EarningsSyncError):
    def __init__(self, message: str, *, page: int, status: Optional[int] = None):
        super().__init__(message)
        self.page = page
        self.status = status


class LedgerWriteError(EarningsSyncError):
    pass


# ------------------------------- Types ------------------------------------ #

class ConversionSource(Protocol):
    async def list_conversions(self, *, program_id: str, date_from: datetime, date_to: datetime, page: int) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class SyncPeriod:
    label: str            # "2025-01"
    period_date: date     # 2025-01-01, ledger key
    start: datetime       # inclusive, UTC
    end: datetime         # exclusive, UTC


@dataclass
class EarningsBucket:
    gross: Decimal = Decimal("0")
    net: Decimal = Decimal("0")
    conversions: int = 0


@dataclass
class EarningsTotal:
    partner_id: int
    currency: str
    gross: Decimal
    net: Decimal
    commission_rate: Decimal
    commission_amount: Decimal


@dataclass
class EarningsSyncSummary:
    period: str
    totals: List[EarningsTotal] = field(default_factory=list)
    note: Optional[str] = None


# ------------------------------ Period ------------------------------------ #

def parse_period(period: Any) -> SyncPeriod:
    """Validate a strict ``YYYY-MM`` string and compute its UTC month window."""
    match = PERIOD_PATTERN.match(period) if isinstance(period, str) else None
    if match is None:
        raise InvalidPeriodError(f"Invalid period {period!r}; expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    start, end = month_bounds(year, month)
    return SyncPeriod(label=period, period_date=month_start_date(year, month), start=start, end=end)


# ------------------------ Affiliate -> Partner ---------------------------- #

def resolve_affiliate_partners(session: Session) -> Dict[str, int]:
    rows = session.execute(
        select(Partner.tapfiliate_affiliate_id, Partner.id).where(Partner.tapfiliate_affiliate_id.is_not(None))
    ).all()
    return {str(affiliate_id): partner_id for affiliate_id, partner_id in rows if affiliate_id}


# ------------------------------ Fetching ---------------------------------- #

async def fetch_conversions(
    client: ConversionSource,
    *,
    program_id: str,
    start: datetime,
    end: datetime,
    page_size: Optional[int] = None,
    max_pages: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Fetch all conversion pages in order.

    Stops on the first short page or after ``max_pages`` pages, whichever
    comes first. Raises ConversionFetchError if any page fails.
    """
    page_size = int(page_size or EARNINGS_SETTINGS["page_size"])
    max_pages = int(max_pages or EARNINGS_SETTINGS["max_pages"])
    conversions: List[Dict[str, Any]] = []

    for page in range(1, max_pages + 1):
        try:
            batch = await client.list_conversions(program_id=program_id, date_from=start, date_to=end, page=page)
        except TapfiliateAPIError as e:
            raise ConversionFetchError(
                f"Fetching Tapfiliate conversions failed on page {page}: {e}",
                page=page,
                status=e.status,
            ) from e
        if not isinstance(batch, list):
            raise ConversionFetchError(f"Unexpected conversions payload on page {page}", page=page)

        conversions.extend(batch)
        if len(batch) < page_size:
            break
    else:
        logger.warning(
            "Conversion fetch stopped at page cap",
            max_pages=max_pages,
            page_size=page_size,
            fetched=len(conversions),
        )

    return conversions


# ----------------------------- Extraction --------------------------------- #

def _nested(record: Dict[str, Any], *path: Any) -> Any:
    current: Any = record
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
    return current


def _scalar_affiliate(record: Dict[str, Any]) -> Any:
    value = record.get("affiliate")
    return value if isinstance(value, (str, int)) and not isinstance(value, bool) else None


# Tried in order; the first rule yielding a non-empty id wins.
AFFILIATE_ID_RULES: Tuple[Callable[[Dict[str, Any]], Any], ...] = (
    lambda r: _nested(r, "affiliate", "id"),
    lambda r: r.get("affiliate_id"),
    _scalar_affiliate,
    lambda r: _nested(r, "commissions", 0, "affiliate", "id"),
)


def extract_affiliate_id(record: Dict[str, Any]) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    for rule in AFFILIATE_ID_RULES:
        value = rule(record)
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def extract_gross_amount(record: Dict[str, Any]) -> Optional[Decimal]:
    """Positive, finite ``amount`` as Decimal; None for anything else."""
    raw = record.get("amount") if isinstance(record, dict) else None
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def normalize_currency(record: Dict[str, Any], default: Optional[str] = None) -> Optional[str]:
    """Lowercase three-letter code, the default when absent, None when unusable."""
    fallback = str(default or EARNINGS_SETTINGS["default_currency"])
    raw = record.get("currency") if isinstance(record, dict) else None
    if not isinstance(raw, str) or not raw.strip():
        return fallback
    code = raw.strip().lower()
    if not CURRENCY_PATTERN.match(code):
        return None
    return code


# ---------------------------- Aggregation --------------------------------- #

def estimate_net(gross: Decimal, fee_percent: Decimal, fee_fixed: Decimal) -> Decimal:
    """gross minus the estimated processor fee, floored at zero."""
    return max(gross - (gross * fee_percent + fee_fixed), Decimal("0"))


def aggregate_conversions(
    conversions: Iterable[Dict[str, Any]],
    affiliate_map: Dict[str, int],
    *,
    fee_percent: Decimal,
    fee_fixed: Decimal,
) -> Dict[Tuple[int, str], EarningsBucket]:
    buckets: Dict[Tuple[int, str], EarningsBucket] = {}
    skipped = 0
    for record in conversions:
        affiliate_id = extract_affiliate_id(record)
        if affiliate_id is None:
            skipped += 1
            continue
        partner_id = affiliate_map.get(affiliate_id)
        if partner_id is None:
            skipped += 1
            continue
        gross = extract_gross_amount(record)
        if gross is None:
            skipped += 1
            continue
        currency = normalize_currency(record)
        if currency is None:
            logger.warning(
                "Skipping conversion with unsupported currency",
                affiliate_id=affiliate_id,
                currency=str(record.get("currency"))[:16],
            )
            skipped += 1
            continue
        bucket = buckets.setdefault((partner_id, currency), EarningsBucket())
        bucket.gross += gross
        bucket.net += estimate_net(gross, fee_percent, fee_fixed)
        bucket.conversions += 1

    if skipped:
        logger.debug("Skipped conversions during aggregation", skipped=skipped)
    return buckets


# ------------------------------ Ledger ------------------------------------ #

def upsert_partner_earning(
    session: Session,
    *,
    partner_id: int,
    period: date,
    currency: str,
    gross: Decimal,
    net: Decimal,
    commission_rate: Decimal,
    source: Optional[str] = None,
) -> PartnerEarning:
    """Insert or overwrite the ledger row for (partner, period, currency).

    Flushes but does not commit. Raises LedgerWriteError on database errors.
    """
    values = {
        "gross_revenue": gross,
        "net_revenue": net,
        "commission_rate": commission_rate,
        "commission_amount": net * commission_rate,
        "source": source or str(EARNINGS_SETTINGS["source_tag"]),
    }
    key = {"partner_id": partner_id, "period": period, "currency": currency}
    try:
        dialect = session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            else:
                from sqlalchemy.dialects.sqlite import insert as dialect_insert
            stmt = dialect_insert(PartnerEarning).values(**key, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["partner_id", "period", "currency"],
                set_={**values, "updated_at": func.now()},
            )
            session.execute(stmt)
        else:
            existing = session.execute(select(PartnerEarning).filter_by(**key)).scalar_one_or_none()
            if existing is None:
                session.add(PartnerEarning(**key, **values))
            else:
                session.execute(update(PartnerEarning).where(PartnerEarning.id == existing.id).values(**values))
        session.flush()
        return session.execute(
            select(PartnerEarning).filter_by(**key).execution_options(populate_existing=True)
        ).scalar_one()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(
            "Ledger upsert failed",
            partner_id=partner_id,
            period=str(period),
            currency=currency,
            error=str(e),
        )
        raise LedgerWriteError(f"Failed to write earnings for partner {partner_id} ({currency}): {e}") from e


# ---------------------------- Orchestrator -------------------------------- #

def _decimal_setting(name: str) -> Decimal:
    return Decimal(str(EARNINGS_SETTINGS[name]))


async def sync_partner_earnings(
    session: Session,
    period: str,
    *,
    client: Optional[ConversionSource] = None,
) -> EarningsSyncSummary:
    """Recompute the ledger for one calendar month from Tapfiliate conversions."""
    started = time.time()
    sync_period = parse_period(period)

    api_key = TAPFILIATE_SETTINGS.get("api_key")
    program_id = TAPFILIATE_SETTINGS.get("program_id")
    if not api_key or not program_id:
        raise TapfiliateNotConfiguredError("Tapfiliate is not configured (missing API key or program id)")

    affiliate_map = resolve_affiliate_partners(session)
    if not affiliate_map:
        logger.info("Earnings sync skipped: no linked partners", period=sync_period.label)
        return EarningsSyncSummary(period=sync_period.label, totals=[], note=NO_LINKED_PARTNERS_NOTE)

    source = client or TapfiliateClient(str(api_key))
    conversions = await fetch_conversions(
        source,
        program_id=str(program_id),
        start=sync_period.start,
        end=sync_period.end,
    )

    commission_rate = _decimal_setting("commission_rate")
    buckets = aggregate_conversions(
        conversions,
        affiliate_map,
        fee_percent=_decimal_setting("fee_percent"),
        fee_fixed=_decimal_setting("fee_fixed"),
    )

    totals: List[EarningsTotal] = []
    for (partner_id, currency), bucket in buckets.items():
        row = upsert_partner_earning(
            session,
            partner_id=partner_id,
            period=sync_period.period_date,
            currency=currency,
            gross=bucket.gross,
            net=bucket.net,
            commission_rate=commission_rate,
        )
        totals.append(EarningsTotal(
            partner_id=partner_id,
            currency=currency,
            gross=bucket.gross,
            net=bucket.net,
            commission_rate=commission_rate,
            commission_amount=bucket.net * commission_rate,
        ))
        logger.debug(
            "Ledger row written",
            earning_id=row.id,
            partner_id=partner_id,
            currency=currency,
            conversions=bucket.conversions,
        )

    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise LedgerWriteError(f"Failed to commit earnings for {sync_period.label}: {e}") from e

    duration_ms = (time.time() - started) * 1000
    log_business_event(
        event_type="partner_earnings_synced",
        details={
            "period": format_period(sync_period.period_date),
            "conversions_fetched": len(conversions),
            "buckets_written": len(totals),
        },
    )
    log_performance(
        operation="sync_partner_earnings",
        duration_ms=duration_ms,
        additional_data={"conversions_fetched": len(conversions)},
    )
    return EarningsSyncSummary(period=sync_period.label, totals=totals)


__all__ = [
    "sync_partner_earnings",
    "parse_period",
    "resolve_affiliate_partners",
    "fetch_conversions",
    "aggregate_conversions",
    "estimate_net",
    "extract_affiliate_id",
    "extract_gross_amount",
    "normalize_currency",
    "upsert_partner_earning",
    "AFFILIATE_ID_RULES",
    "EarningsSyncSummary",
    "EarningsTotal",
    "EarningsBucket",
    "SyncPeriod",
    "EarningsSyncError",
    "InvalidPeriodError",
    "TapfiliateNotConfiguredError",
    "ConversionFetchError",
    "LedgerWriteError",
    "NO_LINKED_PARTNERS_NOTE",
]
