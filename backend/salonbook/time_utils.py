# Overview: UTC clock and timestamp formats shared by checkout state, models and document numbering.

"""
Salon timestamps are stored UTC-naive.

Checkout state JSON and API payloads carry them as ISO-8601 with a trailing
"Z" (second precision); invoice and credit note numbers carry the billing
period as YYYYMM of the UTC issue time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Clock for session expiry, benefit validity and invoice issue times."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expiry_after(now: datetime, minutes: int) -> datetime:
    """Deadline for an idle checkout session touched at `now`."""
    return now + timedelta(minutes=minutes)


def billing_period(issued_at: datetime) -> str:
    """YYYYMM period an invoice or credit note is numbered in."""
    if issued_at.tzinfo is not None:
        issued_at = issued_at.astimezone(timezone.utc)
    return issued_at.strftime("%Y%m")


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a timestamp back from session state or a request body.

    Offsets (including "Z") are converted to UTC and dropped; a value
    without an offset is already UTC. Blank values read as None.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """"2026-10-19T09:30:00Z" form used in state_json and every to_dict()."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
