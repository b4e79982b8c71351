"""Time Utilities for UTC and portal-local dates"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from agaspay.config import settings


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime.
    Matches the DB schema (TIMESTAMP WITHOUT TIME ZONE).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_portal_today() -> date:
    """Calendar date in the portal's timezone; due dates are compared against it."""
    return datetime.now(ZoneInfo(settings.PORTAL_TIMEZONE)).date()
